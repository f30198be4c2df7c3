"""Fatal, pre-scan error types. Per-script failures never raise."""


class DecompilerError(Exception):
    """Base class for errors that abort the run before the scan starts."""


class ConfigError(DecompilerError):
    """Missing oracle key or an unusable setting."""


class InputError(DecompilerError):
    """Input document is missing or cannot be read."""
