"""
Per-script transform: pull the base64 bytecode out of the source, exchange it
with the oracle, and build the replacement text.

One request per script, no retries. Every failure is reported in the result
and leaves the script's source untouched.
"""

import logging
import re
import time

import httpx

from rbxlx_decompiler.state import Outcome, TransformResult

logger = logging.getLogger(__name__)

_BYTECODE_RE = re.compile(r"-- Bytecode \(Base64\):\n-- (.*)\n\n")

WATERMARK_LINES = 6

_REJECTED = {
    httpx.codes.UNAUTHORIZED,
    httpx.codes.PAYMENT_REQUIRED,
    httpx.codes.TOO_MANY_REQUESTS,
}


def extract_bytecode(source: str) -> str | None:
    m = _BYTECODE_RE.search(source)
    return m.group(1) if m else None


def make_watermark(source: str) -> str:
    """First six lines of the original source, kept on top of any rewrite."""
    return "\n".join(source.splitlines()[:WATERMARK_LINES])


class OracleClient:
    """Bearer-authenticated client for the oracle's decompile endpoint."""

    def __init__(self, base_url: str, key: str, timeout: float, transport: httpx.BaseTransport | None = None) -> None:
        self.base_url = base_url
        self._http = httpx.Client(
            headers={"Authorization": f"Bearer {key}"},
            timeout=timeout,
            transport=transport,
        )

    def decompile(self, bytecode: str) -> httpx.Response:
        return self._http.post(self.base_url, json={"script": bytecode})

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "OracleClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


def _result(outcome: Outcome, message: str, text: str | None = None, elapsed_ms: int = 0) -> TransformResult:
    return TransformResult(outcome=outcome, text=text, message=message, elapsed_ms=elapsed_ms)


def _reply_text(response: httpx.Response) -> str:
    return response.text or "unlucky"


def transform_payload(source: str, client: OracleClient) -> TransformResult:
    bytecode = extract_bytecode(source)
    if bytecode is None:
        return _result(Outcome.NO_BYTECODE, "no bytecode!")

    watermark = make_watermark(source)
    start = time.perf_counter()

    try:
        response = client.decompile(bytecode)
    except Exception as exc:
        # Timeouts and connection errors, but also a malformed url (httpx.InvalidURL).
        logger.debug("Oracle request failed: %r", exc)
        return _result(Outcome.TRANSPORT_ERROR, f"error: {exc!r}")

    status = response.status_code
    if status == httpx.codes.OK:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        return _result(
            Outcome.DECOMPILED,
            f"decompiled in {elapsed_ms}ms!",
            text=f"{watermark}\n{response.text}",
            elapsed_ms=elapsed_ms,
        )
    if status in _REJECTED:
        return _result(Outcome.REJECTED, _reply_text(response))
    if status == httpx.codes.INTERNAL_SERVER_ERROR:
        return _result(Outcome.SERVER_ERROR, "Internal server error")
    if status == httpx.codes.BAD_REQUEST:
        return _result(Outcome.OUTDATED_CLIENT, "Oracle rejected the request format, update the decompiler")

    logger.debug("Unexpected oracle reply %d: %.200s", status, response.text)
    return _result(Outcome.UNEXPECTED_STATUS, f"something went wrong: {status}")
