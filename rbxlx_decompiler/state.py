"""
Shared TypedDicts for the decompile pipeline.
"""

from enum import Enum
from typing import TypedDict


class Candidate(TypedDict):
    class_name: str          # Script, LocalScript, ModuleScript
    name: str                # text of the "Name" property
    source: str              # text of the "Source" property
    source_start: int | None  # byte offset of the Source field's start tag
    source_end: int | None    # byte offset of the Source field's end tag
    source_cdata: bool       # Source body was written as a CDATA section


class Outcome(str, Enum):
    DECOMPILED = "decompiled"
    NO_BYTECODE = "no_bytecode"
    REJECTED = "rejected"            # 401, 402, 429
    SERVER_ERROR = "server_error"    # 500
    OUTDATED_CLIENT = "outdated_client"  # 400
    UNEXPECTED_STATUS = "unexpected_status"
    TRANSPORT_ERROR = "transport_error"


class TransformResult(TypedDict):
    outcome: Outcome
    text: str | None   # replacement source; None leaves the field untouched
    message: str
    elapsed_ms: int


class Substitution(TypedDict):
    start: int   # offset of the field's start tag
    end: int     # offset of the field's end tag
    text: str
    cdata: bool
