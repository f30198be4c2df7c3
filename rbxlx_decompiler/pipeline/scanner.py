"""
Single forward pass over an rbxlx document.

Uses expat so no tree is ever built and every start/end tag comes with its
byte offset in the input file. Script items are tracked on a frame stack that
mirrors the Item nesting, so unrelated structure inside a script (child
items, attributes, tags) never desynchronises the candidate state.
"""

import logging
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import NamedTuple
from xml.parsers import expat

from rbxlx_decompiler.state import Candidate

logger = logging.getLogger(__name__)

SCRIPT_CLASSES = frozenset({"Script", "LocalScript", "ModuleScript"})
FIELD_TAGS = frozenset({"string", "ProtectedString"})
NAME_FIELD = "Name"
SOURCE_FIELD = "Source"
DEFAULT_ENCODING = "utf-8"

# Errors that only mean the file stops early.
_TRUNCATION_ERRORS = frozenset(
    expat.errors.codes[msg]
    for msg in (
        expat.errors.XML_ERROR_NO_ELEMENTS,
        expat.errors.XML_ERROR_UNCLOSED_TOKEN,
        expat.errors.XML_ERROR_UNCLOSED_CDATA_SECTION,
        expat.errors.XML_ERROR_PARTIAL_CHAR,
    )
)


class ScanState(Enum):
    IDLE = "idle"
    IN_CANDIDATE = "in_candidate"


class RunTotals(NamedTuple):
    total: int
    processed: int


class _Field:
    __slots__ = ("kind", "depth", "start", "chunks", "cdata")

    def __init__(self, kind: str, depth: int, start: int) -> None:
        self.kind = kind
        self.depth = depth
        self.start = start
        self.chunks: list[str] = []
        self.cdata = False


class _ItemFrame:
    """One open Item. Script frames own their candidate and the field being read."""

    __slots__ = ("depth", "candidate", "properties_open", "field")

    def __init__(self, depth: int, candidate: Candidate | None) -> None:
        self.depth = depth
        self.candidate = candidate
        self.properties_open = False
        self.field: _Field | None = None


def _new_candidate(class_name: str) -> Candidate:
    return Candidate(
        class_name=class_name,
        name="",
        source="",
        source_start=None,
        source_end=None,
        source_cdata=False,
    )


class Scanner:
    """Finds script items and hands each one to `on_candidate` when it closes.

    One Scanner per pass. `total` counts script items opened, `processed`
    counts script items closed; a script still open at end of input is dropped.
    `encoding` is the encoding named by the XML declaration (utf-8 when absent).
    """

    def __init__(self, on_candidate: Callable[[Candidate, RunTotals], None]) -> None:
        self._on_candidate = on_candidate
        self._parser = None
        self._depth = 0
        self._items: list[_ItemFrame] = []
        self._open_scripts = 0
        self.state = ScanState.IDLE
        self.encoding = DEFAULT_ENCODING
        self.total = 0
        self.processed = 0

    @property
    def totals(self) -> RunTotals:
        return RunTotals(self.total, self.processed)

    def scan(self, path: str | Path) -> RunTotals:
        """Run the pass over `path`. OSError from opening the file propagates."""
        self._parser = parser = expat.ParserCreate()
        parser.buffer_text = True
        parser.XmlDeclHandler = self._xml_decl
        parser.StartElementHandler = self._start
        parser.EndElementHandler = self._end
        parser.CharacterDataHandler = self._text
        parser.StartCdataSectionHandler = self._start_cdata

        with open(path, "rb") as fh:
            try:
                parser.ParseFile(fh)
            except expat.ExpatError as exc:
                self._abandon(exc)

        self._parser = None
        return self.totals

    def _abandon(self, exc: expat.ExpatError) -> None:
        if exc.code in _TRUNCATION_ERRORS:
            logger.debug("Document ends early (%s), dropping %d open scripts", exc, self._open_scripts)
        else:
            logger.warning(
                "Stopped scanning at line %d, column %d: %s (%d open scripts dropped)",
                exc.lineno, exc.offset, expat.errors.messages[exc.code], self._open_scripts,
            )
        self._items.clear()
        self._open_scripts = 0
        self.state = ScanState.IDLE

    def _xml_decl(self, version: str, encoding: str | None, standalone: int) -> None:
        if encoding:
            self.encoding = encoding.lower()

    def _start(self, tag: str, attrs: dict[str, str]) -> None:
        self._depth += 1
        depth = self._depth

        if tag == "Item":
            class_name = attrs.get("class", "")
            candidate = None
            if class_name in SCRIPT_CLASSES:
                candidate = _new_candidate(class_name)
                self.total += 1
                self._open_scripts += 1
                self.state = ScanState.IN_CANDIDATE
            self._items.append(_ItemFrame(depth, candidate))
            return

        if not self._items:
            return
        frame = self._items[-1]
        if frame.candidate is None or frame.field is not None:
            return

        if tag == "Properties" and depth == frame.depth + 1:
            frame.properties_open = True
        elif (
            tag in FIELD_TAGS
            and frame.properties_open
            and depth == frame.depth + 2
            and attrs.get("name") in (NAME_FIELD, SOURCE_FIELD)
        ):
            frame.field = _Field(attrs["name"], depth, self._parser.CurrentByteIndex)

    def _end(self, tag: str) -> None:
        depth = self._depth
        self._depth -= 1

        if not self._items:
            return
        frame = self._items[-1]

        if frame.field is not None:
            if depth == frame.field.depth:
                self._finish_field(frame)
            return

        if tag == "Item" and depth == frame.depth:
            self._items.pop()
            if frame.candidate is not None:
                self._open_scripts -= 1
                if not self._open_scripts:
                    self.state = ScanState.IDLE
                self.processed += 1
                self._on_candidate(frame.candidate, self.totals)
        elif tag == "Properties" and depth == frame.depth + 1:
            frame.properties_open = False

    def _finish_field(self, frame: _ItemFrame) -> None:
        field, candidate = frame.field, frame.candidate
        frame.field = None
        text = "".join(field.chunks)
        if field.kind == NAME_FIELD:
            candidate["name"] = text
        else:
            candidate["source"] = text
            candidate["source_start"] = field.start
            candidate["source_end"] = self._parser.CurrentByteIndex
            candidate["source_cdata"] = field.cdata

    def _current_field(self) -> _Field | None:
        return self._items[-1].field if self._items else None

    def _text(self, data: str) -> None:
        field = self._current_field()
        if field is not None:
            field.chunks.append(data)

    def _start_cdata(self) -> None:
        field = self._current_field()
        if field is not None:
            field.cdata = True
