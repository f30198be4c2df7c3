"""
pipeline/writer.py — re-emit the document with rewritten Source bodies.

Copies the input through in chunks and swaps only the bytes between each
rewritten field's start tag and end tag. Everything else is untouched.
"""

import codecs
import logging
import re
import shutil
from pathlib import Path
from typing import BinaryIO
from xml.sax.saxutils import escape

from rbxlx_decompiler.state import Substitution

logger = logging.getLogger(__name__)

_CHUNK_SIZE = 1 << 16

# A start tag, allowing '>' inside quoted attribute values.
_START_TAG_RE = re.compile(rb"""<(?:[^>"']|"[^"]*"|'[^']*')*>""")


def _cdata_section(text: str, encoding: str) -> str:
    # "]]>" cannot appear inside a CDATA section; split it across two.
    text = text.replace("]]>", "]]]]><![CDATA[>")
    try:
        text.encode(encoding)
    except UnicodeEncodeError:
        # Characters the document encoding can't hold leave the section as
        # character references.
        text = "".join(
            ch if ch.encode(encoding, "ignore") else f"]]>&#{ord(ch)};<![CDATA["
            for ch in text
        )
    return "<![CDATA[" + text + "]]>"


def encode_body(text: str, cdata: bool, encoding: str = "utf-8") -> bytes:
    if cdata:
        return _cdata_section(text, encoding).encode(encoding)
    return escape(text, {"\r": "&#13;"}).encode(encoding, "xmlcharrefreplace")


def _splice_encoding(encoding: str) -> str | None:
    """Codec for spliced bodies, or None when bodies can't be spliced safely."""
    try:
        name = codecs.lookup(encoding).name
    except LookupError:
        return None
    # Multi-byte unit encodings would need BOM and byte-order handling.
    if name.startswith(("utf-16", "utf-32")):
        return None
    return name


def _copy_range(src: BinaryIO, dst: BinaryIO, length: int) -> None:
    while length > 0:
        chunk = src.read(min(_CHUNK_SIZE, length))
        if not chunk:
            raise EOFError("Input ended before the expected offset")
        dst.write(chunk)
        length -= len(chunk)


def _splice(src: BinaryIO, dst: BinaryIO, sub: Substitution, encoding: str) -> bool:
    field = src.read(sub["end"] - sub["start"])
    m = _START_TAG_RE.match(field)
    if m is None or m.group().endswith(b"/>"):
        # Empty element or unexpected bytes: keep the original.
        logger.warning("Could not rewrite field at byte %d, keeping original", sub["start"])
        dst.write(field)
        return False
    dst.write(m.group())
    dst.write(encode_body(sub["text"], sub["cdata"], encoding))
    return True


def write_document(
    input_path: str | Path,
    output_path: str | Path,
    substitutions: list[Substitution],
    encoding: str = "utf-8",
) -> int:
    """Write the rewritten document. Returns the number of fields replaced.

    `encoding` is the document's declared encoding; new bodies are written in it.
    """
    codec = _splice_encoding(encoding)
    if codec is None and substitutions:
        logger.warning("Can't rewrite scripts in a %s document, copying it unchanged", encoding)
        substitutions = []
    ordered = sorted(substitutions, key=lambda s: s["start"])
    pos = 0
    written = 0

    with open(input_path, "rb") as src, open(output_path, "wb") as dst:
        for sub in ordered:
            if sub["start"] < pos:
                logger.warning("Overlapping rewrite at byte %d skipped", sub["start"])
                continue
            _copy_range(src, dst, sub["start"] - pos)
            written += _splice(src, dst, sub, codec)
            pos = sub["end"]
        shutil.copyfileobj(src, dst, _CHUNK_SIZE)

    logger.debug("Wrote %s with %d rewritten fields", output_path, written)
    return written
