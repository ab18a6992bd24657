"""
Line-oriented record format emitted by the scanner scripts.

One element per line, fields separated by the ASCII unit separator:

    R1 <US> role <US> title <US> value <US> description <US> help
       <US> x <US> y <US> width <US> height <US> enabled <US> visible

Free-text fields never contain the separator or a line break (the
emitting script strips them), so no quoting is needed. A line that
starts with ``ERROR<US>`` carries a bridge error message instead.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

from .scanner import RawElement

logger = logging.getLogger(__name__)

RECORD_VERSION = "R1"
FIELD_SEP = "\x1f"
FIELD_COUNT = 12
ERROR_TAG = "ERROR"

_INT_RE = re.compile(r"^-?\d+(\.0+)?$")
_BOOLS = {"true": True, "false": False}


class RecordError(ValueError):
    pass


@dataclass
class ParseReport:
    elements: List[RawElement] = field(default_factory=list)
    rejected: int = 0
    errors: List[str] = field(default_factory=list)


def _parse_int(text: str, name: str) -> int:
    text = text.strip()
    if not _INT_RE.match(text):
        raise RecordError(f"{name} is not an integer: {text!r}")
    return int(text.split(".")[0])


def _parse_bool(text: str, name: str) -> bool:
    value = _BOOLS.get(text.strip().lower())
    if value is None:
        raise RecordError(f"{name} is not a boolean: {text!r}")
    return value


def parse_record(line: str) -> RawElement:
    fields = line.split(FIELD_SEP)
    if len(fields) != FIELD_COUNT:
        raise RecordError(f"expected {FIELD_COUNT} fields, got {len(fields)}")
    if fields[0] != RECORD_VERSION:
        raise RecordError(f"unknown record version {fields[0]!r}")

    _, role, title, value, description, help_text = fields[:6]
    x = _parse_int(fields[6], "x")
    y = _parse_int(fields[7], "y")
    width = _parse_int(fields[8], "width")
    height = _parse_int(fields[9], "height")
    if width <= 0 or height <= 0:
        raise RecordError(f"non-positive size {width}x{height}")

    role = role.strip()
    if not role:
        raise RecordError("empty role")

    return RawElement(
        role=role,
        title=title.strip(),
        value=value.strip(),
        description=description.strip(),
        help=help_text.strip(),
        x=x,
        y=y,
        width=width,
        height=height,
        enabled=_parse_bool(fields[10], "enabled"),
        visible=_parse_bool(fields[11], "visible"),
    )


def parse_records(output: str) -> ParseReport:
    """Parse scanner output, dropping malformed lines."""
    report = ParseReport()
    for line in output.splitlines():
        line = line.rstrip("\r")
        if not line.strip():
            continue
        if line.startswith(ERROR_TAG + FIELD_SEP):
            report.errors.append(line[len(ERROR_TAG) + 1:].strip())
            continue
        try:
            report.elements.append(parse_record(line))
        except RecordError as e:
            report.rejected += 1
            logger.debug("Rejected scan record (%s): %r", e, line[:120])
    return report


def _clean(text: Optional[str]) -> str:
    if not text:
        return ""
    for ch in (FIELD_SEP, "\t", "\r", "\n"):
        text = text.replace(ch, " ")
    return text


def format_record(raw: RawElement) -> str:
    return FIELD_SEP.join([
        RECORD_VERSION,
        _clean(raw.role),
        _clean(raw.title),
        _clean(raw.value),
        _clean(raw.description),
        _clean(raw.help),
        str(raw.x),
        str(raw.y),
        str(raw.width),
        str(raw.height),
        "true" if raw.enabled else "false",
        "true" if raw.visible else "false",
    ])
