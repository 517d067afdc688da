from __future__ import annotations

import os
import re
from typing import Optional, Tuple
from urllib.parse import quote

from ..storage.errors import RangeNotSatisfiable

PDF_CONTENT_TYPE = "application/pdf"
FALLBACK_CONTENT_TYPE = "application/octet-stream"

_RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")


def resolve_content_type(declared: Optional[str]) -> str:
    """Pick the response type from the uploader's declared type."""

    declared = (declared or "").strip()
    if "pdf" in declared.lower():
        return PDF_CONTENT_TYPE
    return declared or FALLBACK_CONTENT_TYPE


def clean_filename(filename: Optional[str], default: str = "file") -> str:
    """Strip client-side directories from an uploaded filename."""

    name = os.path.basename((filename or "").replace("\\", "/")).strip()
    return name or default


def build_content_disposition(disposition: str, filename: str) -> str:
    ascii_name = filename.encode("ascii", "ignore").decode("ascii")
    for forbidden in ('"', "\r", "\n"):
        ascii_name = ascii_name.replace(forbidden, "")
    header = f'{disposition}; filename="{ascii_name or "file"}"'
    if not filename.isascii():
        header += f"; filename*=UTF-8''{quote(filename, safe='')}"
    return header


def parse_range_header(header: Optional[str], length: int) -> Optional[Tuple[int, int]]:
    """Resolve a single ``bytes=`` range to ``(start, stop)`` with ``stop`` exclusive.

    Returns ``None`` when the whole object should be served (no header, a
    multi-range request, or a header we do not understand).
    """

    if not header:
        return None
    match = _RANGE_PATTERN.match(header.strip())
    if match is None:
        return None
    raw_start, raw_end = match.groups()
    if not raw_start and not raw_end:
        return None

    if not raw_start:
        suffix = int(raw_end)
        if suffix == 0 or length == 0:
            raise RangeNotSatisfiable(f"Range {header!r} not satisfiable for {length} bytes")
        return max(length - suffix, 0), length

    start = int(raw_start)
    if start >= length:
        raise RangeNotSatisfiable(f"Range {header!r} not satisfiable for {length} bytes")
    end = int(raw_end) if raw_end else length - 1
    if end < start:
        return None
    return start, min(end, length - 1) + 1
