import pytest

from portfolio_storage.core.utils import (
    build_content_disposition,
    clean_filename,
    parse_range_header,
    resolve_content_type,
)
from portfolio_storage.storage import RangeNotSatisfiable


@pytest.mark.parametrize(
    "declared, expected",
    [
        ("application/pdf", "application/pdf"),
        ("application/x-pdf-ish", "application/pdf"),
        ("Application/PDF", "application/pdf"),
        ("image/png", "image/png"),
        ("", "application/octet-stream"),
        (None, "application/octet-stream"),
    ],
)
def test_resolve_content_type(declared, expected):
    assert resolve_content_type(declared) == expected


def test_clean_filename_strips_client_paths():
    assert clean_filename("/home/prof/cv.pdf") == "cv.pdf"
    assert clean_filename("C:\\docs\\cv.pdf") == "cv.pdf"
    assert clean_filename("   ") == "file"


def test_content_disposition_drops_quotes():
    assert build_content_disposition("inline", 'say "hi".txt') == 'inline; filename="say hi.txt"'


@pytest.mark.parametrize(
    "header, expected",
    [
        (None, None),
        ("", None),
        ("bytes=0-3", (0, 4)),
        ("bytes=4-", (4, 10)),
        ("bytes=-3", (7, 10)),
        ("bytes=-30", (0, 10)),
        ("bytes=8-100", (8, 10)),
        ("bytes=0-1,4-5", None),
        ("items=0-1", None),
        ("bytes=5-2", None),
    ],
)
def test_parse_range_header(header, expected):
    assert parse_range_header(header, 10) == expected


@pytest.mark.parametrize("header", ["bytes=10-", "bytes=-0"])
def test_unsatisfiable_ranges(header):
    with pytest.raises(RangeNotSatisfiable):
        parse_range_header(header, 10)
