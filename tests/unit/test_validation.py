from __future__ import annotations

import pytest

from workflows.errors import ValidationError
from workflows.validation import (
    format_ip,
    parse_address,
    parse_asset_id,
    parse_content_hash,
    parse_price,
    parse_royalty,
    parse_yes_no,
    same_address,
)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("0.5", ("0.5", 5 * 10**17)),
        ("0", ("0", 0)),
        ("1.000", ("1", 10**18)),
        (".25", ("0.25", 25 * 10**16)),
        # Below one wei truncates toward zero
        ("0.0000000000000000019", ("0.0000000000000000019", 1)),
        ("123456789.123456789123456789", ("123456789.123456789123456789", 123456789123456789123456789)),
    ],
)
def test_parse_price(text, expected):
    assert parse_price(text) == expected


@pytest.mark.parametrize("text", ["-1", "abc", "1e18", "", "0x10", "1,5"])
def test_parse_price_rejects(text):
    with pytest.raises(ValidationError):
        parse_price(text)


@pytest.mark.parametrize("text, expected", [("0", 0), ("10", 10), ("100", 100), ("15%", 15), (" 7 ", 7)])
def test_parse_royalty(text, expected):
    assert parse_royalty(text) == expected


@pytest.mark.parametrize("text", ["101", "-1", "10.5", "ten", ""])
def test_parse_royalty_rejects(text):
    with pytest.raises(ValidationError) as ei:
        parse_royalty(text)
    assert "0 and 100" in ei.value.prompt


@pytest.mark.parametrize("text, expected", [("yes", True), ("Y", True), ("no", False), (" N ", False)])
def test_parse_yes_no(text, expected):
    assert parse_yes_no(text) is expected


def test_parse_yes_no_rejects():
    with pytest.raises(ValidationError):
        parse_yes_no("maybe")


def test_parse_asset_id():
    assert parse_asset_id("7") == 7
    assert parse_asset_id("#12") == 12
    for bad in ("0", "-3", "abc", "1.5"):
        with pytest.raises(ValidationError):
            parse_asset_id(bad)


def test_parse_address():
    good = "0x" + "aB" * 20
    assert parse_address(f"  {good} ") == good
    for bad in ("0x123", "ab" * 21, "0x" + "g" * 40, "0x" + "a" * 41):
        with pytest.raises(ValidationError):
            parse_address(bad)
    assert same_address(good, good.lower())


def test_parse_content_hash():
    v0 = "Qm" + "a" * 44
    v1 = "b" + "a" * 58
    assert parse_content_hash(v0) == v0
    assert parse_content_hash(v1) == v1
    for bad in ("Qm123", "hello", "Qm" + "0" * 44):
        with pytest.raises(ValidationError):
            parse_content_hash(bad)


def test_format_ip_truncates():
    assert format_ip(10**18) == "1.0000"
    assert format_ip(123456789 * 10**10) == "1.2345"
    assert format_ip(0) == "0.0000"
