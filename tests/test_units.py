import pytest

from core.units import parse_wei, wei_to_gwei


@pytest.mark.parametrize(
    "raw,expected",
    [
        (None, None),
        ("", None),
        (20000000000, 20000000000),
        ("20000000000", 20000000000),
        ("0x4a817c800", 20000000000),
        ("1.5e3", 1500),
    ],
)
def test_parse_wei(raw, expected):
    assert parse_wei(raw) == expected


@pytest.mark.parametrize("raw", ["abc", "0xzz", "-5", True, "NaN"])
def test_parse_wei_rejects(raw):
    with pytest.raises(ValueError):
        parse_wei(raw)


def test_wei_to_gwei():
    assert wei_to_gwei(60 * 10**9) == 60.0
