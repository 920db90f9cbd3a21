import pytest

from marketindex.core.exceptions import InvalidSymbolTag
from marketindex.modules.content.services.content import normalize_symbol_tag


@pytest.mark.parametrize("raw, expected", [
    ("AAPL", "AAPL"),
    ("aapl", "AAPL"),
    ("$tsla", "TSLA"),
    (" Nv-Da! ", "NVDA"),
    ("b.r.k", "BRK"),
    ("X", "X"),
])
def test_normalizes_case_and_strips_non_letters(raw, expected):
    assert normalize_symbol_tag(raw) == expected


@pytest.mark.parametrize("raw", ["GOOGLE", "123", "$$$", "   ", "ABCDEF"])
def test_rejects_instead_of_truncating(raw):
    with pytest.raises(InvalidSymbolTag):
        normalize_symbol_tag(raw)


def test_missing_tag_is_allowed():
    assert normalize_symbol_tag(None) is None
    assert normalize_symbol_tag("") is None
