from wcwidth import wcswidth

from autebook.utils import truncate_and_pad


def test_short_text_is_padded():
    assert truncate_and_pad("abc", 6) == "abc   "


def test_long_text_is_truncated_with_ellipsis():
    result = truncate_and_pad("The Wandering Inn", 8)
    assert result == "The Wan…"


def test_wide_characters_count_double():
    result = truncate_and_pad("転生したらスライムだった件", 10)
    assert wcswidth(result) == 10
    assert result.endswith("…") or result.endswith(" ")


def test_empty():
    assert truncate_and_pad("", 3) == "   "
