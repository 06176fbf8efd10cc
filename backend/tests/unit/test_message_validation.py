import pytest

from dmengine.domain.chat.validation import looks_like_spam, normalize_emoji, normalize_text
from dmengine.domain.common.errors import InvalidMessage


def test_text_is_trimmed():
    assert normalize_text("  hello there \n") == "hello there"


@pytest.mark.parametrize("text", ["", "   ", "\n\t", None])
def test_empty_text_rejected(text):
    with pytest.raises(InvalidMessage) as exc_info:
        normalize_text(text)
    assert exc_info.value.reason == InvalidMessage.EMPTY


def test_length_limit():
    assert normalize_text("ab" * 5, max_length=10) == "ab" * 5
    with pytest.raises(InvalidMessage) as exc_info:
        normalize_text("ab" * 6, max_length=10)
    assert exc_info.value.reason == InvalidMessage.TOO_LONG


@pytest.mark.parametrize(
    "text,spam",
    [
        ("heyyyyyyyy", False),
        ("heyyyyyyyyyy", True),
        ("see https://a.io and https://b.io and www.c.io", False),
        ("https://a.io https://b.io https://c.io https://d.io", True),
        ("plain message", False),
    ],
)
def test_spam_heuristics(text, spam):
    assert looks_like_spam(text) is spam


def test_spam_rejected_as_invalid():
    with pytest.raises(InvalidMessage) as exc_info:
        normalize_text("!!!!!!!!!!!!")
    assert exc_info.value.reason == InvalidMessage.SPAM


def test_emoji_validation():
    assert normalize_emoji(" 👍 ") == "👍"
    for bad in ("", "   ", "x" * 17):
        with pytest.raises(InvalidMessage):
            normalize_emoji(bad)
