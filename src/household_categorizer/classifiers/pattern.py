import re

_CORPORATE_SUFFIXES = re.compile(r"\b(?:pty ltd|ltd|inc|corp|group|store|shop)\b")
_DIGITS = re.compile(r"\d+")
_PUNCTUATION = re.compile(r"[^\w\s]|_")
_WHITESPACE = re.compile(r"\s+")

# Unrelated words tolerated between the words of a multi-word pattern.
MAX_WORD_GAP = 2


def clean_text(text: str) -> str:
    """Lowercase, drop corporate suffixes, digits and punctuation."""
    cleaned = text.lower()
    cleaned = _PUNCTUATION.sub(" ", cleaned)
    cleaned = _CORPORATE_SUFFIXES.sub(" ", cleaned)
    cleaned = _DIGITS.sub(" ", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


def _bounded(pattern: str) -> str:
    return rf"(?<!\w){re.escape(pattern)}(?!\w)"


class PatternMatcher:
    """
    Decides whether a transaction description satisfies a rule pattern.

    Strategies are tried in order and the first one that succeeds wins:
    whole-word match on the raw text, whole-word match on cleaned text,
    then an in-order match of a multi-word pattern.
    """

    @staticmethod
    def matches(description: str, pattern: str) -> bool:
        lowered_pattern = _WHITESPACE.sub(" ", pattern.lower()).strip()
        if not lowered_pattern or not description:
            return False

        lowered_description = _WHITESPACE.sub(" ", description.lower())
        if re.search(_bounded(lowered_pattern), lowered_description):
            return True

        clean_pattern = clean_text(pattern)
        if not clean_pattern:
            return False
        clean_description = clean_text(description)
        if re.search(_bounded(clean_pattern), clean_description):
            return True

        words = clean_pattern.split(" ")
        if len(words) < 2:
            return False
        gap = rf"\s+(?:\w+\s+){{0,{MAX_WORD_GAP}}}"
        multi_word = gap.join(_bounded(word) for word in words)
        return re.search(multi_word, clean_description) is not None
