"""
Merchant/title keyword comparison.

Bank descriptors are noisy ("POS DEBIT NETFLIX.COM 866-579"), event titles
are short ("Netflix"). Both sides are reduced to significant words before
comparing.
"""

import re


STOP_WORDS = frozenset([
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for",
    "of", "with", "by", "from", "as", "is", "was", "are", "were", "been",
    "be", "have", "has", "had", "do", "does", "did", "will", "would",
    "could", "should", "may", "might", "must", "shall", "can", "need",
    # Transaction jargon that appears on every statement line
    "payment", "purchase", "transaction", "debit", "credit", "card",
    "pos", "ach", "check", "deposit", "withdrawal", "transfer",
])

NON_LETTERS = re.compile(r"[^a-z\s]")

MIN_WORD_LENGTH = 3
MIN_PARTIAL_LENGTH = 4


def extract_keywords(text: str) -> list[str]:
    """Lowercase alphabetic words of 3+ letters that aren't stop words."""
    words = NON_LETTERS.sub(" ", text.lower()).split()
    return [w for w in words if len(w) >= MIN_WORD_LENGTH and w not in STOP_WORDS]


def has_significant_keyword_match(first: list[str], second: list[str]) -> bool:
    """
    True if the keyword lists share a word, or if a word of 4+ letters
    from one contains (or is contained in) a 4+ letter word of the other.
    """
    if not first or not second:
        return False

    second_set = set(second)
    for word in first:
        if word in second_set:
            return True
        if len(word) >= MIN_PARTIAL_LENGTH:
            for other in second:
                if len(other) >= MIN_PARTIAL_LENGTH and (word in other or other in word):
                    return True
    return False


def titles_match(merchant_text: str, event_title: str) -> bool:
    """
    Fuzzy merchant/title comparison used by the title stage of auto-match.

    Either string containing the other counts, as does a significant
    keyword match. Empty strings never match.
    """
    merchant = merchant_text.strip().lower()
    title = event_title.strip().lower()
    if not merchant or not title:
        return False
    if title in merchant or merchant in title:
        return True
    return has_significant_keyword_match(
        extract_keywords(merchant), extract_keywords(title)
    )
