"""Query text utilities: FTS5 sanitisation, keyword extraction, excerpts."""

from typing import List


STOP_WORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "can", "do", "does",
    "for", "from", "has", "have", "how", "i", "in", "is", "it", "its", "my",
    "not", "of", "on", "or", "our", "should", "so", "that", "the", "their",
    "them", "then", "there", "these", "they", "this", "to", "was", "we",
    "what", "when", "where", "which", "who", "why", "will", "with", "would",
    "you", "your",
})

# Tokens kept when every term of a question is a stop word
FALLBACK_KEYWORDS = 6


def sanitize_fts_query(query: str) -> str:
    """
    Turn free text into an FTS5 MATCH expression that cannot inject operators.

    Each whitespace-separated term is wrapped in double quotes with any
    inner quotes removed. A trailing ``*`` is kept outside the quotes so
    prefix matching still works. Terms are OR-ed together.

    Returns an empty string when nothing survives; callers must treat that
    as "no results", not "match everything".

    Example:
        >>> sanitize_fts_query('foo* bar"baz')
        '"foo"* OR "barbaz"'
    """
    terms = []
    for term in query.split():
        is_prefix = term.endswith("*")
        base = term[:-1] if is_prefix else term
        clean = base.replace('"', "")
        if not clean:
            continue
        terms.append(f'"{clean}"*' if is_prefix else f'"{clean}"')
    return " OR ".join(terms)


def _clean_token(token: str) -> str:
    return "".join(c for c in token.lower() if c.isalnum())


def extract_keywords(query: str) -> List[str]:
    """
    Extract search keywords from a natural-language question.

    Tokens are lower-cased and stripped of non-alphanumerics; tokens shorter
    than two characters and stop words are dropped. Order of appearance is
    kept.

    For stop-word-only questions ("what is this about") the first few
    cleaned tokens are returned instead, so keyword search still has
    something to match.
    """
    cleaned = [t for t in (_clean_token(w) for w in query.split()) if len(t) >= 2]
    keywords = [t for t in cleaned if t not in STOP_WORDS]
    if not keywords:
        return cleaned[:FALLBACK_KEYWORDS]
    return keywords


def excerpt(text: str, max_words: int = 28) -> str:
    """First ``max_words`` whitespace-delimited words of ``text``."""
    return " ".join(text.split()[:max_words])
