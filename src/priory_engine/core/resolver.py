from __future__ import annotations

from typing import Iterable

from .normalize import normalize_phrase

WORD_ALIASES: dict[str, tuple[str, ...]] = {
    "franciscan": ("friar", "monk", "brother"),
    "friar": ("franciscan", "monk", "brother"),
    "father": ("priest", "friar", "cleric"),
    "priest": ("father", "friar", "cleric"),
    "cart": ("wagon", "wagoner"),
    "wagon": ("cart",),
    "gate": ("church gate", "archway"),
    "church": ("chapel",),
    "market": ("square", "market square"),
    "steward": ("reeve", "bursar"),
}

_IGNORED_TOKENS = frozenset({"to", "at", "the", "a", "an", "with", "into", "toward", "towards"})


def tokenize(phrase: str) -> list[str]:
    return [token for token in phrase.split(" ") if token and token not in _IGNORED_TOKENS]


def expand_tokens(tokens: Iterable[str]) -> set[str]:
    expanded = {token.lower() for token in tokens}
    for token in list(expanded):
        expanded.update(WORD_ALIASES.get(token, ()))
    return expanded


def match_score(target: set[str], candidate: set[str]) -> int:
    overlap = len(target & candidate)
    if overlap == 0:
        return 0
    return overlap * 10 - abs(len(candidate) - len(target))


def resolve_key(keys: Iterable[str], target: str | None) -> str | None:
    """Pick the scene key that best matches ``target``, or ``None``.

    Exact (normalized) matches win outright. Otherwise keys are scored by
    alias-expanded token overlap; the first key with the highest positive
    score is returned, so callers control tie-breaks through key order.
    """
    key_list = list(keys)
    if not key_list or not target:
        return None

    normalized_target = normalize_phrase(target)
    for key in key_list:
        if normalize_phrase(key) == normalized_target:
            return key

    target_tokens = expand_tokens(tokenize(normalized_target))
    best_key: str | None = None
    best_score = 0
    for key in key_list:
        score = match_score(target_tokens, expand_tokens(tokenize(normalize_phrase(key))))
        if score > best_score:
            best_key = key
            best_score = score
    return best_key
