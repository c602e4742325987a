"""
Name heuristics shared by the extractors and the rules.

Tool and parameter names arrive in every convention (snake_case, camelCase,
kebab-case); these helpers split them into words so identifier conventions
and shared entities can be recognized regardless of style.
"""
import re
from typing import List, Set

EXACT_ID_SCORE = 0.7
LOOSE_ID_SCORE = 0.3

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")
_LOOSE_ID_NAMES = {"uuid", "guid", "ref", "key", "handle", "slug"}
_LOOSE_ID_SUFFIXES = ("_ref", "-ref", "_key", "-key", "_uuid", "-uuid", "_handle", "-handle")

# Verbs and filler that say nothing about the entity a tool works on
_NON_ENTITY_WORDS = {
    "get", "list", "find", "search", "fetch", "create", "update", "delete", "read",
    "query", "lookup", "show", "describe", "retrieve", "load", "all", "by", "for",
    "details", "detail", "info", "id", "ids", "include",
}


def split_words(name: str) -> List[str]:
    """
    Split an identifier into lowercase words.

    Examples:
        >>> split_words("getStockSummary")
        ['get', 'stock', 'summary']

        >>> split_words("find_users")
        ['find', 'users']
    """
    spaced = _CAMEL_BOUNDARY.sub("_", name)
    return [w for w in re.split(r"[^A-Za-z0-9]+", spaced.lower()) if w]


def to_kebab_case(name: str) -> str:
    return "-".join(split_words(name))


def singular(word: str) -> str:
    if len(word) > 3 and word.endswith("ies"):
        return word[:-3] + "y"
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


def entity_stems(name: str) -> Set[str]:
    """Nouns a tool or parameter name refers to, singularized."""
    return {singular(w) for w in split_words(name) if w not in _NON_ENTITY_WORDS}


def identifier_match_score(param_name: str) -> float:
    """
    How strongly a parameter name follows an identifier convention.
    `id`, `*_id`, `*-id`, `*Id` (and plural forms) are exact matches;
    reference-like names such as `*_ref` or `uuid` are loose matches.
    """
    lowered = param_name.lower()
    if lowered in ("id", "ids"):
        return EXACT_ID_SCORE
    if lowered.endswith(("_id", "-id", "_ids", "-ids")):
        return EXACT_ID_SCORE
    if len(param_name) > 2 and param_name.endswith(("Id", "ID", "Ids", "IDs")):
        return EXACT_ID_SCORE
    if lowered in _LOOSE_ID_NAMES or lowered.endswith(_LOOSE_ID_SUFFIXES):
        return LOOSE_ID_SCORE
    if len(param_name) > 3 and param_name.endswith(("Ref", "Key", "Uuid")):
        return LOOSE_ID_SCORE
    return 0.0


def is_identifier_name(param_name: str) -> bool:
    return identifier_match_score(param_name) >= EXACT_ID_SCORE
