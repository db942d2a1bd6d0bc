"""
String similarity matching for owner names and addresses
"""
import re
from typing import Optional

import jellyfish
import numpy as np

VOWELS = frozenset("aeiouy")
# 'e' is listed with the consonants as well; vowel pairs are checked first
CONSONANTS = frozenset("bcdefghjklmnpqrstvwxz")

VOWEL_SUBSTITUTION_COST = (6 * 5) / (20 * 19)
CONSONANT_SUBSTITUTION_COST = 1.0
MIXED_SUBSTITUTION_COST = (6 + 6) / 19
INDEL_COST = 1.0


def substitution_cost(a: str, b: str) -> float:
    """
    Cost of replacing one character with another

    Swapping one vowel for another is cheap, since vowel spelling drifts the
    most across transcriptions of the same name.
    """
    if a == b:
        return 0.0
    a, b = a.lower(), b.lower()
    if a == b:
        return 0.0
    if a in VOWELS and b in VOWELS:
        return VOWEL_SUBSTITUTION_COST
    if a in CONSONANTS and b in CONSONANTS:
        return CONSONANT_SUBSTITUTION_COST
    return MIXED_SUBSTITUTION_COST


def weighted_levenshtein_distance(str1: str, str2: str) -> float:
    """
    Levenshtein distance with vowel/consonant weighted substitutions

    Args:
        str1: First string
        str2: Second string

    Returns:
        Accumulated edit cost
    """
    str1 = str1 or ""
    str2 = str2 or ""
    track = np.zeros((len(str2) + 1, len(str1) + 1), dtype=float)
    track[0, :] = np.arange(len(str1) + 1)
    track[:, 0] = np.arange(len(str2) + 1)

    for j in range(1, len(str2) + 1):
        for i in range(1, len(str1) + 1):
            track[j, i] = min(
                track[j, i - 1] + INDEL_COST,
                track[j - 1, i] + INDEL_COST,
                track[j - 1, i - 1] + substitution_cost(str1[i - 1], str2[j - 1]),
            )
    return float(track[len(str2), len(str1)])


def levenshtein_similarity(str1: Optional[str], str2: Optional[str]) -> float:
    """
    Similarity in [0, 1] as 1 - weighted distance / longer length

    Two empty strings score 0, since absence carries no evidence of a match.
    """
    if not str1 or not str2:
        return 0.0
    if str1 == str2:
        return 1.0
    max_len = max(len(str1), len(str2))
    distance = weighted_levenshtein_distance(str1, str2)
    return max(0.0, 1.0 - distance / max_len)


def normalize_composite_name(name: str) -> str:
    """
    Normalize a multi-word name for whole-string comparison
    """
    if not name:
        return ""
    normalized = name.upper()
    normalized = re.sub(r"[^\w\s&,-]", "", normalized)
    return " ".join(normalized.split())


def composite_name_similarity(name1: str, name2: str) -> float:
    """Similarity of two full name strings after composite normalization"""
    return levenshtein_similarity(
        normalize_composite_name(name1),
        normalize_composite_name(name2),
    )


def jaro_winkler_similarity(str1: Optional[str], str2: Optional[str]) -> float:
    """Jaro-Winkler similarity, used for street names where prefixes carry the identity"""
    if not str1 or not str2:
        return 0.0
    if str1 == str2:
        return 1.0
    return float(jellyfish.jaro_winkler_similarity(str1.upper(), str2.upper()))
