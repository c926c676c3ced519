"""
String normalisation and fuzzy matching shared by the suggestion engine,
the validator and the save path.
"""

import re
from typing import Any, Dict, List, Optional, Tuple


# canonical subject labels for common abbreviations
SUBJECT_SYNONYMS: Dict[str, str] = {
    "math": "Mathématiques",
    "maths": "Mathématiques",
    "mathematiques": "Mathématiques",
    "hg": "Histoire-Géographie",
    "histoire geo": "Histoire-Géographie",
    "histoire géo": "Histoire-Géographie",
    "fr": "Français",
    "ang": "Anglais",
}

# wider table used only to propose corrections, never applied silently
COMMON_SUBJECTS: Dict[str, str] = {
    "math": "Mathématiques",
    "maths": "Mathématiques",
    "français": "Français",
    "francais": "Français",
    "anglais": "Anglais",
    "histoire": "Histoire-Géographie",
    "géographie": "Histoire-Géographie",
    "geographie": "Histoire-Géographie",
    "sciences": "Sciences",
    "physique": "Physique-Chimie",
    "chimie": "Physique-Chimie",
    "eps": "Éducation Physique et Sportive",
    "sport": "Éducation Physique et Sportive",
    "musique": "Musique",
    "arts": "Arts plastiques",
}

NAME_SIMILARITY_THRESHOLD = 0.8
LABEL_SIMILARITY_THRESHOLD = 0.7
CONTAINMENT_CONFIDENCE = 0.9

_UPPER = "A-ZÀÁÂÃÄÅÆÇÈÉÊËÌÍÎÏÐÑÒÓÔÕÖØÙÚÛÜÝÞ"
_WHITESPACE = re.compile(r"\s+")
_NOT_NAME_CHAR = re.compile(r"[^\w\s'\-]|[\d_]")
_VALID_NAME_CHARS = re.compile(r"^(?:[^\W\d_]|[\s'\-])+$")
_NOT_ASCII_LETTER = re.compile(r"[^a-z]")
_NOT_CLASS_CHAR = re.compile(r"[^\w\s-]")

_LABELLED_NAME_PATTERNS: List[Tuple[re.Pattern, bool]] = [
    # (pattern, surname captured first)
    (re.compile(r"nom[:\s]*(\S+).*prénom[:\s]*(\S+)", re.IGNORECASE), True),
    (re.compile(r"prénom[:\s]*(\S+).*nom[:\s]*(\S+)", re.IGNORECASE), False),
    (re.compile(r"élève[:\s]*(\S+)\s+(\S+)", re.IGNORECASE), False),
    (re.compile(r"étudiant[:\s]*(\S+)\s+(\S+)", re.IGNORECASE), False),
    (re.compile(rf"^([{_UPPER}]{{2,}})\s+([A-Za-zÀ-ÿ]+)$"), True),
    (re.compile(rf"^([A-Za-zÀ-ÿ]+)\s+([{_UPPER}]{{2,}})$"), False),
]

_CLASS_PATTERNS = [
    re.compile(r"classe[:\s]*([a-z0-9]+)", re.IGNORECASE),
    re.compile(r"niveau[:\s]*([a-z0-9]+)", re.IGNORECASE),
    re.compile(r"section[:\s]*([a-z0-9]+)", re.IGNORECASE),
    re.compile(r"\b(cp\d?|ce[12]|cm[12]|2nde|1[èe]re|terminale)\b", re.IGNORECASE),
    re.compile(r"\b([0-9]+)[èe]me\b", re.IGNORECASE),
    re.compile(r"\b([0-9]+[a-z])\b", re.IGNORECASE),
]


def levenshtein_distance(a: str, b: str) -> int:
    """Classic edit distance over the full strings, O(len(a) * len(b))."""
    rows = len(a) + 1
    cols = len(b) + 1
    matrix = [[0] * cols for _ in range(rows)]

    for i in range(rows):
        matrix[i][0] = i
    for j in range(cols):
        matrix[0][j] = j

    for i in range(1, rows):
        for j in range(1, cols):
            cost = 0 if a[i - 1] == b[j - 1] else 1
            matrix[i][j] = min(
                matrix[i - 1][j] + 1,
                matrix[i][j - 1] + 1,
                matrix[i - 1][j - 1] + cost,
            )

    return matrix[rows - 1][cols - 1]


def similarity_ratio(a: str, b: str) -> float:
    """1 - distance / longest length; 0 when either side is empty."""
    if not a or not b:
        return 0.0
    longest = max(len(a), len(b))
    return 1 - levenshtein_distance(a, b) / longest


def normalize_label(value: Optional[str]) -> str:
    if not value:
        return ""
    return _WHITESPACE.sub(" ", str(value).strip().lower())


# ---- names ----

def normalize_name(name: Any) -> str:
    if not name or not isinstance(name, str):
        return ""

    cleaned = _WHITESPACE.sub(" ", name.strip())
    cleaned = _NOT_NAME_CHAR.sub("", cleaned).strip()
    return " ".join(
        word[:1].upper() + word[1:].lower()
        for word in cleaned.split(" ")
        if word
    )


def is_valid_name(name: Any) -> bool:
    if not name or not isinstance(name, str):
        return False
    if not _VALID_NAME_CHARS.match(name.strip()):
        return False
    normalized = normalize_name(name)
    return 2 <= len(normalized) <= 50


def parse_full_name(full_name: Any) -> Dict[str, str]:
    """Split a full name written in one of the usual report-card layouts."""
    if not full_name or not isinstance(full_name, str):
        return {"first_name": "", "last_name": ""}

    cleaned = _WHITESPACE.sub(" ", full_name.strip())

    for pattern, surname_first in _LABELLED_NAME_PATTERNS:
        match = pattern.search(cleaned)
        if match:
            if surname_first:
                last_name, first_name = match.group(1), match.group(2)
            else:
                first_name, last_name = match.group(1), match.group(2)
            return {
                "first_name": normalize_name(first_name),
                "last_name": normalize_name(last_name),
            }

    parts = [part for part in cleaned.split(" ") if part]
    if len(parts) >= 2:
        # an all-caps leading token is the surname
        if parts[0] == parts[0].upper() and len(parts[0]) > 2:
            return {
                "first_name": normalize_name(" ".join(parts[1:])),
                "last_name": normalize_name(parts[0]),
            }
        return {
            "first_name": normalize_name(parts[0]),
            "last_name": normalize_name(" ".join(parts[1:])),
        }
    if len(parts) == 1:
        return {"first_name": normalize_name(parts[0]), "last_name": ""}

    return {"first_name": "", "last_name": ""}


def split_full_name(full_name: Optional[str]) -> Tuple[str, str]:
    """
    Split used when a record is saved: the last token is the last name,
    everything before it the first name. A single token fills both.
    """
    cleaned = (full_name or "").strip()
    parts = cleaned.split()
    if len(parts) > 1:
        return " ".join(parts[:-1]), parts[-1]
    return cleaned, cleaned


def _name_key(value: Any) -> str:
    return _NOT_ASCII_LETTER.sub("", str(value or "").lower())


def _name_parts(name: Any) -> Tuple[str, str]:
    if isinstance(name, dict):
        first = name.get("first_name", name.get("firstName", ""))
        last = name.get("last_name", name.get("lastName", ""))
    else:
        first = getattr(name, "first_name", "")
        last = getattr(name, "last_name", "")
    return _name_key(first), _name_key(last)


def names_similar(name1: Any, name2: Any) -> bool:
    """
    Two first/last name pairs denote the same person when they match
    exactly, match with first and last swapped, or are both more than 80%
    similar field by field.
    """
    if not name1 or not name2:
        return False

    first1, last1 = _name_parts(name1)
    first2, last2 = _name_parts(name2)

    if first1 == first2 and last1 == last2:
        return True
    if first1 == last2 and last1 == first2:
        return True

    return (
        similarity_ratio(first1, first2) > NAME_SIMILARITY_THRESHOLD
        and similarity_ratio(last1, last2) > NAME_SIMILARITY_THRESHOLD
    )


# ---- classes ----

def normalize_class_name(class_name: Any) -> str:
    if not class_name or not isinstance(class_name, str):
        return ""
    cleaned = _WHITESPACE.sub(" ", class_name.strip())
    return _NOT_CLASS_CHAR.sub("", cleaned).upper()


def is_valid_class_name(class_name: Any) -> bool:
    if not class_name or not isinstance(class_name, str):
        return False
    normalized = normalize_class_name(class_name)
    return 0 < len(normalized) <= 20


def suggest_class_from_text(text: Any) -> str:
    if not text or not isinstance(text, str):
        return ""
    lowered = text.lower()
    for pattern in _CLASS_PATTERNS:
        match = pattern.search(lowered)
        if match and match.group(1):
            return normalize_class_name(match.group(1))
    return ""


# ---- subjects ----

def normalize_subject(name: Any) -> str:
    if not name:
        return ""
    raw = str(name).strip()
    key = _WHITESPACE.sub(" ", raw.lower())
    key = re.sub(r"[-_]", " ", key)
    return SUBJECT_SYNONYMS.get(key, raw)


def match_labels(
    original: str,
    candidates: List[str],
    normalizer=normalize_label,
) -> List[Tuple[str, float, str]]:
    """
    Score every candidate label against `original`.

    Exact matches after normalisation are skipped, containment either way
    scores 0.9, otherwise the edit-distance similarity counts when it is
    above 0.7. Returns (candidate, confidence, kind) tuples, unsorted; a
    candidate may appear twice when it both contains and resembles the input.
    """
    matches = []
    normalized = normalizer(original)
    if not normalized:
        return matches

    for candidate in candidates:
        normalized_candidate = normalizer(candidate)
        if not normalized_candidate or normalized == normalized_candidate:
            continue

        if normalized in normalized_candidate or normalized_candidate in normalized:
            matches.append((candidate, CONTAINMENT_CONFIDENCE, "containment"))

        similarity = similarity_ratio(normalized, normalized_candidate)
        if similarity > LABEL_SIMILARITY_THRESHOLD:
            matches.append((candidate, similarity, "distance"))

    return matches
