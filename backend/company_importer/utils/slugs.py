"""URL-safe ASCII slugs for names written in Arabic or Latin script."""

from __future__ import annotations

import re
import unicodedata
from typing import Callable

ARABIC_TO_LATIN = {
    "ا": "a",
    "أ": "a",
    "إ": "i",
    "آ": "aa",
    "ب": "b",
    "ت": "t",
    "ث": "th",
    "ج": "j",
    "ح": "h",
    "خ": "kh",
    "د": "d",
    "ذ": "dh",
    "ر": "r",
    "ز": "z",
    "س": "s",
    "ش": "sh",
    "ص": "s",
    "ض": "d",
    "ط": "t",
    "ظ": "z",
    "ع": "a",
    "غ": "gh",
    "ف": "f",
    "ق": "q",
    "ك": "k",
    "ل": "l",
    "م": "m",
    "ن": "n",
    "ه": "h",
    "و": "w",
    "ي": "y",
    "ى": "a",
    "ة": "h",
    "ء": "a",
    "ئ": "e",
    "ؤ": "o",
}

_ARABIC_ARTICLE = re.compile(r"(^|\s)ال")
_ARABIC_DIACRITICS = re.compile(r"[\u064B-\u065F\u0670\u0640]")
_NON_SLUG = re.compile(r"[^a-z0-9-]+")
_DASHES = re.compile(r"-{2,}")


def transliterate(text: str) -> str:
    """Map Arabic letters to Latin and fold accented Latin to plain ASCII."""
    text = _ARABIC_DIACRITICS.sub("", text)
    text = _ARABIC_ARTICLE.sub(lambda m: f"{m.group(1)}al-", text)
    text = "".join(ARABIC_TO_LATIN.get(char, char) for char in text)
    decomposed = unicodedata.normalize("NFKD", text)
    return decomposed.encode("ascii", "ignore").decode("ascii")


def slugify(text: str | None, default: str = "item") -> str:
    """Return a lowercase ASCII slug; ``default`` when nothing survives."""
    if not text:
        return default
    value = transliterate(text.strip().lower())
    value = re.sub(r"[\s_]+", "-", value)
    value = _NON_SLUG.sub("", value)
    value = _DASHES.sub("-", value).strip("-")
    return value or default


def unique_slug(base: str, exists: Callable[[str], bool]) -> str:
    """Append ``-1``, ``-2``... to ``base`` until ``exists`` reports it free."""
    candidate = base
    counter = 1
    while exists(candidate):
        candidate = f"{base}-{counter}"
        counter += 1
    return candidate
