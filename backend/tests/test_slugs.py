from __future__ import annotations

from company_importer.utils.slugs import slugify, transliterate, unique_slug


def test_slugify_folds_accented_latin() -> None:
    assert slugify("Café Zürich") == "cafe-zurich"


def test_slugify_transliterates_arabic_with_article() -> None:
    slug = slugify("مطعم الشام")
    assert slug.isascii()
    assert slug.endswith("al-sham")


def test_slugify_strips_punctuation_and_collapses_dashes() -> None:
    assert slugify("  Acme -- Tools & Co.  ") == "acme-tools-co"


def test_slugify_falls_back_to_default() -> None:
    assert slugify("", default="company") == "company"
    assert slugify("!!!", default="company") == "company"


def test_transliterate_drops_diacritics() -> None:
    assert transliterate("دِمَشق") == transliterate("دمشق")


def test_unique_slug_appends_counter() -> None:
    taken = {"acme", "acme-1"}
    assert unique_slug("acme", taken.__contains__) == "acme-2"
    assert unique_slug("fresh", taken.__contains__) == "fresh"
