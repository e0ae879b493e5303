"""Resolve free-text category/location names to reference-data rows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from company_importer.db.models import Category, City, Country, SubArea, SubCategory
from company_importer.utils.slugs import slugify, unique_slug

logger = logging.getLogger(__name__)

# Shortest stored name allowed to satisfy a substring match
MIN_PARTIAL_LENGTH = 3

# Common English labels from scraped exports -> canonical category
CATEGORY_ALIASES: dict[str, tuple[str, str, str]] = {
    "software company": ("technology", "التكنولوجيا", "Laptop"),
    "website designer": ("technology", "التكنولوجيا", "Laptop"),
    "it company": ("technology", "التكنولوجيا", "Laptop"),
    "corporate office": ("business-services", "الخدمات التجارية", "Building"),
    "restaurant": ("food", "الأغذية والمطاعم", "Utensils"),
    "cafe": ("food", "الأغذية والمطاعم", "Utensils"),
    "hospital": ("healthcare", "الرعاية الصحية", "Heart"),
    "clinic": ("healthcare", "الرعاية الصحية", "Heart"),
    "pharmacy": ("healthcare", "الرعاية الصحية", "Heart"),
}

# Country label -> (code, canonical name)
COUNTRY_ALIASES: dict[str, tuple[str, str]] = {
    "syria": ("sy", "سوريا"),
    "سوريا": ("sy", "سوريا"),
    "lebanon": ("lb", "لبنان"),
    "لبنان": ("lb", "لبنان"),
    "jordan": ("jo", "الأردن"),
    "الأردن": ("jo", "الأردن"),
    "egypt": ("eg", "مصر"),
    "مصر": ("eg", "مصر"),
}

# City label -> (country code, canonical name, slug)
CITY_ALIASES: dict[str, tuple[str, str, str]] = {
    "damascus": ("sy", "دمشق", "damascus"),
    "دمشق": ("sy", "دمشق", "damascus"),
    "aleppo": ("sy", "حلب", "aleppo"),
    "حلب": ("sy", "حلب", "aleppo"),
    "homs": ("sy", "حمص", "homs"),
    "حمص": ("sy", "حمص", "homs"),
    "lattakia": ("sy", "اللاذقية", "lattakia"),
    "اللاذقية": ("sy", "اللاذقية", "lattakia"),
    "tartous": ("sy", "طرطوس", "tartous"),
    "طرطوس": ("sy", "طرطوس", "tartous"),
    "beirut": ("lb", "بيروت", "beirut"),
    "بيروت": ("lb", "بيروت", "beirut"),
    "amman": ("jo", "عمان", "amman"),
    "عمان": ("jo", "عمان", "amman"),
    "irbid": ("jo", "إربد", "irbid"),
    "إربد": ("jo", "إربد", "irbid"),
    "cairo": ("eg", "القاهرة", "cairo"),
    "القاهرة": ("eg", "القاهرة", "cairo"),
    "alexandria": ("eg", "الإسكندرية", "alexandria"),
    "الإسكندرية": ("eg", "الإسكندرية", "alexandria"),
}


@dataclass(frozen=True)
class ReferenceEntry:
    """Detached snapshot of a reference row, safe to cache across DB sessions."""

    id: int
    name: str
    slug: str
    parent_id: int | None = None


@dataclass(frozen=True)
class LocationMatch:
    country: ReferenceEntry
    city: ReferenceEntry


def find_match(entries: list[ReferenceEntry], text: str) -> ReferenceEntry | None:
    """Exact name, then exact slug, then substring match on name or slug."""
    needle = text.strip().lower()
    if not needle:
        return None
    needle_slug = slugify(needle, default="")

    for entry in entries:
        if entry.name.lower() == needle:
            return entry

    if needle_slug:
        for entry in entries:
            if entry.slug == needle_slug:
                return entry

    for entry in entries:
        name = entry.name.lower()
        if len(name) >= MIN_PARTIAL_LENGTH and (needle in name or name in needle):
            return entry
        if needle_slug and len(entry.slug) >= MIN_PARTIAL_LENGTH and (
            needle_slug in entry.slug or entry.slug in needle_slug
        ):
            return entry
    return None


def find_city_alias(text: str) -> tuple[str, str, str] | None:
    """Locate a known city name inside free text such as a street address."""
    haystack = text.strip().lower()
    if not haystack:
        return None
    if haystack in CITY_ALIASES:
        return CITY_ALIASES[haystack]
    # Longest labels first so "alexandria" wins over shorter overlaps
    for label in sorted(CITY_ALIASES, key=len, reverse=True):
        if label in haystack:
            return CITY_ALIASES[label]
    return None


class ReferenceDataMapper:
    """Per-import cache of reference rows with match-or-create semantics.

    Entries created while mapping are committed straight away and added to
    the cache, so later rows of the same import resolve to them instead of
    creating duplicates.
    """

    def __init__(self) -> None:
        self._cache: dict[type, list[ReferenceEntry]] = {}

    # -- cache -------------------------------------------------------------

    def _entries(self, db: Session, model: type) -> list[ReferenceEntry]:
        if model not in self._cache:
            self._cache[model] = [self._snapshot(row) for row in db.scalars(select(model))]
            logger.debug(f"Loaded {len(self._cache[model])} {model.__tablename__} rows")
        return self._cache[model]

    @staticmethod
    def _snapshot(row: Any) -> ReferenceEntry:
        if isinstance(row, Country):
            return ReferenceEntry(id=row.id, name=row.name, slug=row.code)
        parent_id = None
        if isinstance(row, SubCategory):
            parent_id = row.category_id
        elif isinstance(row, City):
            parent_id = row.country_id
        elif isinstance(row, SubArea):
            parent_id = row.city_id
        return ReferenceEntry(id=row.id, name=row.name, slug=row.slug, parent_id=parent_id)

    def _children(
        self, db: Session, model: type, parent_id: int
    ) -> list[ReferenceEntry]:
        return [entry for entry in self._entries(db, model) if entry.parent_id == parent_id]

    def _create(self, db: Session, row: Any) -> ReferenceEntry | None:
        """Persist a new reference row and register it in the cache."""
        model = type(row)
        try:
            db.add(row)
            db.commit()
        except IntegrityError:
            # Another import created the same slug first; reload and let
            # the caller retry the match.
            db.rollback()
            logger.warning(f"Concurrent insert on {model.__tablename__}, reloading cache")
            self._cache.pop(model, None)
            return None
        entry = self._snapshot(row)
        self._entries(db, model).append(entry)
        logger.info(f"Created {model.__tablename__} entry '{entry.name}' ({entry.slug})")
        return entry

    # -- categories ----------------------------------------------------------

    def map_category(
        self, db: Session, name: str, allow_create: bool = True
    ) -> ReferenceEntry | None:
        if not name or not name.strip():
            return None
        name = name.strip()
        entries = self._entries(db, Category)

        match = find_match(entries, name)
        if match:
            return match

        alias = CATEGORY_ALIASES.get(name.lower())
        if alias:
            alias_slug, alias_name, icon = alias
            for entry in entries:
                if entry.slug == alias_slug:
                    return entry
            if allow_create:
                created = self._create(
                    db,
                    Category(
                        slug=alias_slug,
                        name=alias_name,
                        icon=icon,
                        description=alias_name,
                    ),
                )
                return created or find_match(self._entries(db, Category), alias_name)

        if not allow_create:
            logger.info(f"No category match for '{name}'")
            return None

        taken = {entry.slug for entry in entries}
        slug = unique_slug(slugify(name, default="category"), taken.__contains__)
        created = self._create(
            db,
            Category(slug=slug, name=name, icon="Building", description=name),
        )
        return created or find_match(self._entries(db, Category), name)

    def map_sub_category(
        self, db: Session, name: str, category_id: int, allow_create: bool = True
    ) -> ReferenceEntry | None:
        if not name or not name.strip() or not category_id:
            return None
        name = name.strip()
        siblings = self._children(db, SubCategory, category_id)
        match = find_match(siblings, name)
        if match or not allow_create:
            return match

        taken = {entry.slug for entry in siblings}
        slug = unique_slug(slugify(name, default="sub-category"), taken.__contains__)
        created = self._create(
            db,
            SubCategory(
                slug=slug, name=name, icon="Tag", description=name, category_id=category_id
            ),
        )
        return created or find_match(self._children(db, SubCategory, category_id), name)

    # -- locations -------------------------------------------------------------

    def map_country(
        self, db: Session, name: str, allow_create: bool = True
    ) -> ReferenceEntry | None:
        if not name or not name.strip():
            return None
        name = name.strip()
        entries = self._entries(db, Country)

        match = find_match(entries, name)
        if match:
            return match

        alias = COUNTRY_ALIASES.get(name.lower())
        if alias:
            return self._country_by_code(db, alias[0], alias[1], allow_create)
        if not allow_create:
            return None

        taken = {entry.slug for entry in entries}
        code = unique_slug(slugify(name, default="country")[:12], taken.__contains__)
        created = self._create(db, Country(code=code, name=name))
        return created or find_match(self._entries(db, Country), name)

    def _country_by_code(
        self, db: Session, code: str, name: str, allow_create: bool
    ) -> ReferenceEntry | None:
        for entry in self._entries(db, Country):
            if entry.slug == code:
                return entry
        if not allow_create:
            return None
        created = self._create(db, Country(code=code, name=name))
        if created:
            return created
        return next((e for e in self._entries(db, Country) if e.slug == code), None)

    def map_city(
        self,
        db: Session,
        name: str,
        country: ReferenceEntry,
        allow_create: bool = True,
    ) -> ReferenceEntry | None:
        if not name or not name.strip():
            return None
        name = name.strip()
        siblings = self._children(db, City, country.id)
        match = find_match(siblings, name)
        if match:
            return match

        alias = CITY_ALIASES.get(name.lower())
        canonical_name, base_slug = name, slugify(name, default="city")
        if alias:
            _, canonical_name, base_slug = alias
            for entry in siblings:
                if entry.slug == base_slug or entry.name == canonical_name:
                    return entry

        if not allow_create:
            logger.info(f"No city match for '{name}' in country {country.slug}")
            return None

        # City slugs are unique across countries
        taken = {entry.slug for entry in self._entries(db, City)}
        slug = unique_slug(base_slug, taken.__contains__)
        created = self._create(
            db, City(slug=slug, name=canonical_name, country_id=country.id)
        )
        return created or find_match(self._children(db, City, country.id), canonical_name)

    def map_location(
        self,
        db: Session,
        *,
        country: str = "",
        city: str = "",
        address: str = "",
        allow_create: bool = True,
    ) -> LocationMatch | None:
        """Resolve country+city columns, falling back to a city found in the address."""
        if country and city:
            country_entry = self.map_country(db, country, allow_create)
            if country_entry is None:
                return None
            city_entry = self.map_city(db, city, country_entry, allow_create)
            if city_entry is None:
                return None
            return LocationMatch(country=country_entry, city=city_entry)

        alias = find_city_alias(city) if city else None
        if alias is None and address:
            alias = find_city_alias(address)
        if alias is None:
            return None

        country_code, city_name, _ = alias
        country_name = next(
            (label for code, label in COUNTRY_ALIASES.values() if code == country_code),
            country_code,
        )
        country_entry = self._country_by_code(db, country_code, country_name, allow_create)
        if country_entry is None:
            return None
        city_entry = self.map_city(db, city_name, country_entry, allow_create)
        if city_entry is None:
            return None
        return LocationMatch(country=country_entry, city=city_entry)

    def map_sub_area(
        self, db: Session, name: str, city_id: int, allow_create: bool = True
    ) -> ReferenceEntry | None:
        if not name or not name.strip() or not city_id:
            return None
        name = name.strip()
        siblings = self._children(db, SubArea, city_id)
        match = find_match(siblings, name)
        if match or not allow_create:
            return match

        taken = {entry.slug for entry in siblings}
        slug = unique_slug(slugify(name, default="area"), taken.__contains__)
        created = self._create(db, SubArea(slug=slug, name=name, city_id=city_id))
        return created or find_match(self._children(db, SubArea, city_id), name)
