from __future__ import annotations

from sqlalchemy import func, select

from company_importer.db.models import Category, City, Country
from company_importer.services.reference_mapper import ReferenceDataMapper, find_city_alias


def test_unmapped_category_created_once_per_import(db) -> None:
    mapper = ReferenceDataMapper()
    first = mapper.map_category(db, "Consulting", allow_create=True)
    second = mapper.map_category(db, "consulting", allow_create=True)

    assert first is not None
    assert first.id == second.id
    assert db.scalar(select(func.count()).select_from(Category)) == 1
    assert db.scalar(select(Category.slug)) == "consulting"


def test_new_mapper_matches_committed_entries(db) -> None:
    created = ReferenceDataMapper().map_category(db, "Consulting")
    assert ReferenceDataMapper().map_category(db, "CONSULTING").id == created.id


def test_category_miss_without_create_returns_none(db) -> None:
    assert ReferenceDataMapper().map_category(db, "Consulting", allow_create=False) is None
    assert db.scalar(select(func.count()).select_from(Category)) == 0


def test_category_partial_and_slug_match(db) -> None:
    db.add(Category(name="Technology", slug="technology"))
    db.commit()
    mapper = ReferenceDataMapper()
    assert mapper.map_category(db, "technology services", allow_create=False).slug == "technology"
    assert mapper.map_category(db, "Technology!", allow_create=False).slug == "technology"


def test_category_alias_table(db) -> None:
    entry = ReferenceDataMapper().map_category(db, "Restaurant")
    assert entry.slug == "food"
    assert ReferenceDataMapper().map_category(db, "Cafe", allow_create=False).id == entry.id


def test_sub_category_scoped_to_parent(db) -> None:
    mapper = ReferenceDataMapper()
    food = mapper.map_category(db, "Restaurant")
    tech = mapper.map_category(db, "Software company")
    grill = mapper.map_sub_category(db, "Grill", food.id)
    other = mapper.map_sub_category(db, "Grill", tech.id)
    assert grill.parent_id == food.id
    assert other.parent_id == tech.id
    assert grill.id != other.id


def test_location_from_country_and_city_columns(db) -> None:
    mapper = ReferenceDataMapper()
    location = mapper.map_location(db, country="Syria", city="Damascus")
    assert location.country.slug == "sy"
    assert location.city.slug == "damascus"
    assert location.city.parent_id == location.country.id


def test_location_falls_back_to_city_in_address(db) -> None:
    location = ReferenceDataMapper().map_location(db, address="Mazzeh Highway, Damascus")
    assert location is not None
    assert (location.country.slug, location.city.slug) == ("sy", "damascus")


def test_location_unresolved_returns_none(db) -> None:
    assert ReferenceDataMapper().map_location(db, address="Somewhere far") is None
    assert (
        ReferenceDataMapper().map_location(
            db, country="Atlantis", city="Poseidonia", allow_create=False
        )
        is None
    )


def test_city_slug_unique_across_countries(db) -> None:
    mapper = ReferenceDataMapper()
    lebanon = mapper.map_country(db, "Lebanon")
    libya = mapper.map_country(db, "Libya")
    first = mapper.map_city(db, "Tripoli", lebanon)
    second = mapper.map_city(db, "Tripoli", libya)
    assert first.slug == "tripoli"
    assert second.slug == "tripoli-1"
    assert db.scalar(select(func.count()).select_from(City)) == 2
    assert db.scalar(select(func.count()).select_from(Country)) == 2


def test_find_city_alias_prefers_known_labels() -> None:
    assert find_city_alias("Corniche, Alexandria") == ("eg", "الإسكندرية", "alexandria")
    assert find_city_alias("") is None
