"""Business logic for importing a single company row."""

from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from company_importer.core.exceptions import RecordValidationError
from company_importer.db.models import Company, CompanyImage, Review
from company_importer.db.session import get_fresh_session
from company_importer.services.import_session import ImportSettings, RowOutcome
from company_importer.services.media_fetcher import MediaFetcher
from company_importer.services.reference_mapper import (
    LocationMatch,
    ReferenceDataMapper,
    ReferenceEntry,
)
from company_importer.storage.media_storage import StoredMedia
from company_importer.utils.csv_validator import (
    CompanyRecord,
    normalize_row,
    validate_record,
)
from company_importer.utils.slugs import slugify, unique_slug

logger = logging.getLogger(__name__)


class RowProcessor:
    """Turns one parsed row into one RowOutcome; never raises.

    A processor is bound to one import session so that its mapper cache
    carries reference entries created by earlier rows.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] | None = None,
        mapper: ReferenceDataMapper | None = None,
        media_fetcher: MediaFetcher | None = None,
    ):
        self._session_factory = session_factory or get_fresh_session
        self.mapper = mapper or ReferenceDataMapper()
        self._media_fetcher = media_fetcher

    @property
    def media_fetcher(self) -> MediaFetcher:
        if self._media_fetcher is None:
            self._media_fetcher = MediaFetcher()
        return self._media_fetcher

    def process(
        self, row: dict[str, Any], settings: ImportSettings, row_number: int
    ) -> RowOutcome:
        db = self._session_factory()
        try:
            return self._process(db, row, settings, row_number)
        except Exception as exc:
            db.rollback()
            logger.error(f"Unexpected error importing row {row_number}: {exc}", exc_info=True)
            return RowOutcome.failed(str(exc) or exc.__class__.__name__)
        finally:
            db.close()

    def _process(
        self,
        db: Session,
        row: dict[str, Any],
        settings: ImportSettings,
        row_number: int,
    ) -> RowOutcome:
        record = normalize_row(row)
        if not record.name:
            return RowOutcome.failed("name required")

        existing = self.find_existing(db, record)
        if existing is not None and not settings.update_existing and settings.skip_duplicates:
            return RowOutcome.skip(
                f"company already exists (id={existing.id}) and duplicates are skipped"
            )

        try:
            validate_record(record, settings)
        except RecordValidationError as exc:
            return RowOutcome.failed(str(exc), record.warnings)

        category = self.mapper.map_category(
            db, record.category, allow_create=settings.create_missing_categories
        )
        if category is None:
            if not record.category:
                return RowOutcome.failed("category required", record.warnings)
            return RowOutcome.failed(
                f'category "{record.category}" not found', record.warnings
            )

        sub_category = None
        if record.sub_category:
            sub_category = self.mapper.map_sub_category(
                db,
                record.sub_category,
                category.id,
                allow_create=settings.create_missing_categories,
            )
            if sub_category is None:
                record.warnings.append(f'sub-category "{record.sub_category}" ignored')

        location = self.mapper.map_location(
            db,
            country=record.country,
            city=record.city,
            address=record.address,
            allow_create=settings.create_missing_cities,
        )
        if location is None:
            return RowOutcome.failed(
                f'location not found: country/city "{record.country}/{record.city}", '
                f'address "{record.address}"',
                record.warnings,
            )

        sub_area = None
        if record.sub_area:
            sub_area = self.mapper.map_sub_area(
                db,
                record.sub_area,
                location.city.id,
                allow_create=settings.create_missing_cities,
            )
            if sub_area is None:
                record.warnings.append(f'sub-area "{record.sub_area}" ignored')

        target = existing if settings.update_existing else None
        company = self.save_company(db, record, target, category, sub_category, location, sub_area)
        if record.reviews:
            self.attach_reviews(db, company, record)
        db.commit()
        logger.debug(
            f"Row {row_number}: {'updated' if target else 'created'} company {company.id}"
        )

        outcome = RowOutcome(success=True, company_id=company.id, warnings=record.warnings)
        if settings.download_images and (record.hero_image or record.images):
            self.import_media(db, company, record, outcome)
        return outcome

    def find_existing(self, db: Session, record: CompanyRecord) -> Company | None:
        """Natural key lookup: external id when supplied, else case-insensitive name."""
        if record.external_id:
            query = select(Company).where(Company.external_id == record.external_id)
        else:
            query = select(Company).where(func.lower(Company.name) == record.name.lower())
        return db.scalars(query.order_by(Company.id).limit(1)).first()

    def save_company(
        self,
        db: Session,
        record: CompanyRecord,
        target: Company | None,
        category: ReferenceEntry,
        sub_category: ReferenceEntry | None,
        location: LocationMatch,
        sub_area: ReferenceEntry | None,
    ) -> Company:
        """Create a new company, or overwrite ``target`` in place."""
        company = target
        if company is None:
            base_slug = slugify(record.name, default="company")
            slug = unique_slug(
                base_slug,
                lambda candidate: db.scalar(
                    select(Company.id).where(Company.slug == candidate)
                )
                is not None,
            )
            company = Company(slug=slug, is_active=True, is_verified=False)
            db.add(company)

        company.name = record.name
        company.external_id = record.external_id or company.external_id
        company.description = record.description or None
        company.short_description = record.short_description
        company.category_id = category.id
        company.sub_category_id = sub_category.id if sub_category else None
        company.country_id = location.country.id
        company.city_id = location.city.id
        company.sub_area_id = sub_area.id if sub_area else None
        company.phone = record.phone or None
        company.email = record.email or None
        company.website = record.website or None
        company.address = record.address or None
        company.rating = record.rating
        company.reviews_count = record.review_count
        company.services = record.services or company.services or []
        db.flush()
        return company

    def attach_reviews(self, db: Session, company: Company, record: CompanyRecord) -> None:
        """Store the row's reviews, then recompute rating and count from the table."""
        known = {
            (user_name, comment)
            for user_name, comment in db.execute(
                select(Review.user_name, Review.comment).where(Review.company_id == company.id)
            )
        }
        for review in record.reviews:
            # Re-importing a row must not duplicate its reviews
            if (review.author, review.text) in known:
                continue
            known.add((review.author, review.text))
            db.add(
                Review(
                    company_id=company.id,
                    user_name=review.author[:255],
                    rating=review.rating,
                    title=review.title[:255],
                    comment=review.text,
                    is_approved=True,
                    is_verified=False,
                    created_at=review.created_at,
                )
            )
        db.flush()

        average, count = db.execute(
            select(func.avg(Review.rating), func.count(Review.id)).where(
                Review.company_id == company.id
            )
        ).one()
        company.rating = round(float(average or 0.0), 2)
        company.reviews_count = count

    def import_media(
        self,
        db: Session,
        company: Company,
        record: CompanyRecord,
        outcome: RowOutcome,
    ) -> None:
        """Attach images in a commit of their own.

        The company is already committed, so a failure here discards the
        row's images (rows and files) and leaves the outcome successful.
        """
        stored: list[StoredMedia] = []
        try:
            self.attach_media(db, company, record, outcome, stored)
            db.commit()
        except Exception as exc:
            db.rollback()
            for media in stored:
                self.media_fetcher.storage.delete(media.local_url)
            hero_urls, gallery_urls = self.image_urls(record)
            outcome.images_downloaded = 0
            outcome.images_failed = len(hero_urls) + len(gallery_urls)
            outcome.warnings.append(f"images discarded: {exc}")
            logger.error(
                f"Media import failed for company {outcome.company_id}: {exc}", exc_info=True
            )

    @staticmethod
    def image_urls(record: CompanyRecord) -> tuple[list[str], list[str]]:
        hero_urls = [record.hero_image] if record.hero_image else []
        gallery_urls = [url for url in record.images if url != record.hero_image]
        return hero_urls, gallery_urls

    def attach_media(
        self,
        db: Session,
        company: Company,
        record: CompanyRecord,
        outcome: RowOutcome,
        stored: list[StoredMedia],
    ) -> None:
        """Fetch hero and gallery images; failures only bump the counters."""
        hero_urls, gallery_urls = self.image_urls(record)
        next_index = 0
        hero_stored = None
        if hero_urls:
            hero = self.media_fetcher.fetch_all(hero_urls, company.id, start_index=0)
            stored.extend(hero.stored)
            outcome.images_downloaded += hero.downloaded
            outcome.images_failed += hero.failed
            if hero.stored:
                hero_stored = hero.stored[0]
                company.main_image = hero_stored.local_url
                db.add(
                    CompanyImage(
                        company_id=company.id,
                        image_url=hero_stored.local_url,
                        source_url=hero_stored.source_url,
                        sort_order=0,
                        alt_text=f"{company.name} main image",
                    )
                )
                next_index = 1

        if not gallery_urls:
            return

        gallery = self.media_fetcher.fetch_all(gallery_urls, company.id, start_index=next_index)
        stored.extend(gallery.stored)
        outcome.images_downloaded += gallery.downloaded
        outcome.images_failed += gallery.failed
        for position, media in enumerate(gallery.stored, start=1):
            db.add(
                CompanyImage(
                    company_id=company.id,
                    image_url=media.local_url,
                    source_url=media.source_url,
                    sort_order=media.sort_order,
                    alt_text=f"{company.name} image {position}",
                )
            )
        if hero_stored is None and gallery.stored:
            company.main_image = gallery.stored[0].local_url
