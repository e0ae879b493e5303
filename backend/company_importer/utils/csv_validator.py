"""Validate CSV headers and normalize company rows before persistence."""

from __future__ import annotations

import calendar
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any

from company_importer.core.exceptions import CsvFormatError, RecordValidationError
from company_importer.services.import_session import ImportSettings

# Canonical field -> accepted header spellings (exports are mostly French)
COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "name": ("Nom", "Name", "name", "Company", "company_name"),
    "category": ("Catégorie", "Categorie", "Category", "category"),
    "sub_category": ("SubCategory", "subCategory", "Sub Category", "sub_category"),
    "address": ("Adresse", "Address", "address"),
    "phone": ("Téléphone", "Telephone", "Phone", "phone"),
    "website": ("SiteWeb", "Website", "website"),
    "email": ("Email", "E-mail", "email"),
    "description": ("Description", "description"),
    "note": ("Note", "Rating", "rating"),
    "images": ("Images", "Photos", "images", "photos"),
    "hero_image": ("HeroImage", "hero_image", "Hero Image"),
    "country": ("Country", "country", "Pays"),
    "city": ("City", "city", "Ville"),
    "sub_area": ("SubArea", "subArea", "Sub Area", "sub_area"),
    "external_id": ("ExternalId", "external_id", "PlaceId", "place_id"),
    "reviews": ("Reviews", "reviews", "Avis"),
}

REQUIRED_COLUMNS = ("name", "category")

NAME_MIN_LENGTH = 2
NAME_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 2000
SHORT_DESCRIPTION_LENGTH = 150
MAX_IMAGES_PER_ROW = 10
MAX_RATING = 5.0
MAX_REVIEWS_PER_ROW = 10
REVIEW_TITLE_LENGTH = 50
DEFAULT_REVIEW_RATING = 5
DEFAULT_REVIEW_AUTHOR = "Anonymous"
DEFAULT_REVIEW_TITLE = "General review"

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
RELATIVE_DATE_PATTERN = re.compile(r"(\d+)?\s*\b(?:an?\s+)?(year|month|week|day)s?\b")

# Directory listings are Arabic; keys are lower-cased category names
CATEGORY_DESCRIPTIONS: dict[str, str] = {
    "software company": "شركة متخصصة في تطوير البرمجيات والحلول التقنية",
    "website designer": "شركة متخصصة في تصميم وتطوير المواقع الإلكترونية",
    "corporate office": "مكتب شركة يقدم خدمات تجارية ومهنية",
    "it company": "شركة تقنية معلومات تقدم حلول تكنولوجية متطورة",
    "restaurant": "مطعم يقدم أشهى الأطباق والوجبات",
    "cafe": "مقهى يقدم المشروبات الساخنة والباردة",
    "hospital": "مستشفى يقدم خدمات الرعاية الصحية الشاملة",
    "clinic": "عيادة طبية متخصصة",
    "pharmacy": "صيدلية تقدم الأدوية والمستلزمات الطبية",
}

CATEGORY_SERVICES: dict[str, tuple[str, ...]] = {
    "software company": ("تطوير البرمجيات", "تطبيقات الويب", "تطبيقات الهاتف", "استشارات تقنية"),
    "website designer": ("تصميم المواقع", "تطوير المواقع", "تحسين محركات البحث", "استضافة المواقع"),
    "restaurant": ("تناول في المطعم", "خدمة التوصيل", "المناسبات والحفلات", "طعام طازج"),
    "hospital": ("طب عام", "طوارئ 24/7", "فحوصات طبية", "عمليات جراحية"),
    "clinic": ("فحوصات طبية", "استشارات طبية", "علاج متخصص"),
}


@dataclass
class ReviewRecord:
    author: str
    text: str
    rating: int
    title: str
    created_at: datetime


@dataclass
class CompanyRecord:
    """A cleaned row, ready for mapping and persistence."""

    name: str
    category: str = ""
    sub_category: str = ""
    address: str = ""
    phone: str = ""
    website: str = ""
    email: str = ""
    description: str = ""
    country: str = ""
    city: str = ""
    sub_area: str = ""
    external_id: str = ""
    rating: float = 0.0
    review_count: int = 0
    images: list[str] = field(default_factory=list)
    hero_image: str = ""
    services: list[str] = field(default_factory=list)
    reviews: list[ReviewRecord] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def short_description(self) -> str | None:
        if not self.description:
            return None
        return self.description[:SHORT_DESCRIPTION_LENGTH]


def _header_set(headers: list[str]) -> set[str]:
    return {header.strip().lower() for header in headers if header}


def validate_headers(headers: list[str] | None) -> None:
    """Ensure the file carries at least a name and a category column."""
    if not headers:
        raise CsvFormatError("CSV requires a header row")
    present = _header_set(headers)
    missing = [
        COLUMN_ALIASES[column][0]
        for column in REQUIRED_COLUMNS
        if not any(alias.lower() in present for alias in COLUMN_ALIASES[column])
    ]
    if missing:
        raise CsvFormatError(f"Missing required column(s): {', '.join(missing)}")


def read_field(row: dict[str, Any], column: str) -> str:
    """Return the first non-empty value among a column's header aliases."""
    lowered = None
    for alias in COLUMN_ALIASES[column]:
        value = row.get(alias)
        if value is None:
            # Headers are matched case-insensitively, e.g. "NOM" or "CITY"
            if lowered is None:
                lowered = {str(key).strip().lower(): val for key, val in row.items() if key}
            value = lowered.get(alias.lower())
        if isinstance(value, str) and value.strip():
            return " ".join(value.split())
        if value is not None and not isinstance(value, str):
            return str(value).strip()
    return ""


def row_label(row: dict[str, Any]) -> str | None:
    """Best-effort company name for audit entries."""
    return read_field(row, "name") or None


def format_phone_number(phone: str) -> str:
    """Normalize local Levant/Gulf numbers to +<country> form.

    Numbers that cannot be normalized are returned unchanged so that the
    phone validator can report them.
    """
    if not phone:
        return ""

    clean = re.sub(r"[^\d+]", "", phone)

    if clean.startswith("00963"):
        clean = "+963" + clean[5:]
    elif clean.startswith("0963"):
        clean = "+963" + clean[4:]
    elif clean.startswith("963"):
        clean = "+" + clean
    elif clean.startswith("09") and len(clean) == 10:
        clean = "+963" + clean[1:]
    elif clean.startswith("9") and len(clean) == 9:
        clean = "+963" + clean
    elif not clean.startswith("+") and len(clean) >= 7:
        if clean.startswith("07") and len(clean) == 10:
            clean = "+962" + clean[1:]  # Jordan
        elif clean.startswith("05") and len(clean) == 10:
            clean = "+966" + clean[1:]  # Saudi Arabia
        elif clean[:2] in ("50", "52", "54", "55", "56") and len(clean) == 9:
            clean = "+971" + clean  # UAE
        elif len(clean) in (7, 8):
            clean = "+96311" + clean  # Damascus landline
        elif len(clean) == 10 and clean.startswith("0"):
            clean = "+963" + clean[1:]

    if len(clean) < 10 or not clean.startswith("+"):
        return phone
    return clean


def extract_rating(note: str) -> tuple[float, int, str | None]:
    """Parse ``"4.5 (120)"`` into rating, review count and an optional warning."""
    if not note:
        return 0.0, 0, None
    rating_match = re.search(r"(\d+(?:[.,]\d+)?)", note)
    count_match = re.search(r"\((\d+)\)", note)
    rating = float(rating_match.group(1).replace(",", ".")) if rating_match else 0.0
    review_count = int(count_match.group(1)) if count_match else 0
    warning = None
    if rating > MAX_RATING:
        warning = f"rating {rating} clamped to {MAX_RATING}"
        rating = MAX_RATING
    return rating, review_count, warning


def extract_image_urls(images_text: str) -> tuple[list[str], str | None]:
    """Split an image cell on ``;``/``,`` keeping unique http(s) URLs."""
    if not images_text:
        return [], None
    urls: list[str] = []
    for part in re.split(r"[;,]", images_text):
        url = part.strip()
        if url.startswith(("http://", "https://")) and url not in urls:
            urls.append(url)
    if len(urls) > MAX_IMAGES_PER_ROW:
        warning = f"{len(urls)} images supplied, only the first {MAX_IMAGES_PER_ROW} kept"
        return urls[:MAX_IMAGES_PER_ROW], warning
    return urls, None


def default_description(name: str, category: str) -> str:
    if not category:
        return name
    return f"{name} - {CATEGORY_DESCRIPTIONS.get(category.strip().lower(), category)}"


def services_for_category(category: str) -> list[str]:
    return list(CATEGORY_SERVICES.get(category.strip().lower(), ()))


def _shift_months(moment: datetime, months: int) -> datetime:
    total = moment.year * 12 + moment.month - 1 + months
    year, month_index = divmod(total, 12)
    day = min(moment.day, calendar.monthrange(year, month_index + 1)[1])
    return moment.replace(year=year, month=month_index + 1, day=day)


def parse_review_date(value: Any, now: datetime) -> datetime:
    """Turn ``"2 years ago"``-style or ISO dates into a timestamp; ``now`` otherwise."""
    if not value:
        return now
    text = str(value).strip()
    match = RELATIVE_DATE_PATTERN.search(text.lower())
    if match:
        amount = int(match.group(1) or 1)
        unit = match.group(2)
        if unit == "year":
            return _shift_months(now, -12 * amount)
        if unit == "month":
            return _shift_months(now, -amount)
        if unit == "week":
            return now - timedelta(weeks=amount)
        return now - timedelta(days=amount)
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return now
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _review_rating(value: Any) -> int:
    try:
        rating = float(value)
    except (TypeError, ValueError):
        return DEFAULT_REVIEW_RATING
    if not 1 <= rating <= MAX_RATING:
        return DEFAULT_REVIEW_RATING
    return int(round(rating))


def extract_reviews(
    reviews: str | list[Any], now: datetime | None = None
) -> tuple[list[ReviewRecord], list[str]]:
    """Parse the ``Reviews`` JSON list (author, text, rating, date, title).

    CSV cells carry the list as JSON text; JSON payloads may pass it as is.
    """
    if not reviews:
        return [], []
    if isinstance(reviews, list):
        payload: Any = reviews
    else:
        try:
            payload = json.loads(reviews)
        except ValueError:
            return [], ["reviews ignored: not valid JSON"]
    if not isinstance(payload, list):
        return [], ["reviews ignored: expected a JSON list"]

    now = now or datetime.now(timezone.utc)
    warnings = []
    if len(payload) > MAX_REVIEWS_PER_ROW:
        warnings.append(
            f"{len(payload)} reviews supplied, only the first {MAX_REVIEWS_PER_ROW} kept"
        )

    parsed = []
    for item in payload[:MAX_REVIEWS_PER_ROW]:
        if not isinstance(item, dict):
            continue
        text = str(item.get("text") or "").strip()
        title = str(item.get("title") or "").strip()
        if not title:
            title = f"{text[:REVIEW_TITLE_LENGTH]}..." if text else DEFAULT_REVIEW_TITLE
        parsed.append(
            ReviewRecord(
                author=str(item.get("author") or "").strip() or DEFAULT_REVIEW_AUTHOR,
                text=text,
                rating=_review_rating(item.get("rating")),
                title=title,
                created_at=parse_review_date(item.get("date"), now),
            )
        )
    return parsed, warnings


def normalize_row(row: dict[str, Any]) -> CompanyRecord:
    """Clean individual row (trim strings, derive rating/images, clamp lengths)."""
    warnings: list[str] = []

    name = read_field(row, "name")
    category = read_field(row, "category")

    rating, review_count, rating_warning = extract_rating(read_field(row, "note"))
    if rating_warning:
        warnings.append(rating_warning)

    images, images_warning = extract_image_urls(read_field(row, "images"))
    if images_warning:
        warnings.append(images_warning)

    hero_image = read_field(row, "hero_image")
    if hero_image and not hero_image.startswith(("http://", "https://")):
        warnings.append("hero image ignored: not an http(s) URL")
        hero_image = ""

    description = read_field(row, "description") or default_description(name, category)
    if len(description) > DESCRIPTION_MAX_LENGTH:
        warnings.append(
            f"description truncated from {len(description)} to {DESCRIPTION_MAX_LENGTH} characters"
        )
        description = description[:DESCRIPTION_MAX_LENGTH]

    raw_reviews = next(
        (row[alias] for alias in COLUMN_ALIASES["reviews"] if isinstance(row.get(alias), list)),
        None,
    )
    reviews, review_warnings = extract_reviews(
        raw_reviews if raw_reviews is not None else read_field(row, "reviews")
    )
    warnings.extend(review_warnings)

    return CompanyRecord(
        name=name,
        category=category,
        sub_category=read_field(row, "sub_category"),
        address=read_field(row, "address"),
        phone=format_phone_number(read_field(row, "phone")),
        website=read_field(row, "website"),
        email=read_field(row, "email").lower(),
        description=description,
        country=read_field(row, "country"),
        city=read_field(row, "city"),
        sub_area=read_field(row, "sub_area"),
        external_id=read_field(row, "external_id"),
        rating=rating,
        review_count=review_count,
        images=images,
        hero_image=hero_image,
        services=services_for_category(category),
        reviews=reviews,
        warnings=warnings,
    )


def validate_phone_number(phone: str) -> str | None:
    """Return an error message for a malformed phone, ``None`` when acceptable."""
    if not phone:
        return None
    clean = re.sub(r"[\s\-().\[\]]", "", phone)
    if not re.fullmatch(r"\+?\d+", clean):
        return "phone contains invalid characters"
    if clean.startswith("+"):
        if not 8 <= len(clean) <= 17:
            return "international phone must be 8-17 characters"
        if clean.startswith("+963") and len(clean) != 13:
            return "Syrian phone must be 13 characters (+963xxxxxxxxx)"
        return None
    if not 7 <= len(clean) <= 15:
        return "local phone must be 7-15 digits"
    return None


def validate_record(record: CompanyRecord, settings: ImportSettings) -> None:
    """Raise RecordValidationError for rows that cannot be imported."""
    if not record.name:
        raise RecordValidationError("name required")
    if len(record.name) < NAME_MIN_LENGTH:
        raise RecordValidationError("name too short")
    if len(record.name) > NAME_MAX_LENGTH:
        raise RecordValidationError("name too long")

    if record.email and settings.validate_emails and not EMAIL_PATTERN.match(record.email):
        raise RecordValidationError(f"invalid email: {record.email}")

    if record.phone and settings.validate_phones:
        phone_error = validate_phone_number(record.phone)
        if phone_error:
            raise RecordValidationError(phone_error)

    if settings.strict_validation and record.warnings:
        raise RecordValidationError(f"strict validation: {record.warnings[0]}")
