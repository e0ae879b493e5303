"""Database models package."""
from company_importer.db.models.company import Company, CompanyImage, Review
from company_importer.db.models.reference import (
    Category,
    City,
    Country,
    SubArea,
    SubCategory,
)

__all__ = [
    "Category",
    "City",
    "Company",
    "CompanyImage",
    "Country",
    "Review",
    "SubArea",
    "SubCategory",
]
