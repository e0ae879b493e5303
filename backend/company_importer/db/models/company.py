"""SQLAlchemy models for company listings written by the importer."""

from sqlalchemy import (
    Boolean,
    Column,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    func,
)
from sqlalchemy.types import DateTime

from company_importer.db.base import Base


class Company(Base):
    __tablename__ = "companies"

    id = Column(Integer, primary_key=True)
    external_id = Column(String(128), index=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), nullable=False, unique=True, index=True)
    description = Column(Text)
    short_description = Column(String(255))
    category_id = Column(Integer, ForeignKey("categories.id"), nullable=False, index=True)
    sub_category_id = Column(Integer, ForeignKey("sub_categories.id"))
    country_id = Column(Integer, ForeignKey("countries.id"), nullable=False)
    city_id = Column(Integer, ForeignKey("cities.id"), nullable=False, index=True)
    sub_area_id = Column(Integer, ForeignKey("sub_areas.id"))
    phone = Column(String(32))
    email = Column(String(255))
    website = Column(Text)
    address = Column(Text)
    rating = Column(Float, nullable=False, default=0.0)
    reviews_count = Column(Integer, nullable=False, default=0)
    main_image = Column(Text)
    services = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (Index("ix_companies_name_lower", func.lower(name)),)


class CompanyImage(Base):
    __tablename__ = "company_images"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    image_url = Column(Text, nullable=False)
    source_url = Column(Text)
    sort_order = Column(Integer, nullable=False, default=0)
    alt_text = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Review(Base):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    user_name = Column(String(255), nullable=False)
    rating = Column(Integer, nullable=False)
    title = Column(String(255))
    comment = Column(Text)
    is_approved = Column(Boolean, nullable=False, default=True)
    is_verified = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
