"""ORM Models for the Elektro offers catalog — SQLAlchemy 2.0"""
from typing import Any, Optional
from sqlalchemy import (
    String, Text, Boolean, Integer, Numeric, JSON,
    ForeignKey, UniqueConstraint, Index
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column
from app.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ── PACKAGES ──────────────────────────────────────────────────────────────────
class OfferPackage(Base):
    __tablename__ = "offers_packages"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    quality_level: Mapped[Optional[str]] = mapped_column(String(20))
    description: Mapped[Optional[str]] = mapped_column(Text)
    is_optional: Mapped[bool] = mapped_column(Boolean, default=False)


class OfferPackageItem(Base):
    __tablename__ = "offers_package_items"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package_id: Mapped[int] = mapped_column(Integer, ForeignKey("offers_packages.id"), nullable=False)
    produkt_gruppe_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("offers_product_groups.group_id"), nullable=False
    )
    quantity_base: Mapped[float] = mapped_column(Numeric(12, 4), default=0)
    multipliers_material: Mapped[Optional[Any]] = mapped_column(JSONType)
    multipliers_hours: Mapped[Optional[Any]] = mapped_column(JSONType)
    product_selector: Mapped[Optional[Any]] = mapped_column(JSONType)

    __table_args__ = (
        Index("ix_offers_package_items_package", "package_id"),
    )


# ── PRODUCTS ──────────────────────────────────────────────────────────────────
class OfferProductGroup(Base):
    __tablename__ = "offers_product_groups"
    group_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    description: Mapped[Optional[str]] = mapped_column(Text)


class OfferProduct(Base):
    __tablename__ = "offers_products"
    product_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), default="Stk")
    unit_price: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    produkt_gruppe: Mapped[Optional[str]] = mapped_column(
        String(50), ForeignKey("offers_product_groups.group_id")
    )
    qualitaetsstufe: Mapped[Optional[str]] = mapped_column(String(20))
    stunden_meister: Mapped[float] = mapped_column(Numeric(8, 3), default=0)
    stunden_geselle: Mapped[float] = mapped_column(Numeric(8, 3), default=0)
    stunden_monteur: Mapped[float] = mapped_column(Numeric(8, 3), default=0)
    category: Mapped[Optional[str]] = mapped_column(String(100))
    availability: Mapped[Optional[Any]] = mapped_column(JSONType)  # list of location names
    module_slots: Mapped[Optional[int]] = mapped_column(Integer)

    __table_args__ = (
        Index("ix_offers_products_group", "produkt_gruppe"),
    )


# ── PARAMETERS ────────────────────────────────────────────────────────────────
class OfferParameterDefinition(Base):
    __tablename__ = "offers_package_parameter_definitions"
    param_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    param_type: Mapped[str] = mapped_column(String(20), nullable=False)  # boolean|number|select|string
    unit: Mapped[Optional[str]] = mapped_column(String(20))
    default_value: Mapped[Optional[str]] = mapped_column(String(100))
    is_global: Mapped[bool] = mapped_column(Boolean, default=False)
    label_true: Mapped[Optional[str]] = mapped_column(String(100))
    label_false: Mapped[Optional[str]] = mapped_column(String(100))
    options: Mapped[Optional[Any]] = mapped_column(JSONType)


class OfferParameterLink(Base):
    __tablename__ = "offers_package_parameter_links"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    package_id: Mapped[int] = mapped_column(Integer, ForeignKey("offers_packages.id"), nullable=False)
    param_key: Mapped[str] = mapped_column(
        String(100), ForeignKey("offers_package_parameter_definitions.param_key"), nullable=False
    )

    __table_args__ = (
        UniqueConstraint("package_id", "param_key", name="uq_offers_parameter_link"),
    )


# ── LOCATIONS, RATES, PRICES ──────────────────────────────────────────────────
class OfferLocation(Base):
    __tablename__ = "offers_locations"
    loc_id: Mapped[str] = mapped_column(String(20), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    is_current: Mapped[bool] = mapped_column(Boolean, default=False)


class OfferLaborRate(Base):
    __tablename__ = "offers_labor_rates"
    loc_id: Mapped[str] = mapped_column(String(20), ForeignKey("offers_locations.loc_id"), primary_key=True)
    stundensatz_meister: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    stundensatz_geselle: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    stundensatz_monteur: Mapped[float] = mapped_column(Numeric(10, 2), default=0)


class OfferProductPrice(Base):
    __tablename__ = "offers_product_prices"
    product_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("offers_products.product_id"), primary_key=True
    )
    base_price: Mapped[Optional[float]] = mapped_column(Numeric(12, 2))
    factors: Mapped[Optional[Any]] = mapped_column(JSONType)  # {location name: factor}


class OfferSetting(Base):
    __tablename__ = "offers_settings"
    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[Optional[str]] = mapped_column(String(255))
