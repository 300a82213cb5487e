"""
SqlCatalogProvider — reads the offers_* tables through the async session
factory and hands plain row dicts to the configurator session.

Implements the catalog, rates, price and location providers in one class.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.models.orm_models import (
    OfferLaborRate,
    OfferLocation,
    OfferPackage,
    OfferPackageItem,
    OfferParameterDefinition,
    OfferParameterLink,
    OfferProduct,
    OfferProductGroup,
    OfferProductPrice,
    OfferSetting,
)

logger = logging.getLogger("elektro-db.catalog")

GLOBAL_MARKUP_KEY = "global_markup_pct"


def row_to_dict(row: Any) -> Dict[str, Any]:
    """Column values of an ORM row; Decimals become floats, None JSON lists stay None."""
    result: Dict[str, Any] = {}
    for column in row.__table__.columns:
        value = getattr(row, column.key)
        if isinstance(value, Decimal):
            value = float(value)
        result[column.key] = value
    return result


def product_row(row: OfferProduct) -> Dict[str, Any]:
    data = row_to_dict(row)
    data["availability"] = list(data.get("availability") or [])
    return data


def parameter_row(row: OfferParameterDefinition) -> Dict[str, Any]:
    data = row_to_dict(row)
    data["options"] = list(data.get("options") or [])
    return data


def price_row(row: OfferProductPrice) -> Dict[str, Any]:
    data = row_to_dict(row)
    data["factors"] = {k: float(v) for k, v in (data.get("factors") or {}).items() if v is not None}
    return data


def link_row(row: OfferParameterLink) -> Dict[str, Any]:
    return {"package_id": row.package_id, "param_key": row.param_key}


def parse_markup(value: Optional[str]) -> float:
    if value is None or str(value).strip() == "":
        return 0.0
    try:
        return float(str(value).replace(",", "."))
    except ValueError:
        logger.warning(f"Invalid global markup setting {value!r}; using 0")
        return 0.0


class SqlCatalogProvider:

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self.session_factory = session_factory

    async def _all(self, model, order_by) -> List[Any]:
        async with self.session_factory() as session:
            result = await session.execute(select(model).order_by(order_by))
            return list(result.scalars().all())

    # ── Catalog ───────────────────────────────────────────────────────────────
    async def get_packages(self) -> List[Dict[str, Any]]:
        return [row_to_dict(r) for r in await self._all(OfferPackage, OfferPackage.id)]

    async def get_package_items(self) -> List[Dict[str, Any]]:
        return [row_to_dict(r) for r in await self._all(OfferPackageItem, OfferPackageItem.id)]

    async def get_product_groups(self) -> List[Dict[str, Any]]:
        return [row_to_dict(r) for r in await self._all(OfferProductGroup, OfferProductGroup.group_id)]

    async def get_products(self) -> List[Dict[str, Any]]:
        return [product_row(r) for r in await self._all(OfferProduct, OfferProduct.product_id)]

    async def get_parameter_definitions(self) -> List[Dict[str, Any]]:
        rows = await self._all(OfferParameterDefinition, OfferParameterDefinition.param_key)
        return [parameter_row(r) for r in rows]

    async def get_parameter_links(self) -> List[Dict[str, Any]]:
        return [link_row(r) for r in await self._all(OfferParameterLink, OfferParameterLink.id)]

    # ── Rates ─────────────────────────────────────────────────────────────────
    async def get_labor_rates(self) -> List[Dict[str, Any]]:
        return [row_to_dict(r) for r in await self._all(OfferLaborRate, OfferLaborRate.loc_id)]

    async def get_global_markup(self) -> float:
        async with self.session_factory() as session:
            setting = await session.get(OfferSetting, GLOBAL_MARKUP_KEY)
        return parse_markup(setting.value if setting else None)

    # ── Prices ────────────────────────────────────────────────────────────────
    async def get_product_prices(self) -> List[Dict[str, Any]]:
        return [price_row(r) for r in await self._all(OfferProductPrice, OfferProductPrice.product_id)]

    # ── Locations ─────────────────────────────────────────────────────────────
    async def get_locations(self) -> List[Dict[str, Any]]:
        rows = await self._all(OfferLocation, OfferLocation.loc_id)
        return [{"loc_id": r.loc_id, "name": r.name} for r in rows]

    async def get_current_location_id(self) -> Optional[str]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(OfferLocation.loc_id).where(OfferLocation.is_current.is_(True)).limit(1)
            )
            return result.scalar_one_or_none()
