from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class Package(BaseModel):
    """
    Purchasable bundle of installation work (e.g. "Badezimmer Sanierung").
    Immutable reference data loaded from the catalog.
    """
    id: int
    name: str
    category: Optional[str] = Field(None, description="e.g. Sanierung, Zusatzleistung")
    quality_level: Optional[str] = Field(None, description="Basic | Standard | Premium")
    description: Optional[str] = None
    is_optional: bool = False


class PackageItemRule(BaseModel):
    """One row describing how much of a product group a package needs."""
    id: int
    package_id: int
    produkt_gruppe_id: str = Field(..., description="Target product group, e.g. GRP-SOC-SKT")
    quantity_base: float = 0.0
    multipliers_material: Any = Field(None, description="Formula spec (object or array)")
    multipliers_hours: Any = Field(None, description="Formula spec; may carry a 'floor' key")
    product_selector: Optional[Dict[str, Any]] = Field(
        None, description="Quantity-bucketed selector rules and/or selected_product_id"
    )


class ProductGroup(BaseModel):
    group_id: str
    description: Optional[str] = None


class Product(BaseModel):
    product_id: str
    name: str
    unit: str = "Stk"
    unit_price: float = 0.0
    produkt_gruppe: Optional[str] = None
    qualitaetsstufe: Optional[str] = None
    stunden_meister: float = 0.0
    stunden_geselle: float = 0.0
    stunden_monteur: float = 0.0
    category: Optional[str] = None
    availability: List[str] = Field(
        default_factory=list,
        description="Location names the product is restricted to; empty = everywhere",
    )
    module_slots: Optional[int] = Field(
        None, description="Capacity in module slots (enclosure products only)"
    )

    def hours_for(self, role: str) -> float:
        return float(getattr(self, f"stunden_{role}", 0.0) or 0.0)


class ParameterDefinition(BaseModel):
    param_key: str
    label: str
    param_type: Literal["boolean", "number", "select", "string"]
    unit: Optional[str] = None
    default_value: Optional[str] = None
    is_global: bool = False
    label_true: Optional[str] = None
    label_false: Optional[str] = None
    options: List[str] = Field(default_factory=list, description="Allowed values for 'select'")


class ParameterLink(BaseModel):
    package_id: int
    param_key: str


class Location(BaseModel):
    loc_id: str
    name: str


class LaborRates(BaseModel):
    """Hourly wages per role for one location."""
    loc_id: str
    stundensatz_meister: float = 0.0
    stundensatz_geselle: float = 0.0
    stundensatz_monteur: float = 0.0

    def wage_for(self, role: str) -> float:
        return float(getattr(self, f"stundensatz_{role}", 0.0) or 0.0)


class ProductPrice(BaseModel):
    """Entity pricing row: base price plus a factor per location name."""
    product_id: str
    base_price: Optional[float] = None
    factors: Dict[str, float] = Field(default_factory=dict)


class InstanceState(BaseModel):
    instance_id: str
    package_id: int
    params: Dict[str, Any] = Field(default_factory=dict)


class SessionState(BaseModel):
    """Serializable configurator state: selection, parameters and the override overlay."""
    location_id: Optional[str] = None
    global_params: Dict[str, Any] = Field(default_factory=dict)
    instances: List[InstanceState] = Field(default_factory=list)
    local_prices: Dict[str, float] = Field(default_factory=dict)
    local_markups: Dict[str, float] = Field(default_factory=dict)
    manual_hours: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    quantities: Dict[str, int] = Field(default_factory=dict)
    swaps: Dict[str, str] = Field(default_factory=dict)
    removed: List[str] = Field(default_factory=list)
    wage_overrides: Dict[str, float] = Field(default_factory=dict)
