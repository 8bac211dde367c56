"""
NutriScan Backend — Product Schemas
====================================

What:  The app's product shape, reshaped from raw OpenFoodFacts product JSON.
Why:   OFF products carry hundreds of sparse, inconsistently typed fields.
       Clients get one stable shape: strings or null, lists never null,
       nutrition values with explicit units.
Who:   Built by OpenFoodFactsClient; returned by /api/barcode/scan and
       /api/openfoodfacts/*.
"""

import logging
import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


def _text(value: Any) -> Optional[str]:
    """Non-empty string or None."""
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _number(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


def _int(value: Any) -> Optional[int]:
    """Whole number (floats truncated) or None; OFF timestamps are sometimes strings or floats."""
    if isinstance(value, bool):
        return None
    number = _number(value)
    return None if number is None else int(number)


def _tags(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [str(v) for v in value if v is not None]


def _first_text(data: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        text = _text(data.get(key))
        if text:
            return text
    return None


class Nutrition(BaseModel):
    """Nutrient values as reported by OFF, each with its unit (defaults: kcal / g)."""

    energy: Optional[float] = None
    energy_unit: str = "kcal"
    energy_kcal: Optional[float] = None
    fat: Optional[float] = None
    fat_unit: str = "g"
    saturated_fat: Optional[float] = None
    saturated_fat_unit: str = "g"
    carbohydrates: Optional[float] = None
    carbohydrates_unit: str = "g"
    sugars: Optional[float] = None
    sugars_unit: str = "g"
    fiber: Optional[float] = None
    fiber_unit: str = "g"
    proteins: Optional[float] = None
    proteins_unit: str = "g"
    salt: Optional[float] = None
    salt_unit: str = "g"
    sodium: Optional[float] = None
    sodium_unit: str = "g"

    @classmethod
    def from_off(cls, nutriments: Dict[str, Any]) -> "Nutrition":
        values: Dict[str, Any] = {
            "energy_kcal": _number(
                nutriments.get("energy-kcal") or nutriments.get("energy-kcal_100g")
            ),
        }
        for field, key in (
            ("energy", "energy"),
            ("fat", "fat"),
            ("saturated_fat", "saturated-fat"),
            ("carbohydrates", "carbohydrates"),
            ("sugars", "sugars"),
            ("fiber", "fiber"),
            ("proteins", "proteins"),
            ("salt", "salt"),
            ("sodium", "sodium"),
        ):
            values[field] = _number(nutriments.get(key))
            unit = _text(nutriments.get(f"{key}_unit"))
            if unit:
                values[f"{field}_unit"] = unit
        return cls(**values)


class ProductSummary(BaseModel):
    """Compact product used in search results."""

    id: str = Field(description="OpenFoodFacts product code (barcode)")
    barcode: str
    name: str
    name_en: Optional[str] = None
    name_th: Optional[str] = None
    brand: Optional[str] = None
    brands_tags: List[str] = Field(default_factory=list)
    categories: Optional[str] = None
    categories_tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    image_front_url: Optional[str] = None
    image_small_url: Optional[str] = None
    nutriscore_grade: Optional[str] = None
    nutriscore_score: Optional[float] = None
    ecoscore_grade: Optional[str] = None
    ecoscore_score: Optional[float] = None
    ingredients_text: Optional[str] = None
    allergens: Optional[str] = None
    allergens_tags: List[str] = Field(default_factory=list)
    nutrition: Nutrition = Field(default_factory=Nutrition)
    serving_size: Optional[str] = None
    quantity: Optional[str] = None
    url: Optional[str] = None
    last_modified: Optional[int] = None

    @classmethod
    def from_off(cls, product: Dict[str, Any]) -> Optional["ProductSummary"]:
        """Reshape one search hit; hits without a code or a name are dropped (None)."""
        code = _text(product.get("code"))
        name = _first_text(product, "product_name", "product_name_en")
        if not code or not name:
            return None
        return cls(
            id=code,
            barcode=code,
            name=name,
            name_en=_text(product.get("product_name_en")),
            name_th=_text(product.get("product_name_th")),
            brand=_text(product.get("brands")),
            brands_tags=_tags(product.get("brands_tags")),
            categories=_text(product.get("categories")),
            categories_tags=_tags(product.get("categories_tags")),
            image_url=_first_text(product, "image_url", "image_front_url", "image_front_small_url"),
            image_front_url=_text(product.get("image_front_url")),
            image_small_url=_text(product.get("image_front_small_url")),
            nutriscore_grade=_text(product.get("nutriscore_grade")),
            nutriscore_score=_number(product.get("nutriscore_score")),
            ecoscore_grade=_text(product.get("ecoscore_grade")),
            ecoscore_score=_number(product.get("ecoscore_score")),
            ingredients_text=_text(product.get("ingredients_text")),
            allergens=_text(product.get("allergens")),
            allergens_tags=_tags(product.get("allergens_tags")),
            nutrition=Nutrition.from_off(product.get("nutriments") or {}),
            serving_size=_text(product.get("serving_size")),
            quantity=_text(product.get("quantity")),
            url=_text(product.get("url")),
            last_modified=_int(product.get("last_modified_t")),
        )


class ProductRecord(BaseModel):
    """Full product detail returned for a barcode lookup."""

    id: str = Field(description="OpenFoodFacts product code (barcode)")
    name: str = Field(description="Best available product name")
    name_th: Optional[str] = None
    name_en: Optional[str] = None
    generic_name: Optional[str] = None
    brand: Optional[str] = None
    brands_tags: List[str] = Field(default_factory=list)
    categories: Optional[str] = None
    categories_tags: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    image_front_url: Optional[str] = None
    image_ingredients_url: Optional[str] = None
    image_nutrition_url: Optional[str] = None
    nutriscore_grade: Optional[str] = None
    nutriscore_score: Optional[float] = None
    ecoscore_grade: Optional[str] = None
    ecoscore_score: Optional[float] = None
    ingredients_text: Optional[str] = None
    ingredients_text_th: Optional[str] = None
    ingredients: List[Dict[str, Any]] = Field(default_factory=list)
    allergens: Optional[str] = None
    allergens_tags: List[str] = Field(default_factory=list)
    traces: Optional[str] = None
    traces_tags: List[str] = Field(default_factory=list)
    nutrition: Nutrition = Field(default_factory=Nutrition)
    serving_size: Optional[str] = None
    quantity: Optional[str] = None
    packaging: Optional[str] = None
    packaging_tags: List[str] = Field(default_factory=list)
    labels: Optional[str] = None
    labels_tags: List[str] = Field(default_factory=list)
    stores: Optional[str] = None
    stores_tags: List[str] = Field(default_factory=list)
    countries: Optional[str] = None
    countries_tags: List[str] = Field(default_factory=list)
    manufacturing_places: Optional[str] = None
    origins: Optional[str] = None
    origins_tags: List[str] = Field(default_factory=list)
    url: Optional[str] = None
    last_modified: Optional[int] = None
    created: Optional[int] = None
    creator: Optional[str] = None
    data_quality_tags: List[str] = Field(default_factory=list)

    @classmethod
    def from_off(cls, product: Dict[str, Any], fallback_code: str = "") -> "ProductRecord":
        ingredients = product.get("ingredients")
        return cls(
            id=_text(product.get("code")) or fallback_code,
            name=_first_text(product, "product_name", "product_name_en") or "Unknown product",
            name_th=_text(product.get("product_name_th")),
            name_en=_text(product.get("product_name_en")),
            generic_name=_text(product.get("generic_name")),
            brand=_text(product.get("brands")),
            brands_tags=_tags(product.get("brands_tags")),
            categories=_text(product.get("categories")),
            categories_tags=_tags(product.get("categories_tags")),
            image_url=_first_text(product, "image_url", "image_front_url"),
            image_front_url=_text(product.get("image_front_url")),
            image_ingredients_url=_text(product.get("image_ingredients_url")),
            image_nutrition_url=_text(product.get("image_nutrition_url")),
            nutriscore_grade=_text(product.get("nutriscore_grade")),
            nutriscore_score=_number(product.get("nutriscore_score")),
            ecoscore_grade=_text(product.get("ecoscore_grade")),
            ecoscore_score=_number(product.get("ecoscore_score")),
            ingredients_text=_text(product.get("ingredients_text")),
            ingredients_text_th=_text(product.get("ingredients_text_th")),
            ingredients=[i for i in ingredients if isinstance(i, dict)] if isinstance(ingredients, list) else [],
            allergens=_text(product.get("allergens")),
            allergens_tags=_tags(product.get("allergens_tags")),
            traces=_text(product.get("traces")),
            traces_tags=_tags(product.get("traces_tags")),
            nutrition=Nutrition.from_off(product.get("nutriments") or {}),
            serving_size=_text(product.get("serving_size")),
            quantity=_text(product.get("quantity")),
            packaging=_text(product.get("packaging")),
            packaging_tags=_tags(product.get("packaging_tags")),
            labels=_text(product.get("labels")),
            labels_tags=_tags(product.get("labels_tags")),
            stores=_text(product.get("stores")),
            stores_tags=_tags(product.get("stores_tags")),
            countries=_text(product.get("countries")),
            countries_tags=_tags(product.get("countries_tags")),
            manufacturing_places=_text(product.get("manufacturing_places")),
            origins=_text(product.get("origins")),
            origins_tags=_tags(product.get("origins_tags")),
            url=_text(product.get("url")),
            last_modified=_int(product.get("last_modified_t")),
            created=_int(product.get("created_t")),
            creator=_text(product.get("creator")),
            data_quality_tags=_tags(product.get("data_quality_tags")),
        )


class ProductResponse(BaseModel):
    """Returned by GET /api/openfoodfacts/product/{barcode}."""

    success: bool = True
    product: ProductRecord


class ProductSearchResponse(BaseModel):
    """Returned by GET /api/openfoodfacts/search."""

    success: bool = True
    count: int = Field(description="Number of products in this page after filtering")
    page: int
    page_size: int
    total_products: int = Field(description="Total matches reported by OpenFoodFacts")
    products: List[ProductSummary]

    @classmethod
    def from_off(cls, data: Dict[str, Any], page: int, page_size: int) -> "ProductSearchResponse":
        """
        Reshape an OFF search body. Hits without a code or a name, or that
        fail validation, are dropped; a non-numeric `count` reads as 0.
        """
        raw_products = data.get("products")
        if not isinstance(raw_products, list):
            raw_products = []

        products = []
        for raw in raw_products:
            if not isinstance(raw, dict):
                continue
            try:
                summary = ProductSummary.from_off(raw)
            except ValidationError as e:
                logger.warning("Dropping malformed search hit %r: %s", raw.get("code"), e)
                continue
            if summary is not None:
                products.append(summary)

        return cls(
            count=len(products),
            page=page,
            page_size=page_size,
            total_products=max(0, _int(data.get("count")) or 0),
            products=products,
        )
