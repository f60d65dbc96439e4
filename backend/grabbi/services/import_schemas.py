from __future__ import annotations

import re
import uuid
from dataclasses import dataclass, field
from typing import Any

from ..time_utils import parse_date_lenient


TEXT_FIELDS = (
    "item_name",
    "short_description",
    "long_description",
    "batch_number",
    "barcode",
    "shelf_location",
    "unit_of_measure",
    "pack_size",
    "brand",
    "supplier",
    "country_of_origin",
    "allergen_info",
    "storage_type",
    "notes",
    "status",
)
FLOAT_FIELDS = (
    "cost_price",
    "retail_price",
    "promotion_price",
    "gross_margin",
    "staff_discount",
    "tax_rate",
    "weight_volume",
)
INT_FIELDS = ("stock_quantity", "reorder_level", "minimum_age")
BOOL_FIELDS = (
    "is_gluten_free",
    "is_vegetarian",
    "is_vegan",
    "is_age_restricted",
    "is_own_brand",
    "online_visible",
)
DATE_FIELDS = ("promotion_start", "promotion_end", "expiry_date")
# bare dates in these close a window and cover the whole day
END_DATE_FIELDS = {"promotion_end"}
REF_FIELDS = ("category_id", "subcategory_id")

# Compared before/after to decide whether an update changed anything
CONTENT_FIELDS = ("sku",) + TEXT_FIELDS + FLOAT_FIELDS + INT_FIELDS + BOOL_FIELDS + DATE_FIELDS + REF_FIELDS

STATUSES = ("active", "inactive")

_URL_SPLIT = re.compile(r"[\r\n,]+")
_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off", ""}


class RowValueError(ValueError):
    pass


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise RowValueError("must be a number")
    if isinstance(value, (int, float)):
        return round(float(value), 2)
    text = str(value).strip().replace("£", "").replace("$", "").replace(",", "")
    if not text:
        return None
    try:
        return round(float(text), 2)
    except ValueError:
        raise RowValueError("must be a number")


def _to_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise RowValueError("must be a whole number")
    if isinstance(value, int):
        return value
    try:
        number = float(str(value).strip())
    except ValueError:
        raise RowValueError("must be a whole number")
    if not number.is_integer():
        raise RowValueError("must be a whole number")
    return int(number)


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    text = str(value or "").strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise RowValueError("must be true or false")


def parse_image_urls(value: Any) -> list[str]:
    """
    Accept a list of strings, a delimited string (newline, carriage return or
    comma) or a list of anything. Entries are trimmed, trailing commas dropped,
    empties and duplicates removed; input order is kept.
    """
    if value is None:
        return []
    if isinstance(value, str):
        parts = _URL_SPLIT.split(value)
    elif isinstance(value, (list, tuple)):
        parts = []
        for item in value:
            if item is None:
                continue
            parts.extend(_URL_SPLIT.split(str(item)))
    else:
        parts = [str(value)]

    cleaned: list[str] = []
    seen = set()
    for part in parts:
        url = part.strip().rstrip(",").strip()
        if url and url not in seen:
            seen.add(url)
            cleaned.append(url)
    return cleaned


@dataclass
class ImageDiff:
    keep: list[str]
    to_add: list[str]
    to_delete: list[str]


def diff_images(existing: list[str], new: list[str]) -> ImageDiff:
    existing_set = set(existing)
    new_set = set(new)
    return ImageDiff(
        keep=[u for u in new if u in existing_set],
        to_add=[u for u in new if u not in existing_set],
        to_delete=[u for u in existing if u not in new_set],
    )


@dataclass
class ProductRow:
    """One normalized import row. values holds only the content fields the row supplied."""
    index: int
    raw_id: str | None = None
    product_id: uuid.UUID | None = None
    sku: str | None = None
    barcode: str | None = None
    item_name: str | None = None
    values: dict[str, Any] = field(default_factory=dict)
    image_urls: list[str] = field(default_factory=list)
    images_provided: bool = False
    franchise_ids: list[str] = field(default_factory=list)
    delete: bool = False
    errors: dict[str, str] = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)

    @property
    def row_number(self) -> int:
        # spreadsheet numbering: header on line 1
        return self.index + 2


def identify_row(index: int, raw: dict[str, Any]) -> ProductRow:
    """Cheap identity pass: id, sku, name and delete flag only."""
    row = ProductRow(index=index)
    if not isinstance(raw, dict):
        row.errors["row"] = "must be an object"
        return row

    row.item_name = _to_text(raw.get("item_name"))
    row.sku = _to_text(raw.get("sku"))
    row.barcode = _to_text(raw.get("barcode"))
    row.raw_id = _to_text(raw.get("id"))
    if row.raw_id:
        try:
            row.product_id = uuid.UUID(row.raw_id)
        except ValueError:
            row.errors["id"] = "invalid product id"
    try:
        row.delete = _to_bool(raw.get("delete", False))
    except RowValueError:
        row.errors["delete"] = "must be true or false"
    return row


def normalize_row(row: ProductRow, raw: dict[str, Any]) -> ProductRow:
    """Coerce and validate the content fields of a row identified by identify_row."""
    values: dict[str, Any] = {}
    errors = row.errors

    for name in TEXT_FIELDS:
        if name in raw:
            values[name] = _to_text(raw.get(name))

    for name in FLOAT_FIELDS:
        if name in raw:
            try:
                values[name] = _to_float(raw.get(name))
            except RowValueError as exc:
                errors[name] = str(exc)

    for name in INT_FIELDS:
        if name in raw:
            try:
                values[name] = _to_int(raw.get(name))
            except RowValueError as exc:
                errors[name] = str(exc)

    for name in BOOL_FIELDS:
        if name in raw:
            try:
                values[name] = _to_bool(raw.get(name))
            except RowValueError as exc:
                errors[name] = str(exc)

    for name in DATE_FIELDS:
        if name not in raw:
            continue
        text = _to_text(raw.get(name))
        parsed = parse_date_lenient(text, inclusive_end=name in END_DATE_FIELDS) if text else None
        if text and parsed is None:
            # bad dates leave the field unset rather than failing the row
            row.warnings.append(f"{name}: could not parse '{text}'")
            continue
        values[name] = parsed

    category = _to_text(raw.get("category_id"))
    if not category:
        errors["category_id"] = "category_id is required"
    else:
        try:
            values["category_id"] = uuid.UUID(category)
        except ValueError:
            errors["category_id"] = "invalid_category_id"

    if "subcategory_id" in raw:
        sub = _to_text(raw.get("subcategory_id"))
        if sub is None:
            values["subcategory_id"] = None
        else:
            try:
                values["subcategory_id"] = uuid.UUID(sub)
            except ValueError:
                errors["subcategory_id"] = "invalid subcategory id"

    if not values.get("item_name"):
        errors["item_name"] = "item_name is required"
    for name in ("cost_price", "retail_price"):
        if name in errors:
            continue
        price = values.get(name)
        if price is None:
            errors[name] = f"{name} is required"
        elif price <= 0:
            errors[name] = "must be greater than 0"
    for name in ("stock_quantity", "reorder_level"):
        if name not in errors and values.get(name) is not None and values[name] < 0:
            errors[name] = "must be 0 or greater"
    if "promotion_price" not in errors and values.get("promotion_price") is not None and values["promotion_price"] <= 0:
        errors["promotion_price"] = "must be greater than 0"

    if "status" in values:
        status = (values["status"] or "active").lower()
        if status not in STATUSES:
            errors["status"] = "must be active or inactive"
        values["status"] = status

    start, end = values.get("promotion_start"), values.get("promotion_end")
    if start is not None and end is not None and end < start:
        errors["promotion_end"] = "must be on or after promotion_start"

    images_provided = raw.get("images_provided")
    if images_provided is None:
        images_provided = "image_urls" in raw
    try:
        row.images_provided = _to_bool(images_provided)
    except RowValueError:
        errors["images_provided"] = "must be true or false"
    row.image_urls = parse_image_urls(raw.get("image_urls"))

    franchise_ids = raw.get("franchise_ids") or []
    if isinstance(franchise_ids, str):
        franchise_ids = franchise_ids.split(",")
    row.franchise_ids = [s for s in (str(f).strip() for f in franchise_ids) if s]

    if row.sku:
        values["sku"] = row.sku
    row.values = values
    return row
