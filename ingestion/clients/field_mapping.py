"""
Declarative field mapping for vendor records.

Each source declares a FieldMapping: for every IntermediateProduct field,
an ordered tuple of candidate paths into the vendor record and a named
converter. normalize_record() walks the candidates and keeps the first
non-empty converted value; fields with no match are left out rather than
guessed.

Path syntax:
- "title"                   dict key
- "imageURL.large"          nested keys
- "performer[].data.name"   map over a list, collecting every value
- "3"                       list index (CSV rows)
"""

import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from ingestion.exceptions import ValidationRejected
from ingestion.services.pricing import build_sale_info
from ingestion.services.product_types import IntermediateProduct
from ingestion.utils.normalization import (
    clean_text,
    parse_duration_minutes,
    parse_price,
    parse_release_date,
)

_RAW_NAME_SPLIT = re.compile(r"[,、，/／\n]+")


def _first(value):
    if isinstance(value, list):
        for item in value:
            if item not in (None, "", [], {}):
                return item
        return None
    return value


def _to_text(value) -> Optional[str]:
    value = _first(value)
    if value is None or isinstance(value, (dict, list)):
        return None
    return clean_text(str(value))


def _to_id(value) -> Optional[str]:
    value = _first(value)
    if value is None or isinstance(value, (dict, list)):
        return None
    text = str(value).strip()
    return text or None


def _to_int(value) -> Optional[int]:
    value = _first(value)
    if value is None:
        return None
    try:
        return int(str(value).replace(",", "").strip())
    except ValueError:
        return None


def _to_url_list(value) -> list:
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    urls = []
    for item in value:
        if isinstance(item, str):
            item = item.strip()
            if item.startswith("//"):
                item = f"https:{item}"
            if item.startswith("http") and item not in urls:
                urls.append(item)
    return urls


def _to_name_list(value) -> list:
    """Raw names, split but not validated."""
    if value is None:
        return []
    if not isinstance(value, list):
        value = [value]
    names = []
    for item in value:
        if not isinstance(item, str):
            continue
        for token in _RAW_NAME_SPLIT.split(item):
            token = token.strip()
            if token and token not in names:
                names.append(token)
    return names


CONVERTERS: Dict[str, Callable[[Any], Any]] = {
    "id": _to_id,
    "text": _to_text,
    "url": lambda v: (_to_url_list(_first(v)) or [None])[0],
    "int": _to_int,
    "price": lambda v: parse_price(_first(v)),
    "minutes": lambda v: parse_duration_minutes(_first(v)),
    "date": lambda v: parse_release_date(_first(v)),
    "url_list": _to_url_list,
    "name_list": _to_name_list,
}


@dataclass(frozen=True)
class FieldRule:
    """
    Ordered candidate paths for one target field.

    Attributes:
        paths: Candidate paths, most specific first
        convert: Name of a converter in CONVERTERS
        transform: Optional callable applied to each converted string
            (e.g. thumbnail-to-full-size URL rewrites)
    """

    paths: Tuple[str, ...]
    convert: str = "text"
    transform: Optional[Callable[[str], str]] = None


FieldMapping = Dict[str, FieldRule]


def _lookup(value, key: str):
    if isinstance(value, dict):
        return value.get(key)
    if isinstance(value, (list, tuple)) and key.isdigit():
        index = int(key)
        return value[index] if index < len(value) else None
    return None


def resolve_path(record: Any, path: str):
    """
    Resolve a mapping path against a record.

    Returns:
        A single value, a list (for paths containing "[]"), or None
    """
    values = [record]
    collects = False
    for segment in path.split("."):
        if segment.endswith("[]"):
            collects = True
            key = segment[:-2]
            expanded = []
            for value in values:
                child = _lookup(value, key) if key else value
                if isinstance(child, list):
                    expanded.extend(child)
                elif child is not None:
                    expanded.append(child)
            values = expanded
        else:
            values = [v for v in (_lookup(value, segment) for value in values) if v is not None]
        if not values:
            return None
    if collects:
        return values
    return values[0]


def _is_empty(value) -> bool:
    return value is None or value == "" or value == [] or value == {}


def normalize_record(raw: Any, mapping: FieldMapping) -> Dict[str, Any]:
    """
    Apply a field mapping to one vendor record.

    Args:
        raw: Vendor record (dict for JSON APIs, list for CSV rows)
        mapping: Target field name to FieldRule

    Returns:
        Dict containing only the fields that produced a value
    """
    fields = {}
    for target, rule in mapping.items():
        converter = CONVERTERS[rule.convert]
        for path in rule.paths:
            value = converter(resolve_path(raw, path))
            if _is_empty(value):
                continue
            if rule.transform:
                if isinstance(value, list):
                    value = [rule.transform(v) for v in value]
                else:
                    value = rule.transform(value)
            fields[target] = value
            break
    return fields


def to_intermediate(source_id: str, fields: Dict[str, Any], raw: Any = None, sale_type: str = "sale") -> IntermediateProduct:
    """
    Build an IntermediateProduct from normalized fields.

    List price / sale price / discount fields become SaleInfo; when a sale
    is present the current price is the sale price.

    Raises:
        ValidationRejected: If the record has no source-local id
    """
    source_local_id = str(fields.get("source_local_id") or "").strip()
    if not source_local_id:
        raise ValidationRejected("source_local_id", fields.get("source_local_id"), "record has no id")

    price = fields.get("price")
    sale_info = build_sale_info(
        fields.get("list_price"),
        fields.get("sale_price", price),
        discount_percent=fields.get("discount_percent"),
        sale_type=sale_type,
    )
    if sale_info:
        price = sale_info.sale_price

    raw_data = raw if isinstance(raw, dict) else ({"row": list(raw)} if isinstance(raw, (list, tuple)) else None)

    return IntermediateProduct(
        source_id=source_id,
        source_local_id=source_local_id,
        title=fields.get("title", ""),
        affiliate_url=fields.get("affiliate_url", ""),
        url=fields.get("url", ""),
        description=fields.get("description"),
        release_date=fields.get("release_date"),
        duration_minutes=fields.get("duration_minutes"),
        thumbnail_url=fields.get("thumbnail_url"),
        sample_image_urls=fields.get("sample_image_urls", []),
        sample_video_urls=fields.get("sample_video_urls", []),
        price=price,
        sale_info=sale_info,
        performer_names=fields.get("performer_names", []),
        genre_names=fields.get("genre_names", []),
        raw_data=raw_data,
    )
