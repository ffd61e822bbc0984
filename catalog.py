"""Product catalog loading.

The catalog is read once before a run starts. Any problem with it is a
:class:`SetupError`, which aborts the run before the first request is sent.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable, Tuple, Union

import yaml

from orders import Product

LOGGER = logging.getLogger("order_load.catalog")


class SetupError(RuntimeError):
    """Raised when the run cannot start, e.g. the catalog is missing or empty."""


def read_data_file(path: Path) -> Any:
    """Parse a YAML or JSON file, chosen by suffix. Empty files parse to ``None``."""

    suffix = path.suffix.lower()
    if suffix not in {".yaml", ".yml", ".json"}:
        raise ValueError(f"Unsupported file format: {suffix}")
    text = path.read_text()
    if suffix == ".json":
        return json.loads(text or "null")
    return yaml.safe_load(text)


def products_from_raw(raw: Any) -> Tuple[Product, ...]:
    """Turn ``{"products": [...]}`` or a bare list into ``Product`` objects."""

    if isinstance(raw, dict):
        raw = raw.get("products")
    if not isinstance(raw, list):
        raise SetupError("Catalog must be a list of products or an object with a 'products' list")

    products = []
    for position, entry in enumerate(raw):
        if not isinstance(entry, dict) or not entry.get("sku"):
            raise SetupError(f"Catalog entry #{position} has no sku")
        attributes = {key: value for key, value in entry.items() if key != "sku"}
        products.append(Product(sku=str(entry["sku"]), attributes=attributes))

    if not products:
        raise SetupError("Product catalog is empty")
    return tuple(products)


def load_catalog(path: Union[str, Path]) -> Tuple[Product, ...]:
    """Load the product catalog from a JSON or YAML file."""

    catalog_path = Path(path)
    if not catalog_path.is_file():
        raise SetupError(f"Product catalog not found: {catalog_path}")

    try:
        raw = read_data_file(catalog_path)
    except (OSError, ValueError, yaml.YAMLError) as exc:
        raise SetupError(f"Could not read product catalog {catalog_path}: {exc}") from exc

    products = products_from_raw(raw)
    LOGGER.info("Loaded %d products from %s", len(products), catalog_path)
    return products


def distinct_skus(products: Iterable[Product]) -> int:
    """Count unique skus; this bounds how many items one order can hold."""

    return len({product.sku for product in products})
