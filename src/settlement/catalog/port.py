"""Catalog port — read-only SKU lookup.

The catalog owns product metadata. The settlement engine only reads it; stock
counters live behind the stock ledger (see ``settlement.stock``).
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class SkuSnapshot:
    """Point-in-time view of a sellable SKU."""

    sku_id: str
    code: str
    name: str
    price: float
    is_active: bool = True
    is_variable_weight: bool = False
    unit: str = "piece"
    weight_grams: int | None = None
    min_weight_grams: int | None = None
    max_weight_grams: int | None = None


class CatalogPort(ABC):
    """Abstract interface for catalog lookups."""

    @abstractmethod
    def lookup(self, sku_id: str) -> SkuSnapshot | None:
        """Return the SKU or None when it does not exist."""
        ...
