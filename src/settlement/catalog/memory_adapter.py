"""In-memory catalog for development and testing."""

from settlement.catalog.port import CatalogPort, SkuSnapshot


class InMemoryCatalog(CatalogPort):
    def __init__(self, skus: list[SkuSnapshot] | None = None) -> None:
        self._skus: dict[str, SkuSnapshot] = {}
        for sku in skus or []:
            self.add(sku)

    def add(self, sku: SkuSnapshot) -> None:
        self._skus[sku.sku_id] = sku

    def lookup(self, sku_id: str) -> SkuSnapshot | None:
        return self._skus.get(sku_id)
