import pytest
from protean.integrations.pytest import DomainFixture

from settlement.catalog import reset_catalog, set_catalog
from settlement.catalog.memory_adapter import InMemoryCatalog
from settlement.catalog.port import SkuSnapshot
from settlement.config import get_settings
from settlement.dispatch import reset_delivery_gateway, set_delivery_gateway
from settlement.dispatch.fake_adapter import FakeDeliveryGateway
from settlement.gateway import reset_gateway, set_gateway
from settlement.gateway.fake_adapter import FakeGateway
from settlement.pricing import reset_pricing
from settlement.stock import reset_stock_ledger, set_stock_ledger
from settlement.stock.memory_adapter import InMemoryStockLedger

SKUS = [
    SkuSnapshot(sku_id="sku-rice", code="RIZ-5KG", name="Riz parfumé 5kg", price=6500.0, weight_grams=5000),
    SkuSnapshot(sku_id="sku-oil", code="HUILE-1L", name="Huile 1L", price=1800.0, weight_grams=1000),
    SkuSnapshot(
        sku_id="sku-beef",
        code="BOEUF",
        name="Boeuf",
        price=4000.0,
        is_variable_weight=True,
        unit="kg",
        min_weight_grams=300,
        max_weight_grams=3000,
    ),
    SkuSnapshot(
        sku_id="sku-fish",
        code="CAPITAINE",
        name="Capitaine",
        price=3000.0,
        is_variable_weight=True,
        unit="kg",
        min_weight_grams=200,
        max_weight_grams=2000,
    ),
    SkuSnapshot(sku_id="sku-retired", code="OLD", name="Ancien produit", price=500.0, is_active=False),
]

STOCK = {"sku-rice": 20, "sku-oil": 50, "sku-beef": 10, "sku-fish": 10, "sku-retired": 5}


@pytest.fixture(scope="session")
def settlement_bed():
    from settlement.domain import settlement

    bed = DomainFixture(settlement)
    bed.setup()
    yield bed
    bed.teardown()


@pytest.fixture(autouse=True)
def _ctx(settlement_bed):
    with settlement_bed.domain_context():
        yield


@pytest.fixture(autouse=True)
def _reset_adapters():
    get_settings.cache_clear()
    yield
    reset_catalog()
    reset_stock_ledger()
    reset_gateway()
    reset_delivery_gateway()
    reset_pricing()
    get_settings.cache_clear()


@pytest.fixture()
def catalog():
    catalog = InMemoryCatalog(SKUS)
    set_catalog(catalog)
    return catalog


@pytest.fixture()
def ledger():
    ledger = InMemoryStockLedger()
    for sku_id, quantity in STOCK.items():
        ledger.seed(sku_id, quantity)
    set_stock_ledger(ledger)
    return ledger


@pytest.fixture()
def gateway():
    gateway = FakeGateway()
    set_gateway(gateway)
    return gateway


@pytest.fixture()
def courier():
    courier = FakeDeliveryGateway()
    set_delivery_gateway(courier)
    return courier


@pytest.fixture()
def shop(catalog, ledger, gateway, courier):
    """Catalog, stock, payment gateway and courier wired with in-memory fakes."""
    return {"catalog": catalog, "ledger": ledger, "gateway": gateway, "courier": courier}
