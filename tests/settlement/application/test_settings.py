import json

import pytest

from settlement.config import Settings, get_settings
from settlement.dispatch import get_delivery_gateway
from settlement.dispatch.fake_adapter import FakeDeliveryGateway
from settlement.dispatch.http_adapter import HttpDeliveryGateway
from settlement.gateway import get_gateway
from settlement.gateway.fake_adapter import FakeGateway
from settlement.gateway.http_adapter import HttpPaymentGateway
from settlement.pricing import get_fee_calculator


class TestSettings:
    def test_defaults(self):
        settings = Settings()
        assert settings.currency == "XOF"
        assert settings.reserve_stock_duration == 30
        assert settings.estimation_margin == 1.2
        assert settings.weight_tolerance == 0.2
        assert settings.pickup_slot_list[0] == "09:00-12:00"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SHOP_RESERVE_STOCK_DURATION", "45")
        monkeypatch.setenv("SHOP_PICKUP_SLOTS", "08:00-10:00, 10:00-12:00")
        monkeypatch.setenv("SHOP_WEIGHT_TOLERANCE_PERCENT", "10")
        get_settings.cache_clear()

        settings = get_settings()
        assert settings.reserve_stock_duration == 45
        assert settings.pickup_slot_list == ["08:00-10:00", "10:00-12:00"]
        assert settings.weight_tolerance == 0.1

    def test_zone_table_from_json(self, monkeypatch):
        zones = [{"key": "bingerville", "name": "Bingerville", "base_fee": 3500}]
        monkeypatch.setenv("SHOP_DELIVERY_ZONES", json.dumps(zones))
        get_settings.cache_clear()

        quote = get_fee_calculator().quote("Route de Bingerville", 10000)
        assert quote.amount == 3500.0
        assert quote.zone == "bingerville"


class TestAdapterSelection:
    def test_fake_adapters_by_default(self):
        assert isinstance(get_gateway(), FakeGateway)
        assert isinstance(get_delivery_gateway(), FakeDeliveryGateway)

    def test_http_adapters(self, monkeypatch):
        monkeypatch.setenv("SHOP_PAYMENT_ADAPTER", "http")
        monkeypatch.setenv("SHOP_DELIVERY_ADAPTER", "http")
        get_settings.cache_clear()

        assert isinstance(get_gateway(), HttpPaymentGateway)
        assert isinstance(get_delivery_gateway(), HttpDeliveryGateway)

    def test_http_payment_gateway_gets_the_callback_url(self, monkeypatch):
        monkeypatch.setenv("SHOP_PAYMENT_ADAPTER", "http")
        monkeypatch.setenv("SHOP_PAYMENT_NOTIFY_URL", "https://shop.example.com/webhooks/payment")
        get_settings.cache_clear()

        assert get_gateway().notify_url == "https://shop.example.com/webhooks/payment"

    def test_unknown_payment_adapter(self, monkeypatch):
        monkeypatch.setenv("SHOP_PAYMENT_ADAPTER", "carrier-pigeon")
        get_settings.cache_clear()

        with pytest.raises(ValueError, match="Unknown payment adapter"):
            get_gateway()

    def test_unknown_delivery_adapter(self, monkeypatch):
        monkeypatch.setenv("SHOP_DELIVERY_ADAPTER", "carrier-pigeon")
        get_settings.cache_clear()

        with pytest.raises(ValueError, match="Unknown delivery adapter"):
            get_delivery_gateway()
