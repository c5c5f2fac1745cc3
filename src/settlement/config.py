"""Settlement configuration management using Pydantic Settings.

Every knob the settlement engine consumes (zone table, fees, estimation
margin, tolerance, reservation duration, gateway credentials) is read from
``SHOP_``-prefixed environment variables or a ``.env`` file.
"""

from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeliveryZoneSetting(BaseModel):
    """One row of the delivery zone table."""

    key: str
    name: str
    base_fee: float = Field(ge=0)


_DEFAULT_ZONES = [
    DeliveryZoneSetting(key="cocody", name="Cocody", base_fee=1000),
    DeliveryZoneSetting(key="plateau", name="Plateau", base_fee=1500),
    DeliveryZoneSetting(key="marcory", name="Marcory", base_fee=2000),
    DeliveryZoneSetting(key="yopougon", name="Yopougon", base_fee=2500),
    DeliveryZoneSetting(key="abobo", name="Abobo", base_fee=2500),
    DeliveryZoneSetting(key="adjame", name="Adjamé", base_fee=2000),
    DeliveryZoneSetting(key="treichville", name="Treichville", base_fee=2000),
    DeliveryZoneSetting(key="koumassi", name="Koumassi", base_fee=2500),
    DeliveryZoneSetting(key="port_bouet", name="Port-Bouët", base_fee=3000),
    DeliveryZoneSetting(key="attecoube", name="Attécoubé", base_fee=2500),
]


class Settings(BaseSettings):
    """Settlement settings loaded from environment variables.

    Complex values (``delivery_zones``) are given as JSON; ``pickup_slots``
    is a comma-separated list.
    """

    model_config = SettingsConfigDict(
        env_prefix="SHOP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Shop
    currency: str = Field(default="XOF", description="Settlement currency")
    order_number_prefix: str = Field(default="CMD", description="Prefix of human-readable order numbers")
    pickup_slots: str = Field(
        default="09:00-12:00,12:00-15:00,15:00-18:00,18:00-21:00",
        description="Comma-separated pickup/delivery time slots",
    )

    # Delivery fees
    delivery_zones: list[DeliveryZoneSetting] = Field(
        default_factory=lambda: list(_DEFAULT_ZONES),
        description="Ordered zone table scanned by the fee calculator",
    )
    default_delivery_fee: float = Field(default=1500, ge=0, description="Fee when no zone matches")
    large_order_threshold: float = Field(default=50000, description="Order amount above which a surcharge applies")
    large_order_surcharge: float = Field(default=500, ge=0, description="Flat surcharge for large orders")
    min_delivery_amount: float = Field(default=3000, ge=0, description="Minimum subtotal for home delivery")
    fee_quote_api_url: str = Field(default="", description="External delivery pricing API base URL")
    fee_quote_api_key: str = Field(default="", description="External delivery pricing API key")
    fee_quote_timeout: float = Field(default=3.0, gt=0, description="Fee quote timeout in seconds")
    fee_quote_cache_ttl: int = Field(default=300, ge=0, description="Fee quote cache TTL in seconds")

    # Variable weight
    estimation_margin: float = Field(default=1.2, ge=1, description="Pre-authorization margin on estimated prices")
    weight_tolerance_percent: float = Field(default=20.0, ge=0, description="Deviation that flags manual review")
    default_estimated_weight_grams: int = Field(default=1000, gt=0, description="Estimate when the cart gives none")

    # Stock
    reserve_stock_duration: int = Field(default=30, gt=0, description="Reservation lifetime in minutes")
    concurrency_protection: bool = Field(default=True, description="Serialize reservations with per-SKU locks")
    stock_max_attempts: int = Field(default=3, ge=1, description="Compare-and-swap attempts before giving up")
    stock_retry_backoff: float = Field(default=0.01, ge=0, description="Base backoff between attempts in seconds")

    # Payment gateway
    payment_adapter: str = Field(default="fake", description="Payment gateway adapter (fake/http)")
    payment_api_url: str = Field(default="https://api-checkout.cinetpay.com/v2", description="Payment API base URL")
    payment_api_key: str = Field(default="", description="Payment gateway API key")
    payment_site_id: str = Field(default="", description="Payment gateway site id")
    payment_webhook_secret: str = Field(default="", description="Shared secret for payment callbacks")
    payment_notify_url: str = Field(default="", description="Public URL the gateway posts payment callbacks to")
    payment_timeout: float = Field(default=30.0, gt=0, description="Payment call timeout in seconds")
    payment_connect_timeout: float = Field(default=10.0, gt=0, description="Payment connect timeout in seconds")

    # Delivery gateway
    delivery_adapter: str = Field(default="fake", description="Delivery gateway adapter (fake/http)")
    delivery_api_url: str = Field(default="https://api.yango.com/v1", description="Delivery API base URL")
    delivery_api_key: str = Field(default="", description="Delivery gateway API key")
    delivery_webhook_secret: str = Field(default="", description="Shared secret for delivery webhooks")
    delivery_webhook_url: str = Field(default="", description="Public URL the courier service calls back")
    delivery_timeout: float = Field(default=10.0, gt=0, description="Delivery call timeout in seconds")
    dispatch_on_checkout: bool = Field(default=False, description="Book the courier when the order is placed")

    # Store pickup location
    store_name: str = Field(default="MonEpice&Riz", description="Store contact name")
    store_phone: str = Field(default="+2250700000000", description="Store contact phone")
    store_address: str = Field(default="MonEpice&Riz, Cocody, Abidjan", description="Pickup address")
    store_latitude: float = Field(default=5.3484, description="Pickup latitude")
    store_longitude: float = Field(default=-3.9866, description="Pickup longitude")

    @property
    def pickup_slot_list(self) -> list[str]:
        """Parse pickup slots string into a list."""
        return [slot.strip() for slot in self.pickup_slots.split(",") if slot.strip()]

    @property
    def weight_tolerance(self) -> float:
        """Tolerance as a fraction (20 -> 0.2)."""
        return self.weight_tolerance_percent / 100


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Call get_settings.cache_clear() to reload settings.
    """
    return Settings()
