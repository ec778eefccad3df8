from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

LocationType = Literal["fulfillment-center", "external-warehouse", "marketplace-managed"]
AlertLevel = Literal["CRITICAL", "WARNING"]


class CanonicalRow(BaseModel):
    """Base for rows written to the durable store."""

    model_config = ConfigDict(frozen=True)

    @field_validator("*", mode="after")
    @classmethod
    def _timestamps_in_utc(cls, value):
        # Stored timestamps are always UTC; naive values are taken as UTC
        if isinstance(value, datetime):
            if value.tzinfo is None:
                return value.replace(tzinfo=timezone.utc)
            return value.astimezone(timezone.utc)
        return value

    def to_row(self) -> dict:
        return self.model_dump()


class Order(CanonicalRow):
    """
    One order as seen by one channel. Identity is (order_id, channel);
    status and amount fields may change on every re-sync.
    """

    order_id: str = Field(..., min_length=1)
    channel: str = Field(..., min_length=1)
    account_name: str
    order_number: str
    order_date: datetime
    fulfillment_date: Optional[datetime] = None
    customer_name: str
    ship_state: str = ""
    ship_city: str = ""
    ship_postal_code: str = ""
    subtotal_amount: Decimal = Decimal("0")
    tax_amount: Decimal = Decimal("0")
    shipping_amount: Decimal = Decimal("0")
    total_amount: Decimal = Decimal("0")
    currency: str
    payment_status: str = "unknown"
    fulfillment_status: str = "unknown"
    created_at: datetime
    updated_at: datetime


class OrderLineItem(CanonicalRow):
    """A line of an order. Identity is (order_id, channel, line_item_id)."""

    order_id: str = Field(..., min_length=1)
    channel: str = Field(..., min_length=1)
    line_item_id: str = Field(..., min_length=1)
    sku: str
    product_name: str = ""
    quantity: int = Field(default=0, ge=0)
    unit_price: Decimal = Decimal("0")
    line_total: Decimal = Decimal("0")
    currency: str
    quantity_fulfilled: int = Field(default=0, ge=0)
    quantity_unfulfilled: int = Field(default=0, ge=0)
    created_at: datetime
    updated_at: datetime

    @model_validator(mode="after")
    def _fulfilment_adds_up(self):
        if self.quantity_fulfilled + self.quantity_unfulfilled != self.quantity:
            raise ValueError(
                f"quantity_fulfilled ({self.quantity_fulfilled}) + quantity_unfulfilled "
                f"({self.quantity_unfulfilled}) != quantity ({self.quantity})"
            )
        return self


class InventoryRecord(CanonicalRow):
    """
    Stock of one master SKU at one location, in single units.
    original_sku/original_quantity keep the channel's figures before case expansion.
    """

    sku: str = Field(..., min_length=1)
    location: str = Field(..., min_length=1)
    location_type: LocationType
    available_quantity: int = 0
    reserved_quantity: int = 0
    inbound_quantity: int = 0
    total_quantity: int = 0
    last_updated: datetime
    sync_status: str = "success"
    original_sku: str
    original_quantity: int = 0
    is_case_converted: bool = False


class SkuMapping(BaseModel):
    """(channel, channel_sku) -> (master_sku, packaging)."""

    channel: str = Field(..., min_length=1)
    channel_sku: str = Field(..., min_length=1)
    master_sku: str = Field(..., min_length=1)
    is_case_product: bool = False
    units_per_case: int = 1

    @model_validator(mode="after")
    def _case_needs_units(self):
        if self.is_case_product and self.units_per_case < 1:
            raise ValueError("units_per_case must be >= 1 for a case product")
        return self


class ResolvedSku(BaseModel):
    model_config = ConfigDict(frozen=True)

    master_sku: str
    is_case_product: bool = False
    units_per_case: int = 1
    mapped: bool = True


class StockoutAlert(CanonicalRow):
    run_id: str
    sku: str
    product_name: str
    location: str = "ALL"
    current_stock: int
    inbound_stock: int
    daily_sales_rate: float
    days_until_stockout: int
    alert_level: AlertLevel
    suggested_order_qty: int = Field(..., ge=0)
    predicted_stockout_date: date
    calculated_at: datetime
