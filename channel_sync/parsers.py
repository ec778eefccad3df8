"""
Canonicalizers: one raw channel record in, canonical rows out.

Every function here is pure apart from SKU Resolver lookups. A record that
cannot be mapped raises RowError (or a pydantic ValidationError);
canonicalize_records() turns those into logged skips so one bad record
never sinks the batch.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import ValidationError

from . import settings
from .accounts import ChannelConfig
from .exceptions import RowError
from .schemas import InventoryRecord, Order, OrderLineItem
from .sku_resolver import SkuResolver
from .utils import to_decimal, to_int, utc_now

logger = logging.getLogger(__name__)

SHOPIFY_GUEST = "Guest"
AMAZON_GUEST = "Amazon Customer"

# How total_amount is obtained, fixed per channel. The two can disagree by
# rounding, so a channel never mixes them.
TOTAL_CONVENTION = {
    "shopify": "source",  # order.total_price as reported
    "amazon": "reconstructed",  # item-price + item-tax + shipping-price, per report row
}


@dataclass
class CanonicalBatch:
    orders: list[Order] = field(default_factory=list)
    line_items: list[OrderLineItem] = field(default_factory=list)
    inventory: list[InventoryRecord] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.orders) + len(self.line_items) + len(self.inventory)

    def extend(self, other: "CanonicalBatch") -> None:
        self.orders.extend(other.orders)
        self.line_items.extend(other.line_items)
        self.inventory.extend(other.inventory)

    def rows_by_entity(self) -> dict[str, list[dict[str, Any]]]:
        """Rows keyed by warehouse entity, empty entities left out."""
        entities = {
            "orders": self.orders,
            "order_items": self.line_items,
            "inventory": self.inventory,
        }
        return {
            name: [model.to_row() for model in models]
            for name, models in entities.items()
            if models
        }


@dataclass
class CanonicalizeResult:
    batch: CanonicalBatch
    records_seen: int = 0
    skipped: int = 0
    skip_reasons: list[str] = field(default_factory=list)


Canonicalizer = Callable[
    [dict[str, Any], ChannelConfig, SkuResolver, datetime], CanonicalBatch
]


# --- Orders ---


def _shopify_customer(order: dict[str, Any]) -> str:
    customer = order.get("customer")
    if not customer:
        return SHOPIFY_GUEST
    name = f"{customer.get('first_name') or ''} {customer.get('last_name') or ''}".strip()
    return name or SHOPIFY_GUEST


def canonicalize_shopify_order(
    order: dict[str, Any], config: ChannelConfig, resolver: SkuResolver, now: datetime
) -> CanonicalBatch:
    """One Shopify order -> one Order plus one OrderLineItem per line."""
    if not order.get("id"):
        raise RowError("Shopify order without an id")

    order_id = f"SHOPIFY-{config.account_name}-{order['id']}"
    currency = order.get("currency") or config.default_currency
    address = order.get("shipping_address") or {}
    fulfillments = order.get("fulfillments") or []
    shipping = (
        (order.get("total_shipping_price_set") or {}).get("shop_money") or {}
    ).get("amount")

    batch = CanonicalBatch()
    batch.orders.append(
        Order(
            order_id=order_id,
            channel=config.channel,
            account_name=config.account_name,
            order_number=str(order.get("name") or order.get("order_number") or order["id"]),
            order_date=order.get("created_at") or now,
            fulfillment_date=fulfillments[0].get("created_at") if fulfillments else None,
            customer_name=_shopify_customer(order),
            ship_state=address.get("province") or address.get("province_code") or "",
            ship_city=address.get("city") or "",
            ship_postal_code=address.get("zip") or "",
            subtotal_amount=to_decimal(order.get("subtotal_price")),
            tax_amount=to_decimal(order.get("total_tax")),
            shipping_amount=to_decimal(shipping),
            total_amount=to_decimal(order.get("total_price")),
            currency=currency,
            payment_status=order.get("financial_status") or "unknown",
            fulfillment_status=order.get("fulfillment_status") or "unfulfilled",
            created_at=now,
            updated_at=now,
        )
    )

    for item in order.get("line_items") or []:
        if not item.get("id"):
            raise RowError(f"Line item without an id in order {order_id}")
        quantity = to_int(item.get("quantity"))
        price = to_decimal(item.get("price"))
        fulfilled = quantity if item.get("fulfillment_status") == "fulfilled" else 0
        batch.line_items.append(
            OrderLineItem(
                order_id=order_id,
                channel=config.channel,
                line_item_id=str(item["id"]),
                sku=item.get("sku")
                or f"SHOPIFY-{item.get('product_id')}-{item.get('variant_id')}",
                product_name=item.get("name") or item.get("title") or "",
                quantity=quantity,
                unit_price=price,
                line_total=price * quantity,
                currency=currency,
                quantity_fulfilled=fulfilled,
                quantity_unfulfilled=quantity - fulfilled,
                created_at=now,
                updated_at=now,
            )
        )
    return batch


def canonicalize_amazon_order_row(
    row: dict[str, Any], config: ChannelConfig, resolver: SkuResolver, now: datetime
) -> CanonicalBatch:
    """
    One all-orders report row (one order item) -> a partial Order and one
    OrderLineItem. Rows of the same order are collapsed at merge time.
    """
    order_id = (row.get("amazon-order-id") or "").strip()
    if not order_id:
        raise RowError("Report row without amazon-order-id")

    item_price = to_decimal(row.get("item-price"))
    item_tax = to_decimal(row.get("item-tax"))
    shipping = to_decimal(row.get("shipping-price"))
    quantity = to_int(row.get("quantity-purchased"), default=1)
    currency = row.get("currency") or config.default_currency

    order = Order(
        order_id=order_id,
        channel=config.channel,
        account_name=config.account_name,
        order_number=order_id,
        order_date=row.get("purchase-date") or now,
        customer_name=row.get("buyer-name") or row.get("recipient-name") or AMAZON_GUEST,
        ship_state=row.get("ship-state") or row.get("ship-state-or-region") or "",
        ship_city=row.get("ship-city") or "",
        ship_postal_code=row.get("ship-postal-code") or "",
        subtotal_amount=item_price,
        tax_amount=item_tax,
        shipping_amount=shipping,
        total_amount=item_price + item_tax + shipping,
        currency=currency,
        payment_status=row.get("payment-method") or "unknown",
        fulfillment_status=row.get("order-status") or "unknown",
        created_at=now,
        updated_at=now,
    )
    # Without an item id, the channel SKU keeps items of one order apart
    item_ref = row.get("sku") or row.get("asin") or "1"
    line_item = OrderLineItem(
        order_id=order_id,
        channel=config.channel,
        line_item_id=row.get("order-item-id") or f"{order_id}-{item_ref}",
        sku=row.get("sku") or "",
        product_name=row.get("product-name") or "",
        quantity=quantity,
        unit_price=item_price / quantity if quantity else item_price,
        line_total=item_price,
        currency=currency,
        quantity_fulfilled=0,
        quantity_unfulfilled=quantity,
        created_at=now,
        updated_at=now,
    )
    return CanonicalBatch(orders=[order], line_items=[line_item])


# --- Inventory ---


def _inventory_record(
    channel_sku: str,
    config: ChannelConfig,
    resolver: SkuResolver,
    now: datetime,
    *,
    location: str,
    location_type: str,
    available: int,
    reserved: int = 0,
    inbound: int = 0,
    total: Optional[int] = None,
) -> InventoryRecord:
    resolved = resolver.resolve(config.channel, channel_sku)

    def units(quantity: int) -> int:
        return resolver.convert_quantity(resolved, quantity)

    if resolved.is_case_product:
        logger.info(
            f"📦 Case conversion: {channel_sku} {available} cases x "
            f"{resolved.units_per_case} = {units(available)} units"
        )
    return InventoryRecord(
        sku=resolved.master_sku,
        location=location,
        location_type=location_type,
        available_quantity=units(available),
        reserved_quantity=units(reserved),
        inbound_quantity=units(inbound),
        total_quantity=units(available if total is None else total),
        last_updated=now,
        original_sku=channel_sku,
        original_quantity=available,
        is_case_converted=resolved.is_case_product,
    )


def canonicalize_logisp_item(
    item: dict[str, Any], config: ChannelConfig, resolver: SkuResolver, now: datetime
) -> CanonicalBatch:
    sku = item.get("sku") or item.get("SKU") or item.get("itemCode")
    if not sku:
        raise RowError("Inventory item without a SKU")

    quantity = to_int(item.get("quantity") or item.get("stock") or item.get("available"))
    record = _inventory_record(
        str(sku).strip(),
        config,
        resolver,
        now,
        location=settings.LOGISP_LOCATION,
        location_type="external-warehouse",
        available=quantity,
    )
    return CanonicalBatch(inventory=[record])


def canonicalize_fba_inventory_row(
    row: dict[str, Any], config: ChannelConfig, resolver: SkuResolver, now: datetime
) -> CanonicalBatch:
    sku = (row.get("sku") or "").strip()
    if not sku:
        raise RowError("FBA inventory row without a sku")

    available = to_int(row.get("afn-fulfillable-quantity"))
    inbound = sum(
        to_int(row.get(column))
        for column in (
            "afn-inbound-working-quantity",
            "afn-inbound-shipped-quantity",
            "afn-inbound-receiving-quantity",
        )
    )
    total = row.get("afn-total-quantity")
    record = _inventory_record(
        sku,
        config,
        resolver,
        now,
        location=f"FBA-{config.marketplace_code}",
        location_type="marketplace-managed",
        available=available,
        reserved=to_int(row.get("afn-reserved-quantity")),
        inbound=inbound,
        total=to_int(total) if total not in (None, "") else None,
    )
    return CanonicalBatch(inventory=[record])


# --- Registry ---
# Channel kind -> canonicalizer for its raw record shape.
PARSER_REGISTRY: dict[str, Canonicalizer] = {
    "shopify": canonicalize_shopify_order,
    "amazon": canonicalize_amazon_order_row,
    "amazon-fba": canonicalize_fba_inventory_row,
    "logisp": canonicalize_logisp_item,
}


def canonicalize_records(
    records: list[dict[str, Any]],
    config: ChannelConfig,
    resolver: SkuResolver,
    parser: Optional[Canonicalizer] = None,
    now: Optional[datetime] = None,
) -> CanonicalizeResult:
    """
    Runs the channel's canonicalizer over every record. A record that fails
    is logged and skipped; the rest carry on.
    """
    parser = parser or PARSER_REGISTRY[config.kind]
    now = now or utc_now()
    result = CanonicalizeResult(batch=CanonicalBatch(), records_seen=len(records))

    for index, record in enumerate(records):
        try:
            result.batch.extend(parser(record, config, resolver, now))
        except (RowError, ValidationError, ValueError, TypeError, KeyError, AttributeError) as e:
            reason = e.message if isinstance(e, RowError) else f"{type(e).__name__}: {e}"
            result.skipped += 1
            result.skip_reasons.append(f"record {index}: {reason}")
            logger.warning(f"⚠️ {config.channel}: skipping record {index}: {reason}")

    logger.info(
        f"🔄 {config.channel}: {result.records_seen} records -> {len(result.batch)} canonical rows "
        f"({result.skipped} skipped)"
    )
    return result
