from datetime import timedelta
from decimal import Decimal

import sqlalchemy as sa

from channel_sync.pipelines.stockout import StockoutPipeline
from channel_sync.schemas import InventoryRecord, Order, OrderLineItem, SkuMapping
from channel_sync.sku_resolver import SkuResolver
from channel_sync.utils import utc_now
from channel_sync.warehouse import inventory, order_items, orders, stockout_alert
from conftest import FakeSession, make_response

WEBHOOK = "https://hooks.slack.test/services/T000/B000/XXX"


def _seed_sale(conn, channel, order_id, sku, quantity, days_ago=3):
    when = utc_now() - timedelta(days=days_ago)
    conn.execute(
        orders.insert(),
        Order(
            order_id=order_id,
            channel=channel,
            account_name="Test",
            order_number=order_id,
            order_date=when,
            customer_name="Guest",
            currency="JPY",
            created_at=when,
            updated_at=when,
        ).to_row(),
    )
    conn.execute(
        order_items.insert(),
        OrderLineItem(
            order_id=order_id,
            channel=channel,
            line_item_id="1",
            sku=sku,
            product_name=f"Product {sku}",
            quantity=quantity,
            unit_price=Decimal("100"),
            currency="JPY",
            quantity_unfulfilled=quantity,
            created_at=when,
            updated_at=when,
        ).to_row(),
    )


def _seed_stock(conn, sku, location, available, inbound=0):
    conn.execute(
        inventory.insert(),
        InventoryRecord(
            sku=sku,
            location=location,
            location_type="external-warehouse",
            available_quantity=available,
            inbound_quantity=inbound,
            last_updated=utc_now(),
            original_sku=sku,
        ).to_row(),
    )


def _seed(warehouse):
    with warehouse.engine.begin() as conn:
        # WATER: 40 on Shopify + 20 on Amazon under its own SKU = 2/day
        _seed_sale(conn, "Shopify", "S-1", "WATER", 40)
        _seed_sale(conn, "Amazon-JP-1", "A-1", "AMZ-WATER", 20)
        # TEA: 1/day
        _seed_sale(conn, "Shopify", "S-2", "TEA", 30)
        # COFFEE: slow seller, well stocked
        _seed_sale(conn, "Shopify", "S-3", "COFFEE", 3)
        # Outside the sales window
        _seed_sale(conn, "Shopify", "S-OLD", "TEA", 500, days_ago=90)

        _seed_stock(conn, "WATER", "Logisp", 10)
        _seed_stock(conn, "WATER", "FBA-JP", 4, inbound=6)
        _seed_stock(conn, "TEA", "Logisp", 10)
        _seed_stock(conn, "COFFEE", "Logisp", 100)


def _resolver():
    return SkuResolver(
        [SkuMapping(channel="Amazon-JP-1", channel_sku="AMZ-WATER", master_sku="WATER")]
    )


def test_alerts_persisted_and_notified(warehouse):
    _seed(warehouse)
    session = FakeSession([make_response(200, {"ok": True})])

    result = StockoutPipeline(
        warehouse, resolver=_resolver(), webhook_url=WEBHOOK, session=session, save_output=False
    ).run()

    assert result.skus_checked == 3
    assert (result.critical, result.warning) == (1, 1)
    assert result.alerts_saved == 2
    assert result.notified

    with warehouse.engine.connect() as conn:
        rows = {r["sku"]: r for r in conn.execute(sa.select(stockout_alert)).mappings()}
    assert set(rows) == {"WATER", "TEA"}
    water = rows["WATER"]
    assert (water["current_stock"], water["inbound_stock"]) == (14, 6)
    assert water["days_until_stockout"] == 7
    assert water["alert_level"] == "CRITICAL"
    assert water["suggested_order_qty"] == 40
    assert rows["TEA"]["alert_level"] == "WARNING"
    assert rows["TEA"]["run_id"] == result.run_id

    text = str(session.calls[0]["json"])
    assert "`WATER`" in text


def test_sales_without_any_stock_row_are_out_of_stock(warehouse):
    with warehouse.engine.begin() as conn:
        _seed_sale(conn, "Shopify", "S-1", "GHOST", 5)

    result = StockoutPipeline(
        warehouse, resolver=SkuResolver(), webhook_url="", save_output=False
    ).run()

    assert result.critical == 1
    assert result.notified is False
    assert warehouse.count(stockout_alert) == 1


def test_no_sales_no_alerts(warehouse):
    session = FakeSession()

    result = StockoutPipeline(
        warehouse, resolver=SkuResolver(), webhook_url=WEBHOOK, session=session, save_output=False
    ).run()

    assert result.skus_checked == 0
    assert result.alerts_saved == 0
    assert session.calls == []
