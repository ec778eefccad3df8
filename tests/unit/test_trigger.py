from datetime import datetime, timezone

import pytest

from channel_sync.exceptions import ConfigurationError
from channel_sync.schemas import SkuMapping
from channel_sync.sku_resolver import SkuResolver
from channel_sync.trigger import SyncRequest, run_stockout_check, run_sync, seed_sku_mappings
from channel_sync.warehouse import inventory, orders
from conftest import AMAZON_ENV, LOGISP_ENV, SHOPIFY_ENV, FakeSession, make_response
from main import build_parser

ORDERS_PAGE = {
    "orders": [
        {
            "id": 1001,
            "created_at": "2025-03-01T10:00:00+09:00",
            "total_price": "2200",
            "currency": "JPY",
            "line_items": [
                {"id": 1, "sku": "WATER", "quantity": 2, "price": "1000"},
            ],
        },
        {
            "id": 1002,
            "created_at": "2025-03-01T11:00:00+09:00",
            "total_price": "1650",
            "currency": "JPY",
            "line_items": [
                {"id": 2, "sku": "TEA", "quantity": 1, "price": "500"},
                {"id": 3, "sku": "WATER", "quantity": 1, "price": "1000"},
            ],
        },
    ]
}


def _sync(request, warehouse, clock, responses, env=SHOPIFY_ENV, resolver=None):
    return run_sync(
        request,
        env=env,
        warehouse=warehouse,
        resolver=resolver if resolver is not None else SkuResolver(),
        session=FakeSession(responses),
        sleep=clock.sleep,
        clock=clock,
    )


def test_shopify_sync_end_to_end(warehouse, clock):
    response = _sync({"channel": "shopify", "days_back": 7}, warehouse, clock, [make_response(200, ORDERS_PAGE)])

    assert response.status_code == 200
    body = response.body
    assert body["success"] is True
    assert body["channel"] == "Shopify"
    assert body["account_name"] == "TestShop"
    assert body["records_fetched"] == 2
    assert body["inserted"] == {"orders": 2, "order_items": 3}
    assert body["updated"] == {"orders": 0, "order_items": 0}
    assert body["pages_fetched"] == 1
    assert body["cleanup_failures"] == []
    assert 90 in clock.sleeps


def test_second_identical_sync_updates_without_duplicates(warehouse, clock):
    _sync({"channel": "shopify", "days_back": 7}, warehouse, clock, [make_response(200, ORDERS_PAGE)])

    response = _sync({"channel": "shopify", "days_back": 7}, warehouse, clock, [make_response(200, ORDERS_PAGE)])

    assert response.body["inserted"] == {"orders": 0, "order_items": 0}
    assert response.body["updated"] == {"orders": 2, "order_items": 3}
    assert warehouse.count(orders) == 2
    assert warehouse.count("order_items") == 3


def test_amazon_sync_collapses_item_rows_into_one_order(warehouse, clock):
    tsv = (
        "amazon-order-id\torder-item-id\tpurchase-date\tsku\tquantity-purchased\titem-price\titem-tax\n"
        "503-1\tI1\t2025-03-01T00:00:00+00:00\tWATER\t2\t2000\t200\n"
        "503-1\tI2\t2025-03-01T00:00:00+00:00\tTEA\t1\t500\t50\n"
    )
    responses = [
        make_response(200, {"access_token": "Atza|token"}),
        make_response(202, {"reportId": "REP1"}),
        make_response(200, {"processingStatus": "DONE", "reportDocumentId": "DOC1"}),
        make_response(200, {"reportDocumentId": "DOC1", "url": "https://s3.test/doc1"}),
        make_response(200, content=tsv.encode("utf-8")),
    ]

    response = _sync({"channel": "amazon", "days_back": 7}, warehouse, clock, responses, env=AMAZON_ENV)

    assert response.status_code == 200
    assert response.body["windows_processed"] == 1
    assert response.body["inserted"] == {"orders": 1, "order_items": 2}
    with warehouse.engine.connect() as conn:
        total = conn.execute(orders.select()).mappings().one()["total_amount"]
    assert float(total) == 2750


def test_logisp_sync_converts_cases(warehouse, clock):
    resolver = SkuResolver(
        [SkuMapping(channel="Logisp", channel_sku="CASE-12", master_sku="WATER", is_case_product=True, units_per_case=12)]
    )
    payload = {"inventories": [{"sku": "CASE-12", "quantity": 5}, {"sku": "LOOSE", "quantity": 2}]}

    response = _sync(
        {"channel": "logisp"}, warehouse, clock, [make_response(200, payload)], env=LOGISP_ENV, resolver=resolver
    )

    assert response.status_code == 200
    assert response.body["unmapped_skus"] == [{"channel": "Logisp", "channel_sku": "LOOSE"}]
    with warehouse.engine.connect() as conn:
        stock = {r["sku"]: r for r in conn.execute(inventory.select()).mappings()}
    assert stock["WATER"]["available_quantity"] == 60
    assert stock["WATER"]["original_quantity"] == 5
    assert stock["LOOSE"]["available_quantity"] == 2


def test_missing_credentials_is_400(warehouse, clock):
    response = _sync({"channel": "shopify"}, warehouse, clock, [], env={})

    assert response.status_code == 400
    assert response.body["success"] is False
    assert response.body["error_type"] == "ConfigurationError"
    assert "SHOPIFY_STORE_1" in response.body["details"]["missing"]


def test_upstream_auth_failure_is_502(warehouse, clock):
    response = _sync({"channel": "shopify"}, warehouse, clock, [make_response(401, {"errors": "Invalid API key"})])

    assert response.status_code == 502
    assert response.body["error_type"] == "PermanentChannelError"
    assert "Invalid API key" in response.body["error"]
    assert response.body["details"]["upstream_status"] == 401


def test_unhandled_error_is_500_with_trace(warehouse, clock):
    response = _sync({"channel": "shopify"}, warehouse, clock, [RuntimeError("boom")])

    assert response.status_code == 500
    assert response.body["error"] == "boom"
    assert response.body["error_type"] == "RuntimeError"
    assert "RuntimeError" in response.body["trace"]


def test_invalid_request_is_400(warehouse, clock):
    assert _sync({"channel": "ebay"}, warehouse, clock, []).status_code == 400
    assert _sync({"channel": "shopify", "start": "2025-03-01T00:00:00"}, warehouse, clock, []).status_code == 400


def test_explicit_window_wins_over_lookback():
    request = SyncRequest(
        channel="amazon", start=datetime(2025, 1, 1), end=datetime(2025, 2, 1), days_back=3
    )

    window = request.window()
    assert (window.start, window.end) == (
        datetime(2025, 1, 1, tzinfo=timezone.utc),
        datetime(2025, 2, 1, tzinfo=timezone.utc),
    )


def test_mixed_naive_and_aware_window_is_400(warehouse, clock):
    request = {"channel": "shopify", "start": "2025-03-02T00:00:00", "end": "2025-03-01T09:00:00+09:00"}

    response = _sync(request, warehouse, clock, [])

    assert response.status_code == 400
    assert "start must be before end" in response.body["error"]
    assert SyncRequest(
        channel="shopify", start="2025-03-01T00:00:00", end="2025-03-01T10:00:00+09:00"
    ).window().start == datetime(2025, 3, 1, tzinfo=timezone.utc)


def test_full_sync_widens_defaults():
    assert SyncRequest(channel="shopify", full_sync=True).max_pages > SyncRequest(channel="shopify").max_pages
    assert SyncRequest(channel="shopify", full_sync=True, days_back=2).lookback_days == 2


def test_stockout_check_response(warehouse):
    response = run_stockout_check(warehouse=warehouse, resolver=SkuResolver(), webhook_url="")

    assert response.status_code == 200
    assert response.body["success"] is True
    assert response.body["skus_checked"] == 0


def test_seed_sku_mappings(warehouse, tmp_path):
    path = tmp_path / "skus.csv"
    path.write_text(
        "channel,channel_sku,master_sku,is_case_product,units_per_case\n"
        "Logisp,CASE-12,WATER,true,12\n"
        "Shopify,shop-water,WATER,,\n"
        "Logisp,BROKEN,TEA,yes,many\n",
        encoding="utf-8",
    )

    assert seed_sku_mappings(path, warehouse) == 2
    resolver = SkuResolver.from_warehouse(warehouse)
    assert resolver.resolve("Logisp", "CASE-12").units_per_case == 12


def test_seed_sku_mappings_rejects_bad_files(warehouse, tmp_path):
    with pytest.raises(ConfigurationError):
        seed_sku_mappings(tmp_path / "missing.csv", warehouse)

    path = tmp_path / "bad.csv"
    path.write_text("sku,master\nA,B\n", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        seed_sku_mappings(path, warehouse)


def test_cli_arguments():
    args = build_parser().parse_args(
        ["sync", "amazon-fba", "--account", "2", "--marketplace", "US", "--days-back", "3"]
    )

    assert (args.command, args.channel, args.account, args.marketplace, args.days_back) == (
        "sync",
        "amazon-fba",
        2,
        "US",
        3,
    )
    assert args.full_sync is False
    assert build_parser().parse_args(["load-skus", "skus.csv"]).csv_path == "skus.csv"
