from datetime import date, datetime, timezone
from fractions import Fraction

import pandas as pd
import pytest

from channel_sync.forecast import CRITICAL, WARNING, build_forecast, classify, estimate, to_alerts

THRESHOLDS = dict(window_days=30, cover_days=30, critical_days=7, warning_days=14)


@pytest.mark.parametrize(
    "available, days, level",
    [
        (14, 7, CRITICAL),
        (15, 7, CRITICAL),
        (16, 8, WARNING),
        (28, 14, WARNING),
        (30, 15, None),
    ],
)
def test_classification_at_two_units_a_day(available, days, level):
    result = estimate("WATER", 60, available, **THRESHOLDS)

    assert result.daily_sales_rate == Fraction(2)
    assert result.days_until_stockout == days
    assert result.alert_level == level


def test_zero_stock_is_critical_regardless_of_rate():
    result = estimate("WATER", 1, 0, **THRESHOLDS)

    assert result.depleted
    assert result.days_until_stockout == 0
    assert result.alert_level == CRITICAL


def test_no_sales_is_not_forecast():
    with pytest.raises(ValueError):
        estimate("WATER", 0, 10, **THRESHOLDS)


def test_suggested_order_covers_thirty_days_net_of_inbound():
    assert estimate("WATER", 60, 14, inbound=10, **THRESHOLDS).suggested_order_qty == 36
    assert estimate("WATER", 60, 50, inbound=20, **THRESHOLDS).suggested_order_qty == 0
    # 7 sold / 30 days * 30 days rounds up to 7
    assert estimate("TEA", 7, 1, **THRESHOLDS).suggested_order_qty == 6


def test_classify_thresholds_are_configurable():
    assert classify(10, critical_days=10, warning_days=20) == CRITICAL
    assert classify(21, critical_days=10, warning_days=20) is None


def test_build_forecast_treats_missing_stock_as_zero():
    sales = pd.DataFrame(
        [
            {"sku": "WATER", "product_name": "Water", "total_sold": 60},
            {"sku": "TEA", "product_name": "Tea", "total_sold": 30},
            {"sku": "IDLE", "product_name": "Idle", "total_sold": 0},
        ]
    )
    stock = pd.DataFrame([{"sku": "WATER", "available": 100, "inbound": 5}])

    estimates = {e.sku: e for e in build_forecast(sales, stock, **THRESHOLDS)}

    assert set(estimates) == {"WATER", "TEA"}
    assert estimates["WATER"].days_until_stockout == 50
    assert estimates["WATER"].inbound == 5
    assert estimates["TEA"].depleted


def test_alerts_most_urgent_first_and_quiet_skus_dropped():
    estimates = [
        estimate("SLOW", 30, 10, **THRESHOLDS),  # 10 days, WARNING
        estimate("FAST", 90, 30, **THRESHOLDS),  # 10 days, faster
        estimate("OUT", 3, 0, **THRESHOLDS),
        estimate("FINE", 30, 100, **THRESHOLDS),
    ]
    today = date(2025, 3, 1)

    alerts = to_alerts(estimates, "run-1", today, datetime(2025, 3, 1, tzinfo=timezone.utc))

    assert [a.sku for a in alerts] == ["OUT", "FAST", "SLOW"]
    assert alerts[0].predicted_stockout_date == today
    assert alerts[1].predicted_stockout_date == date(2025, 3, 11)
    assert alerts[1].daily_sales_rate == 3.0
    assert {a.alert_level for a in alerts} == {CRITICAL, WARNING}
    assert all(a.run_id == "run-1" for a in alerts)
