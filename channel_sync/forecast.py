"""
Stockout forecasting.

Rates and ratios are computed with Fractions so the classification
boundaries are exact (floor(15/2) must be 7, not 7.499999...).
"""
import math
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from fractions import Fraction
from typing import Optional

import pandas as pd

from . import settings
from .schemas import StockoutAlert

CRITICAL = "CRITICAL"
WARNING = "WARNING"


@dataclass(frozen=True)
class StockoutEstimate:
    sku: str
    product_name: str
    total_sold: int
    available: int
    inbound: int
    daily_sales_rate: Fraction
    days_until_stockout: int
    depleted: bool
    alert_level: Optional[str]
    suggested_order_qty: int


def classify(
    days_until_stockout: int,
    depleted: bool = False,
    critical_days: int = settings.CRITICAL_DAYS,
    warning_days: int = settings.WARNING_DAYS,
) -> Optional[str]:
    if depleted or days_until_stockout <= critical_days:
        return CRITICAL
    if days_until_stockout <= warning_days:
        return WARNING
    return None


def estimate(
    sku: str,
    total_sold: int,
    available: int,
    inbound: int = 0,
    product_name: str = "",
    *,
    window_days: int = settings.SALES_WINDOW_DAYS,
    cover_days: int = settings.REORDER_COVER_DAYS,
    critical_days: int = settings.CRITICAL_DAYS,
    warning_days: int = settings.WARNING_DAYS,
) -> StockoutEstimate:
    """
    Depletion estimate for one master SKU with positive sales in the window.

    Zero (or negative) stock is depleted whatever the sales rate.
    """
    if total_sold <= 0:
        raise ValueError(f"No sales for {sku}: nothing to forecast")

    daily = Fraction(total_sold, window_days)
    depleted = available <= 0
    days = 0 if depleted else math.floor(Fraction(available) / daily)
    suggested = math.ceil(daily * cover_days) - available - inbound

    return StockoutEstimate(
        sku=sku,
        product_name=product_name or sku,
        total_sold=total_sold,
        available=available,
        inbound=inbound,
        daily_sales_rate=daily,
        days_until_stockout=days,
        depleted=depleted,
        alert_level=classify(days, depleted, critical_days, warning_days),
        suggested_order_qty=max(0, suggested),
    )


def build_forecast(sales: pd.DataFrame, stock: pd.DataFrame, **kwargs) -> list[StockoutEstimate]:
    """
    sales: one row per master SKU (sku, product_name, total_sold).
    stock: one row per master SKU (sku, available, inbound); SKUs missing
    here have no stock at all.
    """
    if sales.empty:
        return []

    sales = sales[sales["total_sold"] > 0]
    stock = stock if not stock.empty else pd.DataFrame(columns=["sku", "available", "inbound"])
    merged = pd.merge(sales, stock, on="sku", how="left")
    merged[["available", "inbound"]] = merged[["available", "inbound"]].fillna(0)

    return [
        estimate(
            row["sku"],
            int(row["total_sold"]),
            int(row["available"]),
            int(row["inbound"]),
            row.get("product_name") or "",
            **kwargs,
        )
        for row in merged.to_dict("records")
    ]


def to_alerts(
    estimates: list[StockoutEstimate],
    run_id: str,
    today: date,
    calculated_at: datetime,
) -> list[StockoutAlert]:
    """One alert row per alerting SKU, most urgent first."""
    alerts = [
        StockoutAlert(
            run_id=run_id,
            sku=e.sku,
            product_name=e.product_name,
            current_stock=e.available,
            inbound_stock=e.inbound,
            daily_sales_rate=float(e.daily_sales_rate),
            days_until_stockout=e.days_until_stockout,
            alert_level=e.alert_level,
            suggested_order_qty=e.suggested_order_qty,
            predicted_stockout_date=today + timedelta(days=e.days_until_stockout),
            calculated_at=calculated_at,
        )
        for e in estimates
        if e.alert_level is not None
    ]
    return sorted(alerts, key=urgency)


def urgency(alert: StockoutAlert) -> tuple:
    return (alert.days_until_stockout, -alert.daily_sales_rate, alert.sku)
