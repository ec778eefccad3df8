import json
import logging
from typing import Any, Optional

import pandas as pd
import requests

from . import settings
from . import utils
from .schemas import StockoutAlert

logger = logging.getLogger(__name__)


def save_alert_outputs(alerts: list[StockoutAlert], filename_base: str = settings.ALERT_FILENAME_BASE):
    """Saves an alert run to CSV and JSON, with dated filenames."""
    settings.OUTPUT_DIR.mkdir(parents=True, exist_ok=True)
    date_suffix = utils.get_date_suffix_for_filename()

    csv_path = settings.OUTPUT_DIR / f"{filename_base}_{date_suffix}.csv"
    json_path = settings.OUTPUT_DIR / f"{filename_base}_{date_suffix}.json"

    rows = [alert.to_row() for alert in alerts]
    pd.DataFrame(rows, columns=list(StockoutAlert.model_fields)).to_csv(csv_path, index=False)
    logger.info(f"✅ Alerts saved to: {csv_path}")

    with open(json_path, "w") as f:
        json.dump([alert.model_dump(mode="json") for alert in alerts], f, indent=2, default=str)
    logger.info(f"✅ JSON output saved to: {json_path}")
    return csv_path, json_path


def build_stockout_message(
    alerts: list[StockoutAlert], max_items: int = settings.MAX_NOTIFIED_CRITICAL
) -> Optional[dict[str, Any]]:
    """
    Slack block message: header, critical/warning counts, divider, then one
    block per CRITICAL alert (at most `max_items`, most urgent first).
    Returns None when there is nothing to report.
    """
    critical = [a for a in alerts if a.alert_level == "CRITICAL"]
    warning_count = sum(1 for a in alerts if a.alert_level == "WARNING")
    if not critical and not warning_count:
        return None

    blocks: list[dict[str, Any]] = [
        {"type": "header", "text": {"type": "plain_text", "text": "🚨 Stockout alert"}},
        {
            "type": "section",
            "text": {
                "type": "mrkdwn",
                "text": f"*Summary*\n🔴 Critical: {len(critical)}\n⚠️ Warning: {warning_count}",
            },
        },
        {"type": "divider"},
    ]

    for alert in critical[:max_items]:
        if alert.current_stock <= 0:
            status = "Out of stock"
        else:
            status = f"Stockout in {alert.days_until_stockout} days ({alert.predicted_stockout_date})"
        blocks.append(
            {
                "type": "section",
                "text": {
                    "type": "mrkdwn",
                    "text": (
                        f"*{alert.product_name}*\n"
                        f"Master SKU: `{alert.sku}`\n"
                        f"{status}\n"
                        f"Stock: {alert.current_stock} | Inbound: {alert.inbound_stock}\n"
                        f"Daily sales: {alert.daily_sales_rate:.2f}/day\n"
                        f"📦 Suggested order: {alert.suggested_order_qty}"
                    ),
                },
            }
        )

    if len(critical) > max_items:
        blocks.append(
            {
                "type": "context",
                "elements": [
                    {"type": "mrkdwn", "text": f"+{len(critical) - max_items} more critical SKUs"}
                ],
            }
        )
    return {"blocks": blocks}


def post_to_webhook(
    payload: dict[str, Any],
    url: Optional[str] = None,
    session: Optional[requests.Session] = None,
) -> bool:
    """
    Posts a payload to the webhook. A missing URL is a no-op and a failed post
    is logged; neither raises.
    """
    url = url if url is not None else settings.SLACK_WEBHOOK_URL
    if not url:
        logger.warning("⚠️ SLACK_WEBHOOK_URL not set. Skipping webhook post.")
        return False

    logger.info("🚀 Posting notification to webhook...")
    try:
        response = (session or requests).post(
            url, json=payload, timeout=settings.WEBHOOK_TIMEOUT_SECONDS
        )
        response.raise_for_status()
        logger.info("✅ Notification posted to webhook.")
        return True
    except requests.exceptions.RequestException as e:
        logger.error(f"❌ Error posting to webhook: {e}")
        return False


def notify_stockout(
    alerts: list[StockoutAlert],
    url: Optional[str] = None,
    session: Optional[requests.Session] = None,
    max_items: int = settings.MAX_NOTIFIED_CRITICAL,
) -> bool:
    message = build_stockout_message(alerts, max_items)
    if message is None:
        logger.info("ℹ️ No stockout alerts to notify.")
        return False
    return post_to_webhook(message, url, session)
