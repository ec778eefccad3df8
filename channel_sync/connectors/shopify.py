import logging
from typing import Any, Iterator, Optional

from channel_sync import settings
from channel_sync.connectors.base import ChannelConnector, ExtractionWindow
from channel_sync.utils import isoformat_z

logger = logging.getLogger(__name__)


class ShopifyOrdersConnector(ChannelConnector):
    """
    Storefront orders through the Admin REST API.

    Pagination is cursor based: every response may carry a
    `Link: <...page_info=...>; rel="next"` header, and the next request is
    that URL as-is. Filters only go on the first request.
    """

    entity = "orders"

    def __init__(
        self,
        config,
        *,
        max_pages: int = settings.DEFAULT_MAX_PAGES,
        api_version: str = settings.SHOPIFY_API_VERSION,
        page_limit: int = settings.SHOPIFY_PAGE_LIMIT,
        **kwargs,
    ):
        super().__init__(config, **kwargs)
        self.max_pages = max_pages
        self.page_limit = page_limit
        self.base_url = (
            f"https://{config.store}.myshopify.com/admin/api/{api_version}/orders.json"
        )
        self.headers = {
            "X-Shopify-Access-Token": config.access_token,
            "Content-Type": "application/json",
        }

    def iter_records(self, window: ExtractionWindow) -> Iterator[dict[str, Any]]:
        logger.info(
            f"📡 Shopify {self.config.account_name}: orders created "
            f"{window.start.isoformat()} - {window.end.isoformat()} (max {self.max_pages} pages)"
        )

        def fetch_page(cursor: Optional[str]):
            if cursor is None:
                url = self.base_url
                params = {
                    "status": "any",
                    "limit": str(self.page_limit),
                    "created_at_min": isoformat_z(window.start),
                    "created_at_max": isoformat_z(window.end),
                }
            else:
                url, params = cursor, None

            resp = self._request("GET", url, params=params, headers=self.headers)
            orders = self._json(resp).get("orders") or []
            next_url = resp.links.get("next", {}).get("url")
            return orders, next_url

        yield from self.paginate_cursor(fetch_page, self.max_pages)
