import logging
from typing import Any, Iterator

from channel_sync import settings
from channel_sync.connectors.base import ChannelConnector, ExtractionWindow
from channel_sync.exceptions import PermanentChannelError

logger = logging.getLogger(__name__)


class LogispInventoryConnector(ChannelConnector):
    """External-warehouse stock snapshot. The window is ignored."""

    entity = "inventory"

    def __init__(self, config, *, api_url: str = settings.LOGISP_API_URL, **kwargs):
        super().__init__(config, **kwargs)
        self.api_url = api_url

    def iter_records(self, window: ExtractionWindow) -> Iterator[dict[str, Any]]:
        logger.info("📡 Fetching Logisp inventory...")
        resp = self._request("GET", self.api_url, headers={"X-API-Key": self.config.api_key})
        payload = self._json(resp)
        self.stats.pages_fetched += 1

        # Either {"inventories": [...]} or a bare list
        inventories = payload.get("inventories") if isinstance(payload, dict) else payload
        if not isinstance(inventories, list):
            raise PermanentChannelError(
                self.channel,
                "Response is not a list of inventories",
                resp.status_code,
                resp.text[:200],
            )
        yield from inventories
