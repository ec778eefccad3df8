"""
Shared fixtures: an in-memory warehouse, a fake clock whose sleep advances
time, and a scripted requests session.
"""
import json
from typing import Any, Optional

import pytest
import requests
import sqlalchemy as sa
from sqlalchemy.pool import StaticPool

from channel_sync.accounts import load_channel_config
from channel_sync.warehouse import Warehouse

SHOPIFY_ENV = {
    "SHOPIFY_STORE_1": "test-store",
    "SHOPIFY_ACCESS_TOKEN_1": "shpat_test",
    "ACCOUNT_NAME_1": "TestShop",
}
AMAZON_ENV = {
    "AMAZON_JP_CLIENT_ID_1": "amzn.client",
    "AMAZON_JP_CLIENT_SECRET_1": "secret",
    "AMAZON_JP_REFRESH_TOKEN_1": "Atzr|refresh",
}
LOGISP_ENV = {"LOGISP_API_KEY": "logisp-key"}


class FakeClock:
    """Monotonic clock stand-in. sleep() records the delay and moves time forward."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_response(
    status: int = 200,
    payload: Any = None,
    *,
    content: Optional[bytes] = None,
    headers: Optional[dict[str, str]] = None,
    url: str = "https://api.test/",
) -> requests.Response:
    resp = requests.Response()
    resp.status_code = status
    if content is not None:
        resp._content = content
    else:
        resp._content = json.dumps({} if payload is None else payload).encode("utf-8")
        resp.encoding = "utf-8"
    resp.headers.update(headers or {})
    resp.url = url
    return resp


class FakeSession:
    """Plays back queued responses (or raises queued exceptions) in order."""

    def __init__(self, responses=None):
        self.responses = list(responses or [])
        self.calls: list[dict[str, Any]] = []

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, **kwargs):
        return self.request("POST", url, **kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def warehouse() -> Warehouse:
    engine = sa.create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    wh = Warehouse(engine=engine)
    wh.create_all()
    yield wh
    engine.dispose()


@pytest.fixture
def shopify_config():
    return load_channel_config("shopify", 1, env=SHOPIFY_ENV)


@pytest.fixture
def amazon_config():
    return load_channel_config("amazon", 1, "JP", env=AMAZON_ENV)


@pytest.fixture
def fba_config():
    return load_channel_config("amazon-fba", 1, "JP", env=AMAZON_ENV)


@pytest.fixture
def logisp_config():
    return load_channel_config("logisp", env=LOGISP_ENV)
