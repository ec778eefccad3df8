import pytest

from channel_sync.accounts import load_channel_config
from channel_sync.exceptions import ConfigurationError
from conftest import AMAZON_ENV, SHOPIFY_ENV


def test_shopify_account_index_selects_credentials():
    env = {
        **SHOPIFY_ENV,
        "SHOPIFY_STORE_2": "second-store",
        "SHOPIFY_ACCESS_TOKEN_2": "shpat_two",
        "ACCOUNT_NAME_2": "SecondShop",
    }

    config = load_channel_config("shopify", 2, env=env)

    assert (config.store, config.access_token, config.account_name) == (
        "second-store",
        "shpat_two",
        "SecondShop",
    )
    assert config.lock_key == "shopify:Shopify:SecondShop"


def test_shopify_unsuffixed_fallback():
    config = load_channel_config(
        "shopify", 1, env={"SHOPIFY_STORE": "solo", "SHOPIFY_ACCESS_TOKEN": "tok"}
    )

    assert config.store == "solo"
    assert config.account_name == "Shopify-1"


def test_amazon_marketplace_fields():
    config = load_channel_config("amazon", 1, "jp", env=AMAZON_ENV)

    assert config.channel == "Amazon-JP-1"
    assert config.marketplace["marketplace_id"] == "A1VC38T7YXB528"
    assert config.default_currency == "JPY"
    assert config.refresh_token == "Atzr|refresh"


def test_missing_credentials_are_named():
    with pytest.raises(ConfigurationError) as exc_info:
        load_channel_config("amazon", 2, "JP", env=AMAZON_ENV)

    error = exc_info.value
    assert error.status_code == 400
    assert "AMAZON_JP_REFRESH_TOKEN_2" in error.details["missing"]


@pytest.mark.parametrize(
    "kind, account, marketplace",
    [("ebay", 1, "JP"), ("amazon", 1, "ZZ"), ("shopify", 0, "JP")],
)
def test_invalid_run_parameters(kind, account, marketplace):
    with pytest.raises(ConfigurationError):
        load_channel_config(kind, account, marketplace, env={**SHOPIFY_ENV, **AMAZON_ENV})
