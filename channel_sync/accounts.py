"""
Per-run channel configuration.

Credentials are selected by channel kind and account index and resolved once,
up front, into an immutable ChannelConfig. Nothing downstream reads the
environment.
"""
import os
from dataclasses import dataclass, field
from typing import Mapping, Optional

from . import settings
from .exceptions import ConfigurationError

CHANNEL_KINDS = ("shopify", "amazon", "amazon-fba", "logisp")


@dataclass(frozen=True)
class ChannelConfig:
    kind: str
    channel: str  # label stored in the `channel` column
    account_name: str
    account: int = 1
    store: Optional[str] = None
    access_token: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    refresh_token: Optional[str] = None
    api_key: Optional[str] = None
    marketplace_code: Optional[str] = None
    marketplace: dict = field(default_factory=dict)
    default_currency: str = "JPY"

    @property
    def lock_key(self) -> str:
        return f"{self.kind}:{self.channel}:{self.account_name}"


def _lookup(env: Mapping[str, str], *names: str) -> Optional[str]:
    for name in names:
        value = env.get(name)
        if value:
            return value
    return None


def _shopify(account: int, env: Mapping[str, str]) -> ChannelConfig:
    store = _lookup(env, f"SHOPIFY_STORE_{account}", "SHOPIFY_STORE")
    token = _lookup(env, f"SHOPIFY_ACCESS_TOKEN_{account}", "SHOPIFY_ACCESS_TOKEN")
    missing = [
        name
        for name, value in (
            (f"SHOPIFY_STORE_{account}", store),
            (f"SHOPIFY_ACCESS_TOKEN_{account}", token),
        )
        if not value
    ]
    if missing:
        raise ConfigurationError(
            f"Missing environment variables: {', '.join(missing)}", missing
        )

    return ChannelConfig(
        kind="shopify",
        channel="Shopify",
        account=account,
        account_name=_lookup(env, f"ACCOUNT_NAME_{account}", "ACCOUNT_NAME")
        or f"Shopify-{account}",
        store=store,
        access_token=token,
        default_currency=settings.SHOPIFY_DEFAULT_CURRENCY,
    )


def _amazon(kind: str, account: int, marketplace: str, env: Mapping[str, str]) -> ChannelConfig:
    code = marketplace.upper()
    if code not in settings.MARKETPLACES:
        raise ConfigurationError(
            f"Unknown marketplace '{marketplace}'. Expected one of: "
            f"{', '.join(settings.MARKETPLACES)}"
        )

    prefix, suffix = f"AMAZON_{code}", f"_{account}"
    names = {
        "client_id": f"{prefix}_CLIENT_ID{suffix}",
        "client_secret": f"{prefix}_CLIENT_SECRET{suffix}",
        "refresh_token": f"{prefix}_REFRESH_TOKEN{suffix}",
    }
    values = {key: env.get(name) for key, name in names.items()}
    missing = [names[key] for key, value in values.items() if not value]
    if missing:
        raise ConfigurationError(
            f"Missing environment variables: {', '.join(missing)}", missing
        )

    market = settings.MARKETPLACES[code]
    return ChannelConfig(
        kind=kind,
        channel=f"Amazon-{code}-{account}",
        account=account,
        account_name=env.get(f"ACCOUNT_NAME{suffix}") or f"Amazon {code} {account}",
        marketplace_code=code,
        marketplace=dict(market),
        default_currency=market["currency"],
        **values,
    )


def _logisp(env: Mapping[str, str]) -> ChannelConfig:
    api_key = env.get("LOGISP_API_KEY")
    if not api_key:
        raise ConfigurationError(
            "Missing environment variable: LOGISP_API_KEY", ["LOGISP_API_KEY"]
        )
    return ChannelConfig(
        kind="logisp",
        channel="Logisp",
        account_name=settings.LOGISP_LOCATION,
        api_key=api_key,
    )


def load_channel_config(
    kind: str,
    account: int = 1,
    marketplace: str = "JP",
    env: Optional[Mapping[str, str]] = None,
) -> ChannelConfig:
    """Resolves the configuration record for one run. Raises ConfigurationError."""
    env = os.environ if env is None else env
    kind = kind.lower()

    if account < 1:
        raise ConfigurationError(f"Account index must be >= 1, got {account}")
    if kind == "shopify":
        return _shopify(account, env)
    if kind in ("amazon", "amazon-fba"):
        return _amazon(kind, account, marketplace, env)
    if kind == "logisp":
        return _logisp(env)
    raise ConfigurationError(
        f"Unknown channel '{kind}'. Expected one of: {', '.join(CHANNEL_KINDS)}"
    )
