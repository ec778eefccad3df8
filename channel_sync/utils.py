import csv
import io
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, Sequence

import pandas as pd

from .logger import ENCODING_LOGGER

encoding_logger = logging.getLogger(ENCODING_LOGGER)

REPLACEMENT_CHAR = "�"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_date_suffix_for_filename() -> str:
    """Returns the current date as a YYYY-MM-DD string for filenames."""
    return datetime.now().strftime("%Y-%m-%d")


def isoformat_z(dt: datetime) -> str:
    """Serializes a datetime as second-precision UTC ISO8601 with a 'Z' suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace(
        "+00:00", "Z"
    )


@dataclass(frozen=True)
class DecodedPayload:
    text: str
    encoding: str
    used_fallback: bool


def decode_payload(
    raw: bytes, primary: str = "utf-8", fallback: str = "shift_jis", source: str = ""
) -> DecodedPayload:
    """
    Decodes a downloaded document with a two-stage encoding fallback.

    1. The primary encoding, with undecodable bytes replaced.
    2. If the result contains U+FFFD (mojibake), the fallback encoding.

    The check is best-effort: a document that legitimately contains U+FFFD is
    decoded with the fallback, and a wrong-but-clean primary decode passes.
    """
    text = raw.decode(primary, errors="replace")
    if REPLACEMENT_CHAR not in text:
        return DecodedPayload(text, primary, False)

    encoding_logger.warning(
        f"⚠️ {primary} decode of {source or 'payload'} produced replacement characters. "
        f"Retrying with '{fallback}'."
    )
    text = raw.decode(fallback, errors="replace")
    if REPLACEMENT_CHAR in text:
        encoding_logger.warning(
            f"⚠️ '{fallback}' decode of {source or 'payload'} still contains replacement characters."
        )
    return DecodedPayload(text, fallback, True)


def split_windows(
    start: datetime, end: datetime, days: int
) -> list[tuple[datetime, datetime]]:
    """
    Splits [start, end] into consecutive slices of at most `days` days.
    Each slice starts one second after the previous slice ends.
    """
    if days < 1:
        raise ValueError("Window size must be at least one day")

    windows = []
    current = start
    while current < end:
        slice_end = min(current + timedelta(days=days), end)
        windows.append((current, slice_end))
        current = slice_end + timedelta(seconds=1)
    return windows


def chunked(rows: Sequence[Any], size: int) -> Iterator[Sequence[Any]]:
    """Yields consecutive slices of at most `size` rows."""
    if size < 1:
        raise ValueError("Batch size must be at least 1")
    for i in range(0, len(rows), size):
        yield rows[i : i + size]


def read_tsv(text: str) -> pd.DataFrame:
    """
    Parses a tab-separated report into a DataFrame of strings.
    Headers are stripped; empty cells stay as empty strings.
    """
    if not text.strip():
        return pd.DataFrame()
    df = pd.read_csv(
        io.StringIO(text),
        sep="\t",
        dtype=str,
        keep_default_na=False,
        quoting=csv.QUOTE_NONE,
    )
    df.columns = [str(c).strip() for c in df.columns]
    # Short rows leave NaN in the trailing columns
    return df.fillna("")


def to_decimal(value: Any, default: str = "0") -> Decimal:
    """Parses an amount. Blank values fall back to `default`; garbage raises ValueError."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return Decimal(default)
    try:
        return Decimal(str(value).strip())
    except InvalidOperation as e:
        raise ValueError(f"Not a decimal amount: {value!r}") from e


def to_int(value: Any, default: int = 0) -> int:
    """Parses a quantity. Blank values fall back to `default`; garbage raises ValueError."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return default
    try:
        return int(Decimal(str(value).strip()))
    except InvalidOperation as e:
        raise ValueError(f"Not an integer quantity: {value!r}") from e
