"""
config.py — Environment Configuration for the Note Service

All runtime settings are read from environment variables once per process and
kept in an immutable `Settings` object. Modules receive the settings object
instead of reading `os.environ` on their own, so tests can build one directly.
"""

import os
from dataclasses import dataclass
from typing import Optional

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}


def get_bool(key: str, default: bool) -> bool:
    """
    Reads a boolean flag from the environment.

    Unknown or empty values fall back to `default`.
    """
    raw = os.environ.get(key)
    if raw is None or not raw.strip():
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return default


def get_string(key: str, default: Optional[str] = None) -> Optional[str]:
    raw = os.environ.get(key)
    if raw is None or not raw.strip():
        return default
    return raw.strip()


def get_float(key: str, default: float) -> float:
    raw = get_string(key)
    if raw is None:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    """
    Immutable snapshot of the service configuration.

    Attributes:
        meli_base_url (str): Marketplace REST API base URL.
        znube_base_url (str): Inventory service base URL.
        meli_client_id / meli_client_secret / meli_redirect_uri: OAuth app credentials.
        meli_seller_id (str | None): Seller account id; enables the repeat-buyer check.
        logistic_type_full (str): Logistic type that suppresses the note entirely.
        logistic_type_flex (str): Logistic type that adds the delivery zone line.
        znube_token (str | None): Initial inventory token when the token store is empty.
        resolve_by_product (bool): Re-query the inventory by product id to break ties.
        database_url (str): Async SQLAlchemy URL for locks and tokens.
        send_buyer_message (bool): Send the post-sale message after writing a note.
        upsert_order_note (bool): Actually write the note to the marketplace.
        processing_timeout (float): Deadline in seconds for one webhook invocation.
        http_timeout (float): Per-request timeout of the HTTP clients.
    """
    meli_base_url: str = "https://api.mercadolibre.com"
    znube_base_url: str = "http://inventory_service:8002"
    meli_client_id: Optional[str] = None
    meli_client_secret: Optional[str] = None
    meli_redirect_uri: Optional[str] = None
    meli_seller_id: Optional[str] = None
    logistic_type_full: str = "fulfillment"
    logistic_type_flex: str = "self_service"
    znube_token: Optional[str] = None
    resolve_by_product: bool = False
    database_url: str = "sqlite+aiosqlite:///./note_service.db"
    send_buyer_message: bool = True
    upsert_order_note: bool = True
    processing_timeout: float = 60.0
    http_timeout: float = 15.0
    log_level: str = "INFO"
    log_file: Optional[str] = None


def load_settings() -> Settings:
    """Builds `Settings` from the current process environment."""
    defaults = Settings()
    return Settings(
        meli_base_url=get_string("MELI_BASE_URL", defaults.meli_base_url),
        znube_base_url=get_string("ZNUBE_BASE_URL", defaults.znube_base_url),
        meli_client_id=get_string("MELI_CLIENT_ID"),
        meli_client_secret=get_string("MELI_CLIENT_SECRET"),
        meli_redirect_uri=get_string("MELI_REDIRECT_URI"),
        meli_seller_id=get_string("MELI_SELLER_ID"),
        logistic_type_full=get_string("MELI_LOGISTIC_TYPE_FULL", defaults.logistic_type_full),
        logistic_type_flex=get_string("MELI_LOGISTIC_TYPE_FLEX", defaults.logistic_type_flex),
        znube_token=get_string("ZNUBE_TOKEN"),
        resolve_by_product=get_bool("ZNUBE_RESOLVE_BY_PRODUCT", defaults.resolve_by_product),
        database_url=get_string("DATABASE_URL", defaults.database_url),
        send_buyer_message=get_bool("SEND_BUYER_MESSAGE", defaults.send_buyer_message),
        upsert_order_note=get_bool("UPSERT_ORDER_NOTE", defaults.upsert_order_note),
        processing_timeout=get_float("PROCESSING_TIMEOUT_SECONDS", defaults.processing_timeout),
        http_timeout=get_float("HTTP_TIMEOUT_SECONDS", defaults.http_timeout),
        log_level=get_string("LOG_LEVEL", defaults.log_level),
        log_file=get_string("LOG_FILE"),
    )
