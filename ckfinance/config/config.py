"""
Environment-driven configuration with validation.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Dict

from dotenv import load_dotenv

from ckfinance.config.service_ids import resolve_service_ids

load_dotenv()

TOKEN_SERVICES = ("ckBTC", "ckETH", "ckUSDC")


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None:
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    network: str  # "ic" or "local"
    host: str
    identity_url: str
    deposit_service_id: str
    order_book_service_id: str
    token_service_ids: Dict[str, str] = field(default_factory=dict)
    state_dir: str = "state"
    status_poll_interval_sec: float = 5.0
    detection_poll_interval_sec: float = 10.0
    rpc_timeout_sec: float = 10.0
    rpc_retries: int = 2
    log_level: str = "INFO"
    log_file: str | None = None
    notifications_enabled: bool = True
    alert_webhook_url: str | None = None
    alert_webhook_type: str = "generic"  # generic, slack, discord
    price_btc_usd: float = 68500.0
    price_eth_usd: float = 3200.0

    @property
    def is_local(self) -> bool:
        return self.network != "ic"

    @property
    def log_level_value(self) -> int:
        return logging.getLevelName(self.log_level.upper()) if self.log_level else logging.INFO

    def dump(self) -> dict:
        """Return a dict of settings for sanity checks/logging."""
        return self.__dict__.copy()

    @classmethod
    def load(cls) -> "Settings":
        network = os.getenv("CKF_NETWORK", "ic")
        default_host = "https://ic0.app" if network == "ic" else "http://localhost:8000"
        default_identity = (
            "https://identity.ic0.app"
            if network == "ic"
            else f"http://{os.getenv('CKF_IDENTITY_SERVICE_ID', 'identity')}.localhost:8000"
        )
        ids = resolve_service_ids()

        cfg = cls(
            network=network,
            host=os.getenv("CKF_HOST", default_host),
            identity_url=os.getenv("CKF_IDENTITY_URL", default_identity),
            deposit_service_id=os.getenv("CKF_DEPOSIT_SERVICE_ID", ids["iso_dapp"]),
            order_book_service_id=os.getenv("CKF_ORDER_BOOK_SERVICE_ID", ids["dex"]),
            token_service_ids={name: ids[name] for name in TOKEN_SERVICES if name in ids},
            state_dir=os.getenv("CKF_STATE_DIR", "state"),
            status_poll_interval_sec=_float_env("CKF_STATUS_POLL_SEC", 5.0),
            detection_poll_interval_sec=_float_env("CKF_DETECTION_POLL_SEC", 10.0),
            rpc_timeout_sec=_float_env("CKF_RPC_TIMEOUT_SEC", 10.0),
            rpc_retries=_int_env("CKF_RPC_RETRIES", 2),
            log_level=os.getenv("CKF_LOG_LEVEL", "INFO"),
            log_file=os.getenv("CKF_LOG_FILE") or None,
            notifications_enabled=env_bool("CKF_NOTIFICATIONS_ENABLED", True),
            alert_webhook_url=os.getenv("CKF_ALERT_WEBHOOK_URL") or None,
            alert_webhook_type=os.getenv("CKF_ALERT_WEBHOOK_TYPE", "generic"),
            price_btc_usd=_float_env("CKF_PRICE_BTC_USD", 68500.0),
            price_eth_usd=_float_env("CKF_PRICE_ETH_USD", 3200.0),
        )
        _sanity_check(cfg)
        return cfg


def _sanity_check(cfg: Settings) -> None:
    if cfg.status_poll_interval_sec <= 0 or cfg.detection_poll_interval_sec <= 0:
        raise ValueError("poll intervals must be positive")
    if cfg.rpc_timeout_sec <= 0:
        raise ValueError("CKF_RPC_TIMEOUT_SEC must be positive")
    if cfg.rpc_retries < 0:
        raise ValueError("CKF_RPC_RETRIES must be >= 0")
    if cfg.alert_webhook_type not in {"generic", "slack", "discord"}:
        raise ValueError(f"unsupported CKF_ALERT_WEBHOOK_TYPE: {cfg.alert_webhook_type}")
    if not cfg.deposit_service_id or not cfg.order_book_service_id:
        raise ValueError("deposit and order-book service ids are required")
