# config.py

import os
import logging
from dataclasses import dataclass
from typing import Optional, Mapping

logger = logging.getLogger(__name__)

TWO_YEARS_SECONDS = 2 * 365 * 24 * 3600


class ConfigError(ValueError):
    pass


@dataclass(frozen=True)
class Config:
    orders_table: str = "orders"
    owner_index: str = "index1"
    dedup_table: Optional[str] = None
    dedup_retention_seconds: int = 2 * 24 * 3600
    dedup_lease_seconds: int = 300
    warranty_period_seconds: int = TWO_YEARS_SECONDS
    ddb_endpoint_url: Optional[str] = None
    ses_sender: Optional[str] = None
    sns_enabled: bool = False
    telegram_token: Optional[str] = None
    ttl_removals_only: bool = False
    log_level: str = "INFO"

    def __post_init__(self):
        for name in ("warranty_period_seconds", "dedup_retention_seconds", "dedup_lease_seconds"):
            if getattr(self, name) <= 0:
                raise ConfigError(f"{name} must be positive, got {getattr(self, name)}")


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _flag(env: Mapping[str, str], name: str) -> bool:
    return (env.get(name) or "0").strip().lower() in ("1", "true", "yes")


def load_config(env: Optional[Mapping[str, str]] = None) -> Config:
    """Reads the deployment settings from the environment (or the given mapping)."""
    env = os.environ if env is None else env
    cfg = Config(
        orders_table=env.get("ORDERS_TABLE") or "orders",
        owner_index=env.get("ORDERS_OWNER_INDEX") or "index1",
        dedup_table=env.get("DEDUP_TABLE") or None,
        dedup_retention_seconds=_int(env, "DEDUP_RETENTION_SECONDS", 2 * 24 * 3600),
        dedup_lease_seconds=_int(env, "DEDUP_LEASE_SECONDS", 300),
        warranty_period_seconds=_int(env, "WARRANTY_PERIOD_SECONDS", TWO_YEARS_SECONDS),
        ddb_endpoint_url=env.get("DDB_ENDPOINT_URL") or None,  # allow local testing
        ses_sender=env.get("SES_SENDER") or None,
        sns_enabled=_flag(env, "SNS_ENABLED"),
        telegram_token=env.get("TELEGRAM_TOKEN") or None,
        ttl_removals_only=_flag(env, "TTL_REMOVALS_ONLY"),
        log_level=(env.get("LOG_LEVEL") or "INFO").upper(),
    )
    logger.debug("Loaded config: table=%s index=%s dedup=%s", cfg.orders_table, cfg.owner_index, cfg.dedup_table)
    return cfg
