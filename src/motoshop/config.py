from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

import tomllib

DEFAULT_CONFIG_PATH = "config.toml"


class ConfigError(Exception):
    pass


@dataclass(frozen=True)
class DbConfig:
    host: str
    port: int
    name: str
    user: str
    password: str
    sslmode: str = "disable"


@dataclass(frozen=True)
class ShopConfig:
    branch_id: str = "CN1"
    work_order_prefix: str = "SC"
    receipt_prefix: str = "NH"
    default_payment_source: str = "cash"
    # outsourced work is paid out of this source
    outsourcing_payment_source: str = "cash"


@dataclass(frozen=True)
class AppConfig:
    name: str
    log_level: str
    db: DbConfig
    shop: ShopConfig


def config_path_from_env(default: str | Path = DEFAULT_CONFIG_PATH) -> Path:
    return Path(os.environ.get("MOTOSHOP_CONFIG") or default)


def load_config(path: str | Path) -> AppConfig:
    p = Path(path)
    if not p.exists():
        raise ConfigError(f"Config file not found: {p.resolve()}")

    try:
        data = tomllib.loads(p.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigError(f"Failed to read config TOML: {e}") from e

    try:
        app = data.get("app", {})
        db = data["db"]
        shop = data.get("shop", {})
        log_level = str(app.get("log_level", "INFO")).upper()
        if log_level not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log_level {log_level!r}")
        return AppConfig(
            name=str(app.get("name", "MotoShop")),
            log_level=log_level,
            db=DbConfig(
                host=str(db["host"]),
                port=int(db.get("port", 5432)),
                name=str(db["name"]),
                user=str(db["user"]),
                password=str(db["password"]),
                sslmode=str(db.get("sslmode", "disable")),
            ),
            shop=ShopConfig(
                branch_id=str(shop.get("branch_id", "CN1")),
                work_order_prefix=str(shop.get("work_order_prefix", "SC")),
                receipt_prefix=str(shop.get("receipt_prefix", "NH")),
                default_payment_source=str(shop.get("default_payment_source", "cash")),
                outsourcing_payment_source=str(shop.get("outsourcing_payment_source", "cash")),
            ),
        )
    except KeyError as e:
        raise ConfigError(f"Missing config key: {e}") from e
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config values: {e}") from e


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
