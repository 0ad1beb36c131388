from __future__ import annotations

import logging

from motoshop.cli import run_cli
from motoshop.config import ConfigError, config_path_from_env, configure_logging, load_config
from motoshop.db import Db, DbError

logger = logging.getLogger("motoshop")


def main() -> int:
    try:
        cfg = load_config(config_path_from_env())
        configure_logging(cfg.log_level)
        db = Db(cfg.db)
        logger.info("%s starting for branch %s", cfg.name, cfg.shop.branch_id)
        run_cli(db, cfg.shop)
        return 0
    except ConfigError as e:
        print(f"[CONFIG ERROR] {e}")
        return 2
    except DbError as e:
        print(f"[DB ERROR] {e}")
        return 3
    except KeyboardInterrupt:
        print("\nInterrupted.")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
