import pytest

from motoshop.config import ConfigError, config_path_from_env, load_config

VALID = """
[app]
name = "MotoShop Q7"
log_level = "debug"

[db]
host = "localhost"
name = "motoshop"
user = "app"
password = "secret"

[shop]
branch_id = "CN2"
"""


def write(tmp_path, text):
    p = tmp_path / "config.toml"
    p.write_text(text, encoding="utf-8")
    return p


def test_load_with_defaults(tmp_path):
    cfg = load_config(write(tmp_path, VALID))
    assert cfg.name == "MotoShop Q7"
    assert cfg.log_level == "DEBUG"
    assert cfg.db.port == 5432
    assert cfg.db.sslmode == "disable"
    assert cfg.shop.branch_id == "CN2"
    assert cfg.shop.work_order_prefix == "SC"
    assert cfg.shop.receipt_prefix == "NH"
    assert cfg.shop.default_payment_source == "cash"


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "nope.toml")


def test_missing_db_key(tmp_path):
    with pytest.raises(ConfigError, match="Missing config key"):
        load_config(write(tmp_path, '[db]\nhost = "x"\n'))


def test_bad_toml(tmp_path):
    with pytest.raises(ConfigError, match="TOML"):
        load_config(write(tmp_path, "[db\n"))


def test_bad_values(tmp_path):
    with pytest.raises(ConfigError, match="Invalid"):
        load_config(write(tmp_path, VALID.replace('name = "motoshop"', 'name = "motoshop"\nport = "abc"')))


def test_unknown_log_level(tmp_path):
    with pytest.raises(ConfigError):
        load_config(write(tmp_path, VALID.replace('"debug"', '"loud"')))


def test_path_from_env(monkeypatch, tmp_path):
    monkeypatch.delenv("MOTOSHOP_CONFIG", raising=False)
    assert config_path_from_env().name == "config.toml"
    monkeypatch.setenv("MOTOSHOP_CONFIG", str(tmp_path / "shop.toml"))
    assert config_path_from_env() == tmp_path / "shop.toml"
