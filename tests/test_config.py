from pathlib import Path

import pytest

from agile_rates.config import DEFAULT_PRODUCT_CODE, ENV_OVERRIDES, Settings, load_settings
from agile_rates.errors import ConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


def write_settings(tmp_path, text):
    path = tmp_path / "settings.yaml"
    path.write_text(text)
    return path


def test_missing_file_gives_defaults(tmp_path):
    settings = load_settings(tmp_path / "missing.yaml")

    assert settings == Settings()
    assert settings.product_code == DEFAULT_PRODUCT_CODE
    assert settings.failure_cooldown_minutes == 10


def test_yaml_values(tmp_path):
    path = write_settings(
        tmp_path,
        "postcode: SW1A 1AA\n"
        "show_rates_in_pounds: yes\n"
        "product_code: AGILE-FLEX-22-11-25\n"
        "db_path: ~/rates.db\n"
        "failure_cooldown_minutes: 5\n",
    )

    settings = load_settings(path)

    assert settings.postcode == "SW1A 1AA"
    assert settings.show_rates_in_pounds is True
    assert settings.product_code == "AGILE-FLEX-22-11-25"
    assert settings.db_path == Path.home() / "rates.db"
    assert settings.failure_cooldown_minutes == 5


def test_empty_file_gives_defaults(tmp_path):
    assert load_settings(write_settings(tmp_path, "")) == Settings()


def test_environment_overrides_yaml(tmp_path, monkeypatch):
    path = write_settings(tmp_path, "postcode: SW1A 1AA\nshow_rates_in_pounds: false\n")
    monkeypatch.setenv("AGILE_POSTCODE", "CB1 1AA")
    monkeypatch.setenv("AGILE_SHOW_POUNDS", "1")
    monkeypatch.setenv("AGILE_DB_PATH", str(tmp_path / "env.db"))

    settings = load_settings(path)

    assert settings.postcode == "CB1 1AA"
    assert settings.show_rates_in_pounds is True
    assert settings.db_path == tmp_path / "env.db"


@pytest.mark.parametrize(
    "text",
    [
        "postcde: SW1A 1AA\n",
        "show_rates_in_pounds: maybe\n",
        "failure_cooldown_minutes: soon\n",
        "failure_cooldown_minutes: -1\n",
        "product_code: ''\n",
        "- just\n- a list\n",
        "postcode: [unclosed\n",
    ],
)
def test_invalid_settings_raise_config_error(tmp_path, text):
    with pytest.raises(ConfigError):
        load_settings(write_settings(tmp_path, text))


def test_invalid_environment_value(tmp_path, monkeypatch):
    monkeypatch.setenv("AGILE_SHOW_POUNDS", "perhaps")

    with pytest.raises(ConfigError, match="boolean"):
        load_settings(tmp_path / "missing.yaml")


@pytest.mark.parametrize(
    "value, expected",
    [("Yes", True), ("on", True), ("1", True), ("0", False), ("false", False), ("OFF", False)],
)
def test_show_pounds_from_environment(tmp_path, monkeypatch, value, expected):
    monkeypatch.setenv("AGILE_SHOW_POUNDS", value)

    assert load_settings(tmp_path / "missing.yaml").show_rates_in_pounds is expected


def test_unknown_key_is_named_in_error(tmp_path):
    with pytest.raises(ConfigError, match="postcde"):
        load_settings(write_settings(tmp_path, "postcde: SW1A 1AA\n"))


def test_empty_db_path_means_default(tmp_path, monkeypatch):
    monkeypatch.setenv("AGILE_DB_PATH", "")

    assert load_settings(tmp_path / "missing.yaml").db_path is None
