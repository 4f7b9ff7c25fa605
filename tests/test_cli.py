import json
from datetime import datetime, timedelta, timezone

import httpx
import pytest
from click.testing import CliRunner

from agile_rates import cli as cli_module
from agile_rates.cli import cli
from agile_rates.collectors.octopus import OctopusClient
from agile_rates.config import ENV_OVERRIDES
from agile_rates.store import RateStore
from conftest import build_series


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_OVERRIDES:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "rates.db"


@pytest.fixture
def invoke(tmp_path, db_path):
    runner = CliRunner()

    def _invoke(*args, **kwargs):
        return runner.invoke(
            cli,
            ["--db-path", str(db_path), "--config", str(tmp_path / "settings.yaml"), *args],
            **kwargs,
        )

    return _invoke


def api_rows(start, count):
    rows = []
    for i in range(count):
        slot = start + timedelta(minutes=30 * i)
        rows.append(
            {
                "value_exc_vat": 10.0 + i % 7,
                "value_inc_vat": round((10.0 + i % 7) * 1.05, 2),
                "valid_from": slot.isoformat().replace("+00:00", "Z"),
                "valid_to": (slot + timedelta(minutes=30)).isoformat().replace("+00:00", "Z"),
            }
        )
    return rows


@pytest.fixture
def fake_api(monkeypatch):
    """Serve two days of rates around the current time."""
    calls = []
    now = datetime.now(timezone.utc)
    start = now.replace(minute=0, second=0, microsecond=0) - timedelta(hours=2)
    state = {"status": 200}

    def handler(request):
        calls.append(request)
        if request.url.path.endswith("/grid-supply-points/"):
            return httpx.Response(200, json={"results": [{"group_id": "_C"}]})
        if state["status"] != 200:
            return httpx.Response(state["status"], text="unavailable")
        return httpx.Response(200, json={"results": api_rows(start, 96)})

    def build_client(ctx):
        return OctopusClient(transport=httpx.MockTransport(handler), sleep=lambda seconds: None)

    monkeypatch.setattr(cli_module, "_build_client", build_client)
    return {"calls": calls, "state": state}


def test_database_init(invoke, db_path):
    result = invoke("database", "init")

    assert result.exit_code == 0
    assert "Database initialized successfully" in result.output
    assert db_path.exists()


def test_refresh_fetches_and_caches(invoke, fake_api, db_path):
    result = invoke("refresh")

    assert result.exit_code == 0, result.output
    assert "Fetched rates, 96 now cached" in result.output
    assert RateStore(db_path).count() == 96


def test_refresh_skips_when_cached(invoke, fake_api):
    invoke("refresh")
    fake_api["calls"].clear()

    result = invoke("refresh")

    assert result.exit_code == 0
    assert "nothing to do" in result.output
    assert fake_api["calls"] == []


def test_refresh_failure_keeps_cache(invoke, fake_api, db_path):
    RateStore(db_path).upsert(build_series(datetime(2025, 1, 15, tzinfo=timezone.utc), [10, 20]))
    fake_api["state"]["status"] = 503

    result = invoke("refresh")

    assert result.exit_code == 1
    assert "Failed to refresh rates" in result.output
    assert "Keeping 2 cached rates" in result.output
    assert RateStore(db_path).count() == 2


def test_region(invoke, fake_api):
    result = invoke("region", "sw1a 1aa")

    assert result.exit_code == 0
    assert "Region for sw1a 1aa: C" in result.output


def test_current_and_best(invoke, fake_api):
    invoke("refresh")

    current = invoke("current")
    best = invoke("best", "--hours", "1", "--count", "3", "--merge")

    assert current.exit_code == 0
    assert "Now:" in current.output
    assert "Lowest upcoming:" in current.output
    assert best.exit_code == 0
    assert "Cheapest 1h windows" in best.output
    assert "Merged bands:" in best.output


def test_best_rejects_uneven_hours(invoke):
    result = invoke("best", "--hours", "0.75")

    assert result.exit_code == 1
    assert "multiple of 0.5h" in result.output


def test_current_with_empty_cache(invoke):
    result = invoke("current")

    assert result.exit_code == 0
    assert "No rate cached for the current time" in result.output


def test_rates_and_summary_for_day(invoke, db_path):
    RateStore(db_path).upsert(
        build_series(datetime(2025, 1, 15, tzinfo=timezone.utc), [20, 18, 10, 12, -2, 30, 25, 40])
    )

    rates = invoke("rates", "--date", "2025-01-15")
    summary = invoke("summary", "--date", "2025-01-15", "--json")

    assert rates.exit_code == 0
    assert "Agile rates for 2025-01-15" in rates.output
    assert summary.exit_code == 0
    data = json.loads(summary.output)
    assert data["count"] == 8
    assert data["negative_slots"] == 1


def test_rates_for_empty_day(invoke):
    result = invoke("rates", "--date", "2025-01-15")

    assert "No rates cached for 2025-01-15" in result.output


def test_database_reset(invoke, db_path):
    RateStore(db_path).upsert(build_series(datetime(2025, 1, 15, tzinfo=timezone.utc), [10, 20]))

    result = invoke("database", "reset", "--yes")

    assert result.exit_code == 0
    assert "Deleted 2 rates" in result.output
    assert RateStore(db_path).count() == 0


def test_invalid_settings_exit(invoke, tmp_path):
    (tmp_path / "settings.yaml").write_text("colour: blue\n")

    result = invoke("current")

    assert result.exit_code == 1
    assert "Invalid settings" in result.output


@pytest.mark.parametrize("command", ["rates", "summary"])
def test_invalid_date_is_reported(invoke, command):
    result = invoke(command, "--date", "2025-13-01")

    assert result.exit_code == 1
    assert "Invalid date '2025-13-01'" in result.output
    assert result.exception is None or isinstance(result.exception, SystemExit)


def test_best_rejects_infinite_hours(invoke):
    result = invoke("best", "--hours", "inf")

    assert result.exit_code == 1
    assert "multiple of 0.5h" in result.output
