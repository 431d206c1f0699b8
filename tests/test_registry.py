"""
入口注册表与计费测试
"""

import sqlite3

import pytest

from billing import PaymentRequiredError
from conftest import run
from timezone_tools import InputValidationError, UnknownEntrypointError, UpstreamHTTPError
from timezone_tools.registry import ENTRYPOINTS

EXPECTED_PRICES = {
    "overview": 0,
    "current-time": 1000,
    "convert": 2000,
    "holidays": 2000,
    "multi-zone": 3000,
    "full-report": 5000,
    "analytics": 0,
    "analytics-transactions": 0,
    "analytics-csv": 0,
}


def test_entrypoint_prices():
    assert {ep.key: ep.price for ep in ENTRYPOINTS} == EXPECTED_PRICES


def test_registry_lists_every_entrypoint(registry):
    assert [ep.key for ep in registry.entrypoints()] == list(EXPECTED_PRICES)
    assert "convert" in registry
    assert "unknown" not in registry


def test_unknown_entrypoint(registry):
    with pytest.raises(UnknownEntrypointError) as excinfo:
        run(registry.invoke("sunrise", {}))
    assert str(excinfo.value) == "Unknown entrypoint: sunrise"


@pytest.mark.parametrize("key, raw_input", [
    ("current-time", {}),
    ("holidays", {"countryCode": "USA"}),
    ("holidays", {"countryCode": "U"}),
    ("multi-zone", {"timezones": ["Europe/London"]}),
    ("multi-zone", {"timezones": ["Europe/London"] * 11}),
    ("full-report", {"timezone": "Europe/London", "countryCode": "GBR"}),
    ("convert", {"fromTimezone": "Europe/London", "toTimezone": "Asia/Tokyo"}),
])
def test_invalid_input_is_rejected_before_any_upstream_call(registry, fake_upstream, key, raw_input):
    with pytest.raises(InputValidationError) as excinfo:
        run(registry.invoke(key, raw_input))
    assert excinfo.value.key == key
    assert excinfo.value.errors
    assert fake_upstream.requests == []


def test_multi_zone_accepts_ten_zones(registry):
    zones = ["Europe/London"] * 10
    output = run(registry.invoke("multi-zone", {"timezones": zones}))["output"]
    assert output["count"] == 10


# ==================== 计费 ====================

def test_free_entrypoint_needs_no_token(metered_registry, tracker):
    run(metered_registry.invoke("overview"))
    assert tracker.get_summary()["incomingCount"] == 0


def test_paid_entrypoint_requires_token(metered_registry, fake_upstream):
    with pytest.raises(PaymentRequiredError) as excinfo:
        run(metered_registry.invoke("current-time", {"timezone": "Europe/London"}))
    assert excinfo.value.price == 1000
    assert excinfo.value.reason == "missing API token"
    assert fake_upstream.requests == []


def test_invalid_token_is_rejected(metered_registry):
    with pytest.raises(PaymentRequiredError) as excinfo:
        run(metered_registry.invoke("current-time", {"timezone": "Europe/London"}, token="tzi_bogus"))
    assert excinfo.value.reason == "invalid API token"


def test_paid_call_charges_and_records(metered_registry, billing, tracker):
    token = billing.create_api_token("scheduler", credits=10_000)

    run(metered_registry.invoke("full-report", {"timezone": "Europe/London", "countryCode": "US"}, token=token))

    assert billing.get_token_info(token)["credits"] == 5_000
    summary = tracker.get_summary()
    assert summary["incomingTotal"] == "5000"
    assert summary["incomingCount"] == 1
    transactions = tracker.get_transactions()
    assert transactions[0]["entrypoint"] == "full-report"
    assert transactions[0]["payer"] == "scheduler"


def test_insufficient_credits(metered_registry, billing):
    token = billing.create_api_token("low", credits=2_999)

    with pytest.raises(PaymentRequiredError) as excinfo:
        run(metered_registry.invoke("multi-zone", {"timezones": ["Asia/Tokyo", "Europe/London"]}, token=token))
    assert excinfo.value.reason == "insufficient credits"
    assert billing.get_token_info(token)["credits"] == 2_999


def test_failed_upstream_call_is_not_charged(metered_registry, billing, tracker):
    token = billing.create_api_token("scheduler", credits=5_000)

    with pytest.raises(UpstreamHTTPError):
        run(metered_registry.invoke("current-time", {"timezone": "Invalid/Zone"}, token=token))

    assert billing.get_token_info(token)["credits"] == 5_000
    assert tracker.get_summary()["incomingCount"] == 0


def test_multi_zone_partial_failure_is_still_charged(metered_registry, billing):
    token = billing.create_api_token("scheduler", credits=3_000)

    output = run(metered_registry.invoke(
        "multi-zone", {"timezones": ["America/New_York", "Invalid/Zone"]}, token=token
    ))["output"]

    assert output["times"][1]["error"] == "Failed to fetch"
    assert billing.get_token_info(token)["credits"] == 0


def test_analytics_reads_tracker(metered_registry, billing):
    token = billing.create_api_token("scheduler", credits=10_000)
    run(metered_registry.invoke("current-time", {"timezone": "Asia/Tokyo"}, token=token))
    run(metered_registry.invoke("holidays", {"countryCode": "us"}, token=token))

    summary = run(metered_registry.invoke("analytics", {}))["output"]
    assert summary["incomingTotal"] == "3000"
    assert summary["netTotal"] == "3000"
    assert summary["outgoingTotal"] == "0"

    transactions = run(metered_registry.invoke("analytics-transactions", {"limit": 1}))["output"]["transactions"]
    assert [t["entrypoint"] for t in transactions] == ["holidays"]

    csv_text = run(metered_registry.invoke("analytics-csv", {"windowMs": 60_000}))["output"]["csv"]
    lines = csv_text.strip().splitlines()
    assert lines[0] == "id,timestamp,direction,entrypoint,amount,payer,network"
    assert len(lines) == 3


def test_analytics_accepts_window_beyond_date_range(metered_registry):
    summary = run(metered_registry.invoke("analytics", {"windowMs": 10**14}))["output"]
    assert summary["windowStart"] is None


def test_charge_survives_tracker_failure(metered_registry, billing, tracker, monkeypatch):
    token = billing.create_api_token("scheduler", credits=1_000)

    def broken_record(*args, **kwargs):
        raise sqlite3.OperationalError("database is locked")

    monkeypatch.setattr(tracker, "record", broken_record)

    output = run(metered_registry.invoke("current-time", {"timezone": "Asia/Tokyo"}, token=token))["output"]

    assert output["timezone"] == "Asia/Tokyo"
    assert billing.get_token_info(token)["credits"] == 0
