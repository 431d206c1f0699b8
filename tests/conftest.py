import asyncio
from datetime import datetime, timezone

import httpx
import pytest

from billing import BillingManager
from payment_tracker import PaymentTracker
from timezone_tools import HolidayAPI, TimeAPI, UpstreamClient, build_registry

FIXED_NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)

ZONE_OFFSETS = {
    "America/New_York": -4,
    "Europe/London": 1,
    "Asia/Tokyo": 9,
    "Australia/Sydney": 11,
}


def _holiday(date, name, local_name=None, is_global=True, types=("Public",)):
    return {
        "date": date,
        "localName": local_name or name,
        "name": name,
        "countryCode": "US",
        "fixed": False,
        "global": is_global,
        "counties": None if is_global else ["US-CT"],
        "launchYear": None,
        "types": list(types),
    }


US_HOLIDAYS_2026 = [
    _holiday("2026-01-01", "New Year's Day"),
    _holiday("2026-01-19", "Martin Luther King, Jr. Day"),
    _holiday("2026-02-16", "Presidents Day", local_name="Washington's Birthday"),
    _holiday("2026-04-03", "Good Friday", is_global=False),
    _holiday("2026-05-25", "Memorial Day"),
    _holiday("2026-06-19", "Juneteenth National Independence Day"),
    _holiday("2026-07-03", "Independence Day"),
    _holiday("2026-09-07", "Labour Day", local_name="Labor Day"),
    _holiday("2026-10-12", "Columbus Day", is_global=False, types=("Public", "Observance")),
    _holiday("2026-11-11", "Veterans Day"),
    _holiday("2026-11-26", "Thanksgiving Day"),
    _holiday("2026-12-25", "Christmas Day"),
]

COUNTRIES = [{"countryCode": code, "name": name} for code, name in [
    ("AD", "Andorra"), ("AL", "Albania"), ("AM", "Armenia"), ("AR", "Argentina"),
    ("AT", "Austria"), ("AU", "Australia"), ("AX", "Åland Islands"), ("BA", "Bosnia and Herzegovina"),
    ("BB", "Barbados"), ("BE", "Belgium"), ("BG", "Bulgaria"), ("BJ", "Benin"),
]]

TIMEZONES = ["Africa/Abidjan", "America/Chicago", "America/New_York", "Asia/Tokyo",
             "Australia/Sydney", "Europe/London", "Pacific/Auckland"]

CONVERSION = {
    "fromTimezone": "America/New_York",
    "fromDateTime": "2026-02-01T10:00:00",
    "toTimeZone": "Europe/London",
    "conversionResult": {
        "year": 2026, "month": 2, "day": 1, "hour": 15, "minute": 0, "seconds": 0, "milliSeconds": 0,
        "dateTime": "2026-02-01T15:00:00",
        "date": "02/01/2026",
        "time": "15:00",
        "timeZone": "Europe/London",
        "dstActive": False,
        "dayOfWeek": "Sunday",
    },
}


def time_payload(tz):
    hour = 12 + ZONE_OFFSETS.get(tz, 0)
    return {
        "year": 2026, "month": 10, "day": 19,
        "hour": hour, "minute": 0, "seconds": 0, "milliSeconds": 0,
        "dateTime": f"2026-10-19T{hour:02d}:00:00",
        "date": "10/19/2026",
        "time": f"{hour:02d}:00",
        "timeZone": tz,
        "dayOfWeek": "Monday",
        "dstActive": tz in ("America/New_York", "Europe/London", "Australia/Sydney"),
    }


class FakeUpstream:
    """模拟 timeapi.io 和 date.nager.at"""

    def __init__(self):
        self.requests = []
        self.failing_zones = set()
        self.unreachable_paths = set()
        self.holidays = {(2026, "US"): US_HOLIDAYS_2026}
        self.conversion = dict(CONVERSION)
        self.status_overrides = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path in self.unreachable_paths:
            raise httpx.ConnectError("connection refused", request=request)
        if path in self.status_overrides:
            return httpx.Response(self.status_overrides[path], json={"error": "boom"})

        if path == "/api/timezone/availabletimezones":
            return httpx.Response(200, json=TIMEZONES)
        if path == "/api/time/current/zone":
            tz = request.url.params["timeZone"]
            if tz in self.failing_zones or tz.startswith("Invalid/"):
                return httpx.Response(400, json="Invalid Timezone")
            return httpx.Response(200, json=time_payload(tz))
        if path == "/api/conversion/converttimezone":
            return httpx.Response(200, json=self.conversion)
        if path == "/api/v3/AvailableCountries":
            return httpx.Response(200, json=COUNTRIES)
        if path.startswith("/api/v3/publicholidays/"):
            year, country = path.rsplit("/", 2)[-2:]
            key = (int(year), country)
            if key not in self.holidays:
                return httpx.Response(404)
            return httpx.Response(200, json=self.holidays[key])
        return httpx.Response(404)

    def paths(self):
        return [r.url.path for r in self.requests]


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def fake_upstream():
    return FakeUpstream()


@pytest.fixture
def http_client(fake_upstream):
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake_upstream.handler))
    yield client
    asyncio.run(client.aclose())


@pytest.fixture
def clock():
    return lambda: FIXED_NOW


@pytest.fixture
def tracker(tmp_path):
    return PaymentTracker(str(tmp_path / "payments.db"))


@pytest.fixture
def billing(tmp_path):
    return BillingManager(str(tmp_path / "billing.db"), {"payments": {"enabled": True}})


@pytest.fixture
def registry(http_client, clock):
    upstream = UpstreamClient(http_client)
    return build_registry(TimeAPI(upstream), HolidayAPI(upstream), clock=clock)


@pytest.fixture
def metered_registry(http_client, clock, tracker, billing):
    upstream = UpstreamClient(http_client)
    return build_registry(
        TimeAPI(upstream), HolidayAPI(upstream), tracker=tracker, billing=billing, clock=clock
    )
