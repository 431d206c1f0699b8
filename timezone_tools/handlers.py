"""
入口处理函数

每个函数接收已校验的输入模型，调用 0~2 个上游接口并重组结果。
函数本身无状态，"现在"由 ctx.clock 在每次请求时求值。

Copyright (c) 2025 Miyang Tech (Zhuhai Hengqin) Co., Ltd.
MIT License
"""

import asyncio
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from payment_tracker import PaymentTracker
from models import (
    AnalyticsInput,
    AnalyticsTransactionsInput,
    ConversionResult,
    ConvertedTime,
    ConvertInput,
    CurrentTimeInput,
    FullReportInput,
    Holiday,
    HolidaysInput,
    MultiZoneInput,
    OriginalTime,
    OverviewInput,
    TimeSnapshot,
    UpcomingHoliday,
    ZoneError,
)
from .holiday_api import HolidayAPI
from .time_api import TimeAPI
from .upstream import gather_settled

MAJOR_TIMEZONES = [
    "America/New_York", "America/Los_Angeles", "America/Chicago",
    "Europe/London", "Europe/Paris", "Europe/Berlin",
    "Asia/Tokyo", "Asia/Shanghai", "Asia/Singapore",
    "Australia/Sydney", "Pacific/Auckland",
]

ENDPOINT_SUMMARY = {
    "current-time": "Get current time in any timezone ($0.001)",
    "convert": "Convert time between timezones ($0.002)",
    "holidays": "Get holidays for country/year ($0.002)",
    "multi-zone": "Current time in multiple zones ($0.003)",
    "full-report": "Complete timezone report ($0.005)",
}

SAMPLE_COUNTRY_LIMIT = 10
UPCOMING_HOLIDAY_LIMIT = 5
MS_PER_DAY = 1000 * 60 * 60 * 24


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat_utc(moment: datetime) -> str:
    """2026-02-01T10:00:00.000Z 格式"""
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def days_until(holiday_date: str, now: datetime) -> int:
    """距离节假日（按 UTC 零点计）的天数，向上取整"""
    target = datetime.fromisoformat(holiday_date).replace(tzinfo=timezone.utc)
    delta_ms = (target - now).total_seconds() * 1000
    return math.ceil(delta_ms / MS_PER_DAY)


@dataclass
class HandlerContext:
    """处理函数共享的依赖（进程启动时构建一次，之后只读）"""
    time_api: TimeAPI
    holiday_api: HolidayAPI
    tracker: Optional[PaymentTracker] = None
    clock: Callable[[], datetime] = field(default=utc_now)


# ==================== 免费入口 ====================

async def overview(ctx: HandlerContext, params: OverviewInput) -> Dict:
    timezones, countries = await asyncio.gather(
        ctx.time_api.available_timezones(),
        ctx.holiday_api.available_countries(),
    )

    return {
        "totalTimezones": len(timezones),
        "sampleTimezones": list(MAJOR_TIMEZONES),
        "totalCountries": len(countries),
        "sampleCountries": [c.dump() for c in countries[:SAMPLE_COUNTRY_LIMIT]],
        "endpoints": dict(ENDPOINT_SUMMARY),
        "fetchedAt": isoformat_utc(ctx.clock()),
    }


# ==================== 付费入口 ====================

async def current_time(ctx: HandlerContext, params: CurrentTimeInput) -> Dict:
    data = await ctx.time_api.current_time(params.timezone)

    return TimeSnapshot(
        timezone=data.time_zone,
        date_time=data.date_time,
        date=data.date,
        time=data.time,
        day_of_week=data.day_of_week,
        dst_active=data.dst_active,
        year=data.year,
        month=data.month,
        day=data.day,
        hour=data.hour,
        minute=data.minute,
        seconds=data.seconds,
    ).dump()


async def convert(ctx: HandlerContext, params: ConvertInput) -> Dict:
    data = await ctx.time_api.convert(params.from_timezone, params.to_timezone, params.date_time)

    # 上游缺少 conversionResult 时只返回目标时区，其余字段省略
    result = data.conversion_result
    converted = ConvertedTime(timezone=data.to_time_zone)
    if result is not None:
        converted = ConvertedTime(
            timezone=data.to_time_zone,
            date_time=result.date_time,
            date=result.date,
            time=result.time,
            day_of_week=result.day_of_week,
            dst_active=result.dst_active,
        )

    return ConversionResult(
        original=OriginalTime(timezone=data.from_timezone, date_time=data.from_date_time),
        converted=converted,
    ).dump()


async def holidays(ctx: HandlerContext, params: HolidaysInput) -> Dict:
    country_code = params.country_code.upper()
    year = params.year if params.year is not None else ctx.clock().year

    data = await ctx.holiday_api.public_holidays(year, country_code)
    items = [
        Holiday(
            date=h.date,
            name=h.name,
            local_name=h.local_name,
            is_global=h.is_global,
            types=h.types,
        ).dump()
        for h in data
    ]

    return {
        "countryCode": country_code,
        "year": year,
        "totalHolidays": len(items),
        "holidays": items,
    }


async def multi_zone(ctx: HandlerContext, params: MultiZoneInput) -> Dict:
    settled = await gather_settled(ctx.time_api.current_time(tz) for tz in params.timezones)

    times = []
    for tz, outcome in zip(params.timezones, settled):
        if not outcome.ok:
            times.append(ZoneError(timezone=tz).dump())
            continue
        data = outcome.value
        times.append(TimeSnapshot(
            timezone=tz,
            date_time=data.date_time,
            date=data.date,
            time=data.time,
            day_of_week=data.day_of_week,
            dst_active=data.dst_active,
        ).dump())

    return {
        "count": len(times),
        "times": times,
        "fetchedAt": isoformat_utc(ctx.clock()),
    }


async def full_report(ctx: HandlerContext, params: FullReportInput) -> Dict:
    country_code = params.country_code.upper()
    now = ctx.clock()

    time_data, holiday_data = await asyncio.gather(
        ctx.time_api.current_time(params.timezone),
        ctx.holiday_api.public_holidays(now.year, country_code),
    )

    # 日期均为补零的 YYYY-MM-DD，直接按字符串比较
    today = now.astimezone(timezone.utc).date().isoformat()
    upcoming = [h for h in holiday_data if h.date >= today][:UPCOMING_HOLIDAY_LIMIT]

    return {
        "timezone": {
            "name": params.timezone,
            "currentTime": time_data.date_time,
            "date": time_data.date,
            "time": time_data.time,
            "dayOfWeek": time_data.day_of_week,
            "dstActive": time_data.dst_active,
        },
        "country": {
            "code": country_code,
            "totalHolidays": len(holiday_data),
            "upcomingHolidays": [
                UpcomingHoliday(date=h.date, name=h.name, days_until=days_until(h.date, now)).dump()
                for h in upcoming
            ],
        },
        "generatedAt": isoformat_utc(now),
    }


# ==================== 统计入口 ====================

async def analytics(ctx: HandlerContext, params: AnalyticsInput) -> Dict:
    if ctx.tracker is None:
        return {"error": "Analytics not available"}
    return ctx.tracker.get_summary(params.window_ms)


async def analytics_transactions(ctx: HandlerContext, params: AnalyticsTransactionsInput) -> Dict:
    if ctx.tracker is None:
        return {"transactions": []}
    return {"transactions": ctx.tracker.get_transactions(params.window_ms, limit=params.limit)}


async def analytics_csv(ctx: HandlerContext, params: AnalyticsInput) -> Dict:
    if ctx.tracker is None:
        return {"csv": ""}
    return {"csv": ctx.tracker.export_csv(params.window_ms)}
