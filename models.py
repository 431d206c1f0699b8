"""
数据模型定义

上游响应、入口输入输出的 pydantic 模型。
所有对外字段均为 camelCase，内部使用 snake_case。

Copyright (c) 2025 Miyang Tech (Zhuhai Hengqin) Co., Ltd.
MIT License
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """camelCase 序列化基类"""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def dump(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# ==================== 上游响应 ====================

class UpstreamTime(CamelModel):
    """timeapi.io 当前时间响应"""
    time_zone: Optional[str] = None
    date_time: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    day_of_week: Optional[str] = None
    dst_active: Optional[bool] = None
    year: Optional[int] = None
    month: Optional[int] = None
    day: Optional[int] = None
    hour: Optional[int] = None
    minute: Optional[int] = None
    seconds: Optional[int] = None


class UpstreamConversionDetail(CamelModel):
    date_time: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    day_of_week: Optional[str] = None
    dst_active: Optional[bool] = None


class UpstreamConversion(CamelModel):
    """timeapi.io 时区转换响应（注意上游字段大小写不统一）"""
    from_timezone: Optional[str] = None
    from_date_time: Optional[str] = None
    to_time_zone: Optional[str] = None
    conversion_result: Optional[UpstreamConversionDetail] = None


class UpstreamHoliday(CamelModel):
    """date.nager.at 节假日"""
    date: str
    name: str = ""
    local_name: str = ""
    is_global: bool = Field(default=False, alias="global")
    types: List[str] = Field(default_factory=list)


class UpstreamCountry(CamelModel):
    country_code: str
    name: str = ""


# ==================== 输出 ====================

class TimeSnapshot(CamelModel):
    """单个时区的时间快照"""
    timezone: Optional[str] = None
    date_time: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    day_of_week: Optional[str] = None
    dst_active: Optional[bool] = None
    year: Optional[int] = None
    month: Optional[int] = None
    day: Optional[int] = None
    hour: Optional[int] = None
    minute: Optional[int] = None
    seconds: Optional[int] = None


class ZoneError(CamelModel):
    """multi-zone 中失败的时区"""
    timezone: str
    error: str = "Failed to fetch"


class OriginalTime(CamelModel):
    timezone: Optional[str] = None
    date_time: Optional[str] = None


class ConvertedTime(CamelModel):
    timezone: Optional[str] = None
    date_time: Optional[str] = None
    date: Optional[str] = None
    time: Optional[str] = None
    day_of_week: Optional[str] = None
    dst_active: Optional[bool] = None


class ConversionResult(CamelModel):
    original: OriginalTime
    converted: ConvertedTime


class Holiday(CamelModel):
    date: str
    name: str
    local_name: str
    is_global: bool
    types: List[str]


class UpcomingHoliday(CamelModel):
    date: str
    name: str
    days_until: int


# ==================== 输入 ====================

class OverviewInput(CamelModel):
    pass


class CurrentTimeInput(CamelModel):
    timezone: str = Field(..., min_length=1, description="IANA timezone (e.g., America/New_York, Europe/London)")


class ConvertInput(CamelModel):
    from_timezone: str = Field(..., description="Source timezone (e.g., America/New_York)")
    to_timezone: str = Field(..., description="Target timezone (e.g., Europe/London)")
    date_time: str = Field(..., description="DateTime to convert (format: 2026-02-01 10:00:00)")


class HolidaysInput(CamelModel):
    country_code: str = Field(
        ..., min_length=2, max_length=2,
        description="ISO 3166-1 alpha-2 country code (e.g., US, GB, DE)",
    )
    year: Optional[int] = Field(default=None, description="Year (defaults to current year)")


class MultiZoneInput(CamelModel):
    timezones: List[str] = Field(..., min_length=2, max_length=10, description="Array of IANA timezones")


class FullReportInput(CamelModel):
    timezone: str = Field(..., description="IANA timezone (e.g., America/New_York)")
    country_code: str = Field(
        ..., min_length=2, max_length=2,
        description="ISO country code for holidays (e.g., US)",
    )


class AnalyticsInput(CamelModel):
    window_ms: Optional[int] = Field(default=None, ge=0, description="Time window in ms")


class AnalyticsTransactionsInput(CamelModel):
    window_ms: Optional[int] = Field(default=None, ge=0, description="Time window in ms")
    limit: int = Field(default=50, ge=0)
