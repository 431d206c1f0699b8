"""
timeapi.io 客户端

Copyright (c) 2025 Miyang Tech (Zhuhai Hengqin) Co., Ltd.
MIT License
"""

from typing import List

from models import UpstreamConversion, UpstreamTime
from .upstream import UpstreamClient


class TimeAPI:
    """时间/时区数据源"""

    BASE_URL = "https://timeapi.io/api"

    def __init__(self, upstream: UpstreamClient, base_url: str = BASE_URL):
        self.upstream = upstream
        self.base_url = base_url.rstrip("/")

    async def available_timezones(self) -> List[str]:
        """所有可用的 IANA 时区名"""
        return await self.upstream.get_json(f"{self.base_url}/timezone/availabletimezones")

    async def current_time(self, timezone: str) -> UpstreamTime:
        """
        获取时区当前时间

        时区名作为查询参数传递（由 httpx 负责 URL 编码），
        非法时区由上游拒绝，错误直接抛出。
        """
        data = await self.upstream.get_json(
            f"{self.base_url}/time/current/zone",
            params={"timeZone": timezone},
        )
        return UpstreamTime.model_validate(data)

    async def convert(self, from_timezone: str, to_timezone: str, date_time: str) -> UpstreamConversion:
        """把 `YYYY-MM-DD HH:MM:SS` 格式的时间从一个时区转换到另一个时区"""
        data = await self.upstream.post_json(
            f"{self.base_url}/conversion/converttimezone",
            {
                "fromTimeZone": from_timezone,
                "dateTime": date_time,
                "toTimeZone": to_timezone,
                "dstAmbiguity": "",
            },
        )
        return UpstreamConversion.model_validate(data)
