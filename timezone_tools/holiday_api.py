"""
date.nager.at 节假日客户端

Copyright (c) 2025 Miyang Tech (Zhuhai Hengqin) Co., Ltd.
MIT License
"""

from typing import List

from models import UpstreamCountry, UpstreamHoliday
from .upstream import UpstreamClient


class HolidayAPI:
    """公共节假日数据源"""

    BASE_URL = "https://date.nager.at/api/v3"

    def __init__(self, upstream: UpstreamClient, base_url: str = BASE_URL):
        self.upstream = upstream
        self.base_url = base_url.rstrip("/")

    async def available_countries(self) -> List[UpstreamCountry]:
        data = await self.upstream.get_json(f"{self.base_url}/AvailableCountries")
        return [UpstreamCountry.model_validate(c) for c in data]

    async def public_holidays(self, year: int, country_code: str) -> List[UpstreamHoliday]:
        """按上游返回顺序（通常按日期升序）返回节假日"""
        data = await self.upstream.get_json(
            f"{self.base_url}/publicholidays/{year}/{country_code.upper()}"
        )
        return [UpstreamHoliday.model_validate(h) for h in data]
