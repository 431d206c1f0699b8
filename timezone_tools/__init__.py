"""
时区工具模块

提供时区查询、时区转换和节假日查询功能

Copyright (c) 2025 Miyang Tech (Zhuhai Hengqin) Co., Ltd.
MIT License
"""

from .upstream import (
    UpstreamClient,
    UpstreamError,
    UpstreamHTTPError,
    UpstreamUnavailableError,
    build_async_client,
    gather_settled,
)
from .time_api import TimeAPI
from .holiday_api import HolidayAPI
from .registry import (
    Entrypoint,
    EntrypointRegistry,
    InputValidationError,
    UnknownEntrypointError,
    build_registry,
)

__all__ = [
    "UpstreamClient",
    "UpstreamError",
    "UpstreamHTTPError",
    "UpstreamUnavailableError",
    "build_async_client",
    "gather_settled",
    "TimeAPI",
    "HolidayAPI",
    "Entrypoint",
    "EntrypointRegistry",
    "InputValidationError",
    "UnknownEntrypointError",
    "build_registry",
]
