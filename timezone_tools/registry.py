"""
入口注册表

build_registry() 是唯一的组装点：启动时构建一次，之后只读。
invoke() 负责：输入校验 -> 计费预检 -> 调用处理函数 -> 扣费并记账。

Copyright (c) 2025 Miyang Tech (Zhuhai Hengqin) Co., Ltd.
MIT License
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from billing import BillingManager
from models import (
    AnalyticsInput,
    AnalyticsTransactionsInput,
    ConvertInput,
    CurrentTimeInput,
    FullReportInput,
    HolidaysInput,
    MultiZoneInput,
    OverviewInput,
)
from payment_tracker import INCOMING, PaymentTracker
from . import handlers
from .handlers import HandlerContext, utc_now
from .holiday_api import HolidayAPI
from .time_api import TimeAPI

logger = logging.getLogger(__name__)


class UnknownEntrypointError(KeyError):
    """入口不存在"""

    def __init__(self, key: str):
        super().__init__(key)
        self.key = key

    def __str__(self):
        return f"Unknown entrypoint: {self.key}"


class InputValidationError(ValueError):
    """输入校验失败"""

    def __init__(self, key: str, errors: List[Dict]):
        super().__init__(f"Invalid input for {key}")
        self.key = key
        self.errors = errors


@dataclass(frozen=True)
class Entrypoint:
    """一个可单独计价的入口"""
    key: str
    description: str
    price: int  # 最小货币单位
    input_model: Type[BaseModel]
    handler: Callable[[HandlerContext, Any], Awaitable[Dict]]

    def to_dict(self) -> Dict:
        return {
            "key": self.key,
            "description": self.description,
            "price": self.price,
            "inputSchema": self.input_model.model_json_schema(by_alias=True),
        }


ENTRYPOINTS = (
    Entrypoint("overview", "Free overview - sample timezones and countries available",
               0, OverviewInput, handlers.overview),
    Entrypoint("current-time", "Get current time in any timezone with DST info",
               1000, CurrentTimeInput, handlers.current_time),
    Entrypoint("convert", "Convert a specific time from one timezone to another",
               2000, ConvertInput, handlers.convert),
    Entrypoint("holidays", "Get public holidays for a country and year",
               2000, HolidaysInput, handlers.holidays),
    Entrypoint("multi-zone", "Get current time in multiple timezones at once",
               3000, MultiZoneInput, handlers.multi_zone),
    Entrypoint("full-report", "Complete timezone report: current time, upcoming holidays, and next DST change",
               5000, FullReportInput, handlers.full_report),
    Entrypoint("analytics", "Payment analytics summary",
               0, AnalyticsInput, handlers.analytics),
    Entrypoint("analytics-transactions", "Recent payment transactions",
               0, AnalyticsTransactionsInput, handlers.analytics_transactions),
    Entrypoint("analytics-csv", "Export payment data as CSV",
               0, AnalyticsInput, handlers.analytics_csv),
)


class EntrypointRegistry:
    """入口注册表"""

    def __init__(
        self,
        entrypoints: List[Entrypoint],
        context: HandlerContext,
        billing: Optional[BillingManager] = None
    ):
        self._entrypoints = MappingProxyType({ep.key: ep for ep in entrypoints})
        self.context = context
        self.billing = billing

    def __contains__(self, key: str) -> bool:
        return key in self._entrypoints

    def get(self, key: str) -> Entrypoint:
        try:
            return self._entrypoints[key]
        except KeyError:
            raise UnknownEntrypointError(key) from None

    def entrypoints(self) -> List[Entrypoint]:
        return list(self._entrypoints.values())

    async def invoke(self, key: str, raw_input: Optional[Dict] = None, token: Optional[str] = None) -> Dict:
        """
        调用入口

        Args:
            key: 入口名，如 "current-time"
            raw_input: 未校验的输入（camelCase 字段）
            token: 付费入口使用的 API Token

        Returns:
            {"output": ...}

        上游错误不在这里捕获，由 HTTP 层转换为错误响应；
        处理失败时不扣费。
        """
        entrypoint = self.get(key)

        try:
            params = entrypoint.input_model.model_validate(raw_input or {})
        except ValidationError as e:
            raise InputValidationError(key, e.errors(include_url=False, include_context=False)) from e

        payer = None
        if self.billing is not None:
            info = self.billing.authorize(token, key, entrypoint.price)
            payer = info["name"] if info else None

        start_time = time.time()
        output = await entrypoint.handler(self.context, params)
        duration_ms = int((time.time() - start_time) * 1000)
        logger.info(f"[{key}] 完成，耗时 {duration_ms}ms")

        if payer is not None:
            self.billing.charge(token, key, entrypoint.price)
            if self.context.tracker is not None:
                try:
                    self.context.tracker.record(INCOMING, key, entrypoint.price, payer=payer)
                except Exception as e:
                    # 已扣费，记账失败不影响返回结果
                    logger.error(f"[{key}] 记录支付失败（已扣费 {entrypoint.price}，付款方 {payer}）: {e}")

        return {"output": output}


def build_registry(
    time_api: TimeAPI,
    holiday_api: HolidayAPI,
    tracker: Optional[PaymentTracker] = None,
    billing: Optional[BillingManager] = None,
    clock: Callable[[], datetime] = utc_now
) -> EntrypointRegistry:
    """组装所有入口"""
    context = HandlerContext(
        time_api=time_api,
        holiday_api=holiday_api,
        tracker=tracker,
        clock=clock,
    )
    return EntrypointRegistry(list(ENTRYPOINTS), context, billing=billing)
