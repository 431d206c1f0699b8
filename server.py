"""
MCP 服务器 - 时区情报（timezone-intel）

运行方式:
    python3.11 server.py

访问地址:
    HTTP 入口: http://localhost:3000/entrypoints
    MCP 端点: http://localhost:3000/mcp

Copyright (c) 2025 Miyang Tech (Zhuhai Hengqin) Co., Ltd.
MIT License
"""

import os
import sys
import json
import logging
import time as time_module
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx
import yaml

# 加载环境变量
from dotenv import load_dotenv
load_dotenv()

from mcp.server.fastmcp import Context, FastMCP

# 添加项目根目录到路径
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from billing import BillingManager, PaymentRequiredError
from payment_tracker import PaymentTracker
from timezone_tools import (
    EntrypointRegistry,
    HolidayAPI,
    InputValidationError,
    TimeAPI,
    UnknownEntrypointError,
    UpstreamClient,
    UpstreamError,
    build_async_client,
    build_registry,
)
from timezone_tools.handlers import utc_now

logger = logging.getLogger(__name__)

AGENT_NAME = "timezone-intel"
AGENT_VERSION = "1.0.0"
AGENT_DESCRIPTION = (
    "Real-time timezone intelligence: current times, timezone conversions, holiday calendars, "
    "and DST info. Essential data for scheduling agents."
)
DEFAULT_BASE_URL = "https://timezone-intel-production.up.railway.app"


# ==================== 配置加载 ====================

def load_config() -> tuple:
    """加载配置文件"""
    config_path = os.path.join(os.path.dirname(__file__), "config.yaml")
    if os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}, config_path
    return {}, config_path


def resolve_settings(config: dict) -> Dict[str, Any]:
    """合并配置文件与环境变量（环境变量优先）"""
    server_config = config.get("server", {})
    data_dir = config.get("storage", {}).get("data_dir", "./data")
    icon_path = server_config.get("icon_path", "icon.png")
    if not os.path.isabs(icon_path):
        icon_path = os.path.join(os.path.dirname(os.path.abspath(__file__)), icon_path)

    return {
        "name": server_config.get("name", AGENT_NAME),
        "host": server_config.get("host", "0.0.0.0"),
        "port": int(os.getenv("PORT") or server_config.get("port", 3000)),
        "base_url": (os.getenv("AGENT_BASE_URL") or server_config.get("base_url") or DEFAULT_BASE_URL).rstrip("/"),
        "icon_path": icon_path,
        "billing_db": os.path.join(data_dir, "billing.db"),
        "payments_db": os.path.join(data_dir, "payments.db"),
        "admin_key": os.getenv("ADMIN_KEY") or config.get("auth", {}).get("admin_key", ""),
        "analytics_enabled": config.get("analytics", {}).get("enabled", True),
        "analytics_max_records": config.get("analytics", {}).get("max_records", 10000),
    }


def extract_bearer_token(auth_header: Optional[str]) -> Optional[str]:
    """从 Authorization 头中取出 Bearer Token"""
    if auth_header and auth_header.startswith("Bearer "):
        return auth_header[7:].strip() or None
    return None


# ==================== 描述文档 ====================

def build_agent_card(registry: EntrypointRegistry, base_url: str) -> Dict:
    """A2A agent card"""
    return {
        "name": AGENT_NAME,
        "version": AGENT_VERSION,
        "description": AGENT_DESCRIPTION,
        "url": base_url,
        "capabilities": {"streaming": False},
        "entrypoints": {
            ep.key: {
                "description": ep.description,
                "price": ep.price,
                "invoke": f"{base_url}/entrypoints/{ep.key}/invoke",
            }
            for ep in registry.entrypoints()
        },
    }


def build_registration(base_url: str) -> Dict:
    """ERC-8004 注册描述"""
    return {
        "type": "https://eips.ethereum.org/EIPS/eip-8004#registration-v1",
        "name": AGENT_NAME,
        "description": (
            "Real-time timezone intelligence: current times, conversions, holiday calendars, DST info. "
            "Essential for scheduling agents. 1 free + 5 paid endpoints, billed per call with prepaid bearer API tokens."
        ),
        "image": f"{base_url}/icon.png",
        "services": [
            {"name": "web", "endpoint": base_url},
            {"name": "A2A", "endpoint": f"{base_url}/.well-known/agent.json", "version": "0.3.0"},
        ],
        "x402Support": False,
        "active": True,
        "registrations": [],
        "supportedTrust": ["reputation"],
    }


# ==================== MCP 工具 ====================

def _token_from_context(ctx: Context) -> Optional[str]:
    """从 MCP 请求的 HTTP 头中读取 Token"""
    try:
        request_context = ctx.request_context
    except ValueError:
        # 不在 MCP 请求中（例如直接调用工具）
        return None
    request = getattr(request_context, "request", None)
    if request is None:
        return None
    return extract_bearer_token(request.headers.get("authorization"))


def create_mcp(registry: EntrypointRegistry, name: str = AGENT_NAME) -> FastMCP:
    """把每个入口注册为 MCP 工具"""
    mcp = FastMCP(name)

    async def call(key: str, params: Dict, ctx: Context) -> str:
        try:
            result = await registry.invoke(key, params, token=_token_from_context(ctx))
        except PaymentRequiredError as e:
            return f"Payment required: {e.reason} (price {e.price})"
        except InputValidationError as e:
            return json.dumps({"error": str(e), "details": e.errors}, ensure_ascii=False, default=str)
        except UpstreamError as e:
            return f"Upstream error: {e}"
        return json.dumps(result["output"], ensure_ascii=False)

    @mcp.tool(name="overview")
    async def overview(ctx: Context) -> str:
        """免费概览：时区/国家数量、常用时区示例和各入口价格"""
        return await call("overview", {}, ctx)

    @mcp.tool(name="current-time")
    async def current_time(timezone: str, ctx: Context) -> str:
        """
        获取任意时区的当前时间（含夏令时信息）

        Args:
            timezone: IANA 时区名，如 "America/New_York"、"Europe/London"
        """
        return await call("current-time", {"timezone": timezone}, ctx)

    @mcp.tool(name="convert")
    async def convert(from_timezone: str, to_timezone: str, date_time: str, ctx: Context) -> str:
        """
        把某个时间从一个时区转换到另一个时区

        Args:
            from_timezone: 源时区，如 "America/New_York"
            to_timezone: 目标时区，如 "Europe/London"
            date_time: 待转换时间，格式 "2026-02-01 10:00:00"
        """
        return await call("convert", {
            "fromTimezone": from_timezone,
            "toTimezone": to_timezone,
            "dateTime": date_time,
        }, ctx)

    @mcp.tool(name="holidays")
    async def holidays(country_code: str, ctx: Context, year: Optional[int] = None) -> str:
        """
        获取某国某年的公共节假日

        Args:
            country_code: ISO 3166-1 两位国家代码，如 "US"、"GB"、"DE"
            year: 年份，默认当前年份
        """
        params = {"countryCode": country_code}
        if year is not None:
            params["year"] = year
        return await call("holidays", params, ctx)

    @mcp.tool(name="multi-zone")
    async def multi_zone(timezones: List[str], ctx: Context) -> str:
        """
        同时获取多个时区的当前时间（2~10 个），单个时区失败不影响其他结果

        Args:
            timezones: IANA 时区名列表
        """
        return await call("multi-zone", {"timezones": timezones}, ctx)

    @mcp.tool(name="full-report")
    async def full_report(timezone: str, country_code: str, ctx: Context) -> str:
        """
        完整报告：当前时间 + 今年剩余的节假日（最多 5 个）

        Args:
            timezone: IANA 时区名
            country_code: 用于查询节假日的两位国家代码
        """
        return await call("full-report", {"timezone": timezone, "countryCode": country_code}, ctx)

    @mcp.tool(name="analytics")
    async def analytics(ctx: Context, window_ms: Optional[int] = None) -> str:
        """支付统计汇总"""
        return await call("analytics", {"windowMs": window_ms}, ctx)

    @mcp.tool(name="analytics-transactions")
    async def analytics_transactions(ctx: Context, window_ms: Optional[int] = None, limit: int = 50) -> str:
        """最近的支付记录"""
        return await call("analytics-transactions", {"windowMs": window_ms, "limit": limit}, ctx)

    @mcp.tool(name="analytics-csv")
    async def analytics_csv(ctx: Context, window_ms: Optional[int] = None) -> str:
        """导出支付记录为 CSV"""
        return await call("analytics-csv", {"windowMs": window_ms}, ctx)

    return mcp


class MCPEndpoint:
    """把 /mcp 请求交给 StreamableHTTPSessionManager 处理的 ASGI 应用"""

    def __init__(self, session_manager):
        self.session_manager = session_manager

    async def __call__(self, scope, receive, send):
        await self.session_manager.handle_request(scope, receive, send)


# ==================== 应用组装 ====================

def create_app(
    config: Optional[dict] = None,
    http_client: Optional[httpx.AsyncClient] = None,
    clock: Callable[[], datetime] = utc_now
):
    """创建 Web + MCP 应用"""
    from fastapi import FastAPI, Request
    from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse
    from mcp.server.streamable_http_manager import StreamableHTTPSessionManager
    from pydantic import BaseModel, Field
    from starlette.routing import Route

    if config is None:
        config, _ = load_config()
    settings = resolve_settings(config)

    # Pydantic 模型
    class InvokeRequest(BaseModel):
        input: Dict[str, Any] = Field(default_factory=dict)

    class CreateTokenRequest(BaseModel):
        name: str
        credits: int = Field(default=0, ge=0)

    class TopUpRequest(BaseModel):
        amount: int = Field(..., gt=0)

    # 组装依赖
    owns_client = http_client is None
    http_client = http_client or build_async_client(config)
    upstream = UpstreamClient(http_client)
    upstream_config = config.get("upstream", {})
    time_api = TimeAPI(upstream, upstream_config.get("time_api_url", TimeAPI.BASE_URL))
    holiday_api = HolidayAPI(upstream, upstream_config.get("holiday_api_url", HolidayAPI.BASE_URL))

    tracker = None
    if settings["analytics_enabled"]:
        tracker = PaymentTracker(settings["payments_db"], max_records=settings["analytics_max_records"])
    billing = BillingManager(settings["billing_db"], config)

    registry = build_registry(time_api, holiday_api, tracker=tracker, billing=billing, clock=clock)

    # MCP Session Manager
    mcp = create_mcp(registry, settings["name"])
    session_manager = StreamableHTTPSessionManager(
        app=mcp._mcp_server,
        json_response=False,
        stateless=False,
    )

    @asynccontextmanager
    async def lifespan(app):
        try:
            async with session_manager.run():
                yield
        finally:
            if owns_client:
                await http_client.aclose()

    # 创建 FastAPI 应用
    app = FastAPI(
        title=settings["name"],
        description="时区情报 MCP 服务",
        version=AGENT_VERSION,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan
    )
    app.state.settings = settings
    app.state.registry = registry
    app.state.billing = billing
    app.state.tracker = tracker

    # 请求日志中间件
    @app.middleware("http")
    async def logging_middleware(request: Request, call_next):
        start_time = time_module.time()
        response = await call_next(request)
        duration_ms = int((time_module.time() - start_time) * 1000)
        logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({duration_ms}ms)")
        return response

    # ==================== 错误处理 ====================

    @app.exception_handler(UnknownEntrypointError)
    async def unknown_entrypoint_handler(request: Request, exc: UnknownEntrypointError):
        return JSONResponse({"error": str(exc)}, status_code=404)

    @app.exception_handler(InputValidationError)
    async def input_validation_handler(request: Request, exc: InputValidationError):
        return JSONResponse(
            {"error": str(exc), "details": json.loads(json.dumps(exc.errors, default=str))},
            status_code=400,
        )

    @app.exception_handler(PaymentRequiredError)
    async def payment_required_handler(request: Request, exc: PaymentRequiredError):
        return JSONResponse(
            {"error": "Payment required", "reason": exc.reason, "entrypoint": exc.entrypoint, "price": exc.price},
            status_code=402,
        )

    @app.exception_handler(UpstreamError)
    async def upstream_error_handler(request: Request, exc: UpstreamError):
        logger.error(f"上游调用失败 {request.url.path}: {exc}")
        return JSONResponse({"error": str(exc)}, status_code=502)

    # ==================== 入口 API ====================

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/entrypoints")
    async def list_entrypoints():
        """列出所有入口及价格"""
        return {"items": [ep.to_dict() for ep in registry.entrypoints()]}

    @app.post("/entrypoints/{key}/invoke")
    async def invoke_entrypoint(key: str, request: Request, data: Optional[InvokeRequest] = None):
        """调用入口"""
        token = extract_bearer_token(request.headers.get("authorization"))
        raw_input = data.input if data is not None else {}
        return await registry.invoke(key, raw_input, token=token)

    # ==================== 描述文档 ====================

    @app.get("/.well-known/agent.json")
    async def agent_card():
        return build_agent_card(registry, settings["base_url"])

    @app.get("/.well-known/erc8004.json")
    async def registration():
        return build_registration(settings["base_url"])

    @app.get("/icon.png")
    async def icon():
        if not os.path.isfile(settings["icon_path"]):
            return PlainTextResponse("Icon not found", status_code=404)
        return FileResponse(settings["icon_path"], media_type="image/png")

    # ==================== Token 管理 API ====================

    def check_admin(request: Request) -> bool:
        """检查管理密钥（未配置时管理 API 关闭）"""
        admin_key = settings["admin_key"]
        return bool(admin_key) and request.headers.get("x-admin-key") == admin_key

    @app.get("/api/tokens")
    async def list_tokens(request: Request):
        """列出所有 Token"""
        if not check_admin(request):
            return JSONResponse({"success": False, "error": "Unauthorized"}, status_code=403)

        tokens = billing.list_api_tokens()
        return JSONResponse({"success": True, "tokens": tokens})

    @app.post("/api/tokens")
    async def create_token(data: CreateTokenRequest, request: Request):
        """创建 Token"""
        if not check_admin(request):
            return JSONResponse({"success": False, "error": "Unauthorized"}, status_code=403)

        if not data.name:
            return JSONResponse({"success": False, "error": "Token name is required"}, status_code=400)

        token = billing.create_api_token(data.name, data.credits)
        return JSONResponse({"success": True, "token": token})

    @app.post("/api/tokens/{token_id}/top-up")
    async def top_up_token(token_id: int, data: TopUpRequest, request: Request):
        """充值"""
        if not check_admin(request):
            return JSONResponse({"success": False, "error": "Unauthorized"}, status_code=403)

        if billing.top_up(token_id, data.amount):
            return JSONResponse({"success": True})
        return JSONResponse({"success": False, "error": "Token not found"}, status_code=404)

    @app.post("/api/tokens/{token_id}/revoke")
    async def revoke_token(token_id: int, request: Request):
        """撤销 Token"""
        if not check_admin(request):
            return JSONResponse({"success": False, "error": "Unauthorized"}, status_code=403)

        if billing.revoke_api_token(token_id):
            return JSONResponse({"success": True})
        return JSONResponse({"success": False, "error": "Token not found"}, status_code=404)

    @app.delete("/api/tokens/{token_id}")
    async def delete_token(token_id: int, request: Request):
        """删除 Token"""
        if not check_admin(request):
            return JSONResponse({"success": False, "error": "Unauthorized"}, status_code=403)

        if billing.delete_api_token(token_id):
            return JSONResponse({"success": True})
        return JSONResponse({"success": False, "error": "Token not found"}, status_code=404)

    # ==================== MCP 路由 ====================

    app.router.routes.append(
        Route("/mcp", endpoint=MCPEndpoint(session_manager), methods=["GET", "POST", "DELETE"])
    )

    return app


# ==================== 运行服务器 ====================

def run_server():
    """运行 Web + MCP 服务器"""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    config, config_path = load_config()
    settings = resolve_settings(config)
    app = create_app(config)

    # 启动服务
    print(f"\n{'='*50}")
    print(f"  🌍 {settings['name']} 已启动")
    print(f"{'='*50}")
    print(f"  配置文件: {config_path}")
    print(f"  入口列表: http://localhost:{settings['port']}/entrypoints")
    print(f"  MCP 端点: http://localhost:{settings['port']}/mcp")
    print(f"{'='*50}\n")

    uvicorn.run(app, host=settings["host"], port=settings["port"])


if __name__ == "__main__":
    run_server()
