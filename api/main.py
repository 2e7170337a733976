from __future__ import annotations

from fastapi import FastAPI

from agents.llm_runtime import LLMRuntime
from api.chat_sessions import ChatSessionPool
from api.middleware.logging import RequestLoggingMiddleware
from api.middleware.rate_limiting import RateLimitMiddleware
from api.routers import chat, portal
from compliance.audit_logger import AuditLogger
from log_config import configure_logging
from settings import SETTINGS
from tools.sgp_gateway import ExternalApiGateway


def create_app(
    gateway: ExternalApiGateway | None = None,
    llm: LLMRuntime | None = None,
    audit_logger: AuditLogger | None = None,
) -> FastAPI:
    configure_logging()
    app = FastAPI(title="ISP Support Agent", version="0.1.0", debug=SETTINGS.debug)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RateLimitMiddleware)
    app.state.gateway = gateway or ExternalApiGateway()
    app.state.llm = llm or LLMRuntime()
    app.state.chat_sessions = ChatSessionPool(app.state.gateway, llm=app.state.llm, audit_logger=audit_logger)

    api_prefix = "/api/v1"
    app.include_router(portal.router, prefix=api_prefix)
    app.include_router(chat.router, prefix=api_prefix)

    @app.get("/health")
    async def health():
        llm_runtime: LLMRuntime = app.state.llm
        return {
            "ok": True,
            "service": "isp-support-agent",
            "llm_provider": llm_runtime.provider,
            "llm_model": llm_runtime.model,
            "llm_runtime_available": llm_runtime.available(),
            "open_chats": len(app.state.chat_sessions),
        }

    return app


app = create_app()
