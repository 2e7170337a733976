from __future__ import annotations

import os
from dataclasses import dataclass


def _bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


@dataclass(frozen=True)
class Settings:
    default_llm_provider: str = os.getenv("DEFAULT_LLM_PROVIDER", "gemini")
    default_model: str = os.getenv("DEFAULT_MODEL", "gemini-2.5-flash")
    gemini_api_key: str = os.getenv("GEMINI_API_KEY", os.getenv("API_KEY", ""))
    gemini_base_url: str = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    anthropic_api_key: str = os.getenv("ANTHROPIC_API_KEY", "")
    anthropic_base_url: str = os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1")
    openai_api_key: str = os.getenv("OPENAI_API_KEY", "")
    openai_base_url: str = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
    xai_api_key: str = os.getenv("XAI_API_KEY", "")
    xai_base_url: str = os.getenv("XAI_BASE_URL", "https://api.x.ai/v1")
    llm_timeout_seconds: int = _int("LLM_TIMEOUT_SECONDS", 25)
    llm_temperature: float = _float("LLM_TEMPERATURE", 0.4)

    sgp_base_url: str = os.getenv("SGP_BASE_URL", "https://citrn.sgp.net.br/api/central")
    sgp_radius_url: str = os.getenv("SGP_RADIUS_URL", "https://citrn.sgp.net.br/ws/radius/radacct/list/all/")
    sgp_ticket_url: str = os.getenv("SGP_TICKET_URL", "https://citrn.sgp.net.br/api/ura/chamado/")
    sgp_app_name: str = os.getenv("SGP_APP_NAME", "apicitmax")
    sgp_app_token: str = os.getenv("SGP_APP_TOKEN", "")
    sgp_timeout_seconds: int = _int("SGP_TIMEOUT_SECONDS", 20)

    brand_name: str = os.getenv("BRAND_NAME", "CITmax")
    support_timezone: str = os.getenv("SUPPORT_TIMEZONE", "America/Sao_Paulo")

    audit_log_path: str = os.getenv("AUDIT_LOG_PATH", "./data/audit.log.jsonl")
    rate_limit_per_minute: int = _int("RATE_LIMIT_PER_MINUTE", 60)
    chat_session_ttl_seconds: int = _int("CHAT_SESSION_TTL_SECONDS", 1800)
    max_chat_sessions: int = _int("MAX_CHAT_SESSIONS", 500)
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    debug: bool = _bool("DEBUG", False)


SETTINGS = Settings()
