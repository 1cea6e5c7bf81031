import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "https://api.navifare.com/api/v1/price-discovery/flights"

# The stdio MCP client aborts any request after 60 seconds.
STDIO_REQUEST_CEILING_SECONDS = 60.0


@dataclass(frozen=True)
class Settings:
    api_base_url: str = DEFAULT_API_BASE_URL
    backend_timeout_seconds: float = 10.0
    poll_interval_seconds: float = 5.0
    stdio_poll_budget_seconds: float = 55.0
    http_poll_budget_seconds: float = 90.0
    results_ttl_seconds: float = 900.0
    openai_api_key: Optional[str] = None
    formatter_model: str = "gpt-4o-mini"
    formatter_timeout_seconds: float = 45.0
    log_level: str = "INFO"
    http_host: str = "0.0.0.0"
    http_port: int = 2091
    widget_base_url: str = "http://localhost:2091"
    langfuse_public_key: Optional[str] = None
    langfuse_secret_key: Optional[str] = None
    langfuse_host: Optional[str] = None


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Ignoring invalid {name}={raw!r}, using {default}")
        return default


def load_settings() -> Settings:
    """Build settings from the environment (and a local .env file if present)."""
    load_dotenv()

    stdio_budget = _float_env("STDIO_POLL_BUDGET_SECONDS", 55.0)
    if stdio_budget >= STDIO_REQUEST_CEILING_SECONDS:
        logger.warning(
            f"STDIO_POLL_BUDGET_SECONDS={stdio_budget} reaches the stdio request "
            f"ceiling, clamping to 55"
        )
        stdio_budget = 55.0

    return Settings(
        api_base_url=os.getenv("PRICE_DISCOVERY_API_BASE_URL", DEFAULT_API_BASE_URL).rstrip("/"),
        backend_timeout_seconds=_float_env("BACKEND_TIMEOUT_SECONDS", 10.0),
        poll_interval_seconds=_float_env("POLL_INTERVAL_SECONDS", 5.0),
        stdio_poll_budget_seconds=stdio_budget,
        http_poll_budget_seconds=_float_env("HTTP_POLL_BUDGET_SECONDS", 90.0),
        results_ttl_seconds=_float_env("RESULTS_TTL_SECONDS", 900.0),
        openai_api_key=os.getenv("OPENAI_API_KEY") or None,
        formatter_model=os.getenv("FORMATTER_MODEL", "gpt-4o-mini"),
        formatter_timeout_seconds=_float_env("FORMATTER_TIMEOUT_SECONDS", 45.0),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        http_host=os.getenv("HTTP_HOST", "0.0.0.0"),
        http_port=int(_float_env("HTTP_PORT", 2091)),
        widget_base_url=os.getenv("WIDGET_BASE_URL", "http://localhost:2091").rstrip("/"),
        langfuse_public_key=os.getenv("LANGFUSE_PUBLIC_KEY") or None,
        langfuse_secret_key=os.getenv("LANGFUSE_SECRET_KEY") or None,
        langfuse_host=os.getenv("LANGFUSE_HOST") or None,
    )
