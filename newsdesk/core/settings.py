from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Protocol


class SettingsStore(Protocol):
    """Key/value lookup for provider credentials and feature flags."""

    def get_setting(self, key: str, default: str | None = None) -> str | None: ...


@dataclass(frozen=True)
class Settings:
    app_env: str
    db_path: str
    log_level: str
    rewrite_timeout_s: float
    failover_delay_s: float

    @staticmethod
    def from_env() -> "Settings":
        def _f(name: str, default: str) -> float:
            return float(os.getenv(name, default).strip())

        return Settings(
            app_env=os.getenv("APP_ENV", "dev").strip(),
            db_path=os.getenv("DB_PATH", "_local/data/newsdesk.db").strip(),
            log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper(),
            rewrite_timeout_s=_f("REWRITE_TIMEOUT_S", "120"),
            failover_delay_s=_f("FAILOVER_DELAY_S", "1.0"),
        )


# Settings-store key holding each provider's credential
PROVIDER_KEY_SETTINGS: dict[str, str] = {
    "deepseek": "deepseek_api_key",
    "groq": "groq_api_key",
    "gemini": "gemini_api_key",
    "cohere": "cohere_api_key",
    "openai": "openai_api_key",
}


@dataclass(frozen=True)
class RewriteSettings:
    """Typed view of the rewrite-related keys in the settings store."""

    api_keys: dict[str, str]
    auto_fallback: bool = True
    failover_retries: int = 3
    seo_keywords: str = ""

    @staticmethod
    def from_store(store: SettingsStore) -> "RewriteSettings":
        def _s(key: str) -> str:
            return (store.get_setting(key) or "").strip()

        def _b(key: str, default: bool) -> bool:
            raw = _s(key)
            if not raw:
                return default
            return raw.lower() in ("1", "true", "yes")

        def _i(key: str, default: int) -> int:
            try:
                value = int(_s(key))
            except ValueError:
                return default
            return value if value > 0 else default

        return RewriteSettings(
            api_keys={name: _s(key) for name, key in PROVIDER_KEY_SETTINGS.items() if _s(key)},
            auto_fallback=_b("ai_auto_fallback", True),
            failover_retries=_i("ai_failover_retries", 3),
            seo_keywords=_s("seo_keywords"),
        )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
