"""Provider configuration loader for the quiz generation service.

Built-in defaults are overlaid by ``config/providers.yaml`` (optional) and
then by environment variables. A provider whose credential is missing is
left out of the fallback chain instead of failing startup.
"""

from __future__ import annotations

import asyncio
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

import yaml

from ..adapters.gemini_adapter import GEMINI_BASE_URL, GEMINI_DEFAULT_MODEL, GeminiAdapter
from ..adapters.groq_adapter import GROQ_BASE_URL, GROQ_DEFAULT_MODEL, GroqAdapter
from ..adapters.mock_adapter import MockAdapter
from ..adapters.ollama_adapter import OLLAMA_BASE_URL, OLLAMA_DEFAULT_MODEL, OllamaAdapter
from .ingest import ContentIngestor
from .orchestrator import FallbackOrchestrator
from .retry_policy import MAX_RETRIES_CEILING, RetryPolicy
from .types import ProviderConfig

ADAPTERS = {
    "gemini": GeminiAdapter,
    "groq": GroqAdapter,
    "ollama": OllamaAdapter,
}

DEFAULT_PROVIDERS: dict[str, dict[str, Any]] = {
    "gemini": {
        "base_url": GEMINI_BASE_URL,
        "model": GEMINI_DEFAULT_MODEL,
        "api_key_env": "GEMINI_API_KEY",
        "base_url_env": "GEMINI_BASE_URL",
        "model_env": "GEMINI_MODEL",
        "supports_url_context": True,
        "supports_json_mode": True,
    },
    "groq": {
        "base_url": GROQ_BASE_URL,
        "model": GROQ_DEFAULT_MODEL,
        "api_key_env": "GROQ_API_KEY",
        "base_url_env": "GROQ_BASE_URL",
        "model_env": "GROQ_MODEL",
        "supports_json_mode": True,
    },
    "ollama": {
        "base_url": OLLAMA_BASE_URL,
        "model": OLLAMA_DEFAULT_MODEL,
        "requires_key": False,
        "base_url_env": "OLLAMA_URL",
        "model_env": "OLLAMA_MODEL",
        "supports_json_mode": True,
    },
}

# fast/free first, most reliable local fallback last
DEFAULT_CHAIN = ("groq", "gemini", "ollama")
DEFAULT_ACTIVE = "gemini"


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    if not raw:
        return default
    return raw not in ("0", "false", "no", "off")


def use_mock_providers() -> bool:
    return os.environ.get("OJT_QUIZ_ENV", "real").lower() == "mock"


class ProviderConfigLoader:
    """Loads provider settings (defaults + YAML + environment)."""

    def __init__(self, config_path: Optional[Path] = None):
        if config_path is None:
            env_path = os.environ.get("OJT_QUIZ_CONFIG", "").strip()
            if env_path:
                config_path = Path(env_path)
            else:
                project_root = Path(__file__).parent.parent.parent
                config_path = project_root / "config" / "providers.yaml"
        self.config_path = config_path
        self._config: Optional[dict] = None

    def _load_config(self) -> dict:
        if self._config is None:
            if self.config_path.exists():
                with open(self.config_path, "r", encoding="utf-8") as f:
                    self._config = yaml.safe_load(f) or {}
            else:
                self._config = {}
        return self._config

    def _provider_settings(self, name: str) -> dict[str, Any]:
        merged = dict(DEFAULT_PROVIDERS[name])
        user = (self._load_config().get("providers") or {}).get(name) or {}
        if isinstance(user, dict):
            merged.update({k: v for k, v in user.items() if v is not None})
        return merged

    def provider_config(self, name: str) -> Optional[ProviderConfig]:
        """Resolved config for one provider, or None when it is disabled."""
        if name not in DEFAULT_PROVIDERS:
            raise ValueError(f"Unknown provider: {name}")
        settings = self._provider_settings(name)
        if not _env_flag(f"{name.upper()}_ENABLED", bool(settings.get("enabled", True))):
            return None
        api_key = ""
        if settings.get("api_key_env"):
            api_key = os.environ.get(settings["api_key_env"], "").strip()
        if settings.get("requires_key", True) and not api_key:
            return None
        return ProviderConfig(
            name=name,
            base_url=os.environ.get(settings["base_url_env"], "").strip() or settings["base_url"],
            model=os.environ.get(settings["model_env"], "").strip() or settings["model"],
            api_key=api_key,
            temperature=float(settings.get("temperature", 0.3)),
            max_tokens=int(settings.get("max_tokens", 8192)),
            timeout_seconds=_env_float(
                "LLM_TIMEOUT_SECONDS",
                float(settings.get("timeout_seconds", self._load_config().get("timeout_seconds", 60))),
            ),
            supports_url_context=bool(settings.get("supports_url_context", False)),
            supports_json_mode=bool(settings.get("supports_json_mode", False)),
        )

    @property
    def provider_configs(self) -> Dict[str, ProviderConfig]:
        configs = {}
        for name in DEFAULT_PROVIDERS:
            config = self.provider_config(name)
            if config is not None:
                configs[name] = config
        return configs

    def configured_chain(self) -> List[str]:
        raw = os.environ.get("LLM_FALLBACK_CHAIN", "").strip()
        if raw:
            chain = [n.strip().lower() for n in raw.split(",") if n.strip()]
        else:
            chain = list(self._load_config().get("fallback_chain") or DEFAULT_CHAIN)
        unknown = [n for n in chain if n not in DEFAULT_PROVIDERS]
        if unknown:
            raise ValueError(f"Unknown provider(s) in fallback chain: {', '.join(unknown)}")
        return chain

    def fallback_chain(self, use_mocks: bool = False) -> List[str]:
        """Configured chain order restricted to enabled providers."""
        chain = self.configured_chain()
        if use_mocks:
            return chain
        enabled = self.provider_configs
        return [name for name in chain if name in enabled]

    def default_provider(self, chain: List[str]) -> Optional[str]:
        wanted = (
            os.environ.get("LLM_PROVIDER", "").strip().lower()
            or self._load_config().get("default_provider")
            or DEFAULT_ACTIVE
        )
        if wanted in chain:
            return wanted
        return chain[0] if chain else None

    def retry_policy(self) -> RetryPolicy:
        retry = self._load_config().get("retry") or {}
        max_retries = _env_int("LLM_MAX_RETRIES", int(retry.get("max_retries", 3)))
        return RetryPolicy(
            max_retries=max(0, min(MAX_RETRIES_CEILING, max_retries)),
            base_delay_ms=int(retry.get("base_delay_ms", 1000)),
            max_delay_ms=retry.get("max_delay_ms"),
        )

    def create_adapters(self, use_mocks: bool = False) -> List:
        chain = self.fallback_chain(use_mocks)
        if use_mocks:
            return [MockAdapter(name=name) for name in chain]
        configs = self.provider_configs
        return [ADAPTERS[name](configs[name]) for name in chain]

    def build_orchestrator(
        self,
        use_mocks: Optional[bool] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> FallbackOrchestrator:
        if use_mocks is None:
            use_mocks = use_mock_providers()
        adapters = self.create_adapters(use_mocks)
        chain = [adapter.id for adapter in adapters]
        return FallbackOrchestrator(
            adapters,
            fallback_chain=chain,
            default_provider=self.default_provider(chain),
            retry_policy=self.retry_policy(),
            sleep=sleep,
        )

    def build_ingestor(self) -> ContentIngestor:
        gemini = self.provider_config("gemini")
        return ContentIngestor(
            gemini_api_key=gemini.api_key if gemini else "",
            proxy_url=os.environ.get("CORS_PROXY_URL", "").strip() or None,
        )


# Global instance
provider_config_loader = ProviderConfigLoader()
