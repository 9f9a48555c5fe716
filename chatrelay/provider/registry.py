"""
Static model catalog.

Maps a client-facing model identifier to the provider that serves it and the
capability flags the UI cares about. The registry is built once at startup,
stored on ``app.state`` and handed to request handlers by reference; it is
never mutated afterwards.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from chatrelay.errors import ProviderNotFound

TRANSPORT_HTTP = "http"
TRANSPORT_SDK = "sdk"


def _frozen(mapping: Mapping[str, Any] | None = None) -> Mapping[str, Any]:
    return MappingProxyType(dict(mapping or {}))


@dataclass(frozen=True)
class ProviderSpec:
    id: str
    display_name: str
    # "http": OpenAI-compatible chat/completions SSE endpoint called directly.
    # "sdk": vendor SDK driver looked up by sdk_vendor.
    transport: str
    base_url: str | None = None
    sdk_vendor: str | None = None
    chat_completions_path: str = "/chat/completions"

    @property
    def chat_completions_url(self) -> str:
        base = (self.base_url or "").rstrip("/")
        path = self.chat_completions_path
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{base}{path}"


@dataclass(frozen=True)
class ModelSpec:
    model: str
    provider: str
    upstream_model_id: str | None = None
    has_file_upload: bool = False
    has_vision: bool = False
    has_thinking: bool = False
    has_pdf_manipulation: bool = False
    has_search: bool = False
    # Passed through to the upstream call untouched.
    provider_options: Mapping[str, Any] = field(default_factory=_frozen)

    @property
    def upstream_id(self) -> str:
        return self.upstream_model_id or self.model

    def to_public_dict(self) -> dict[str, Any]:
        return {
            "model": self.model,
            "provider": self.provider,
            "has_file_upload": self.has_file_upload,
            "has_vision": self.has_vision,
            "has_thinking": self.has_thinking,
            "has_pdf_manipulation": self.has_pdf_manipulation,
            "has_search": self.has_search,
        }


class ProviderRegistry:
    def __init__(
        self,
        providers: Iterable[ProviderSpec],
        models: Iterable[ModelSpec],
    ) -> None:
        provider_map = {p.id: p for p in providers}
        model_map: dict[str, ModelSpec] = {}
        for spec in models:
            if spec.provider not in provider_map:
                raise ValueError(
                    f"Model '{spec.model}' references unknown provider '{spec.provider}'"
                )
            if spec.model in model_map:
                raise ValueError(f"Duplicate model '{spec.model}' in catalog")
            model_map[spec.model] = spec
        self._providers: Mapping[str, ProviderSpec] = MappingProxyType(provider_map)
        self._models: Mapping[str, ModelSpec] = MappingProxyType(model_map)

    def get_model(self, model: str) -> ModelSpec | None:
        return self._models.get(model)

    def get_provider(self, provider_id: str) -> ProviderSpec | None:
        return self._providers.get(provider_id)

    def resolve(self, model: str) -> tuple[ModelSpec, ProviderSpec]:
        spec = self.get_model(model)
        if spec is None:
            raise ProviderNotFound(
                f"Model {model} not supported",
                details={"model": model},
            )
        return spec, self._providers[spec.provider]

    def list_models(self) -> list[ModelSpec]:
        return list(self._models.values())

    def list_providers(self) -> list[ProviderSpec]:
        return list(self._providers.values())


def build_default_registry(openrouter_base_url: str) -> ProviderRegistry:
    providers = [
        ProviderSpec(id="openai", display_name="OpenAI", transport=TRANSPORT_SDK, sdk_vendor="openai"),
        ProviderSpec(id="google", display_name="Google", transport=TRANSPORT_SDK, sdk_vendor="google"),
        ProviderSpec(
            id="anthropic",
            display_name="Anthropic",
            transport=TRANSPORT_SDK,
            sdk_vendor="claude",
        ),
        ProviderSpec(
            id="openrouter",
            display_name="OpenRouter",
            transport=TRANSPORT_HTTP,
            base_url=openrouter_base_url,
        ),
    ]

    gemini_thinking = _frozen({"thinking_config": {"include_thoughts": True}})
    claude_thinking = _frozen(
        {"thinking": {"type": "enabled", "budget_tokens": 4096}, "max_tokens": 16000}
    )

    models = [
        ModelSpec(model="gpt-4.1", provider="openai", has_thinking=True),
        ModelSpec(model="gpt-4o-mini", provider="openai", has_thinking=True),
        ModelSpec(model="gpt-4o", provider="openai", has_thinking=True),
        ModelSpec(
            model="claude-3.7-sonnet",
            provider="anthropic",
            upstream_model_id="claude-3-7-sonnet-latest",
            has_thinking=True,
            provider_options=claude_thinking,
        ),
        ModelSpec(model="anthropic/claude-4-sonnet", provider="openrouter", has_thinking=True),
        ModelSpec(
            model="gemini-2.5-flash-preview-05-20",
            provider="google",
            has_thinking=True,
            provider_options=gemini_thinking,
        ),
        ModelSpec(
            model="gemini-2.5-pro-preview-06-05",
            provider="google",
            has_thinking=True,
            provider_options=gemini_thinking,
        ),
        ModelSpec(model="deepseek/deepseek-r1-0528:free", provider="openrouter", has_thinking=True),
        ModelSpec(model="deepseek/deepseek-chat-v3-0324", provider="openrouter", has_thinking=True),
        ModelSpec(model="qwen/qwen3-8b", provider="openrouter", has_thinking=True),
        ModelSpec(
            model="gemini-2.0-flash",
            provider="google",
            has_file_upload=True,
            has_vision=True,
            has_pdf_manipulation=True,
            has_search=True,
        ),
    ]
    return ProviderRegistry(providers, models)


__all__ = [
    "ModelSpec",
    "ProviderRegistry",
    "ProviderSpec",
    "TRANSPORT_HTTP",
    "TRANSPORT_SDK",
    "build_default_registry",
]
