import pytest

from chatrelay.errors import ProviderNotFound
from chatrelay.provider.registry import (
    TRANSPORT_HTTP,
    TRANSPORT_SDK,
    ModelSpec,
    ProviderRegistry,
    ProviderSpec,
    build_default_registry,
)


def test_default_catalog_routes_models_to_providers():
    registry = build_default_registry("https://openrouter.example/api/v1/")

    spec, provider = registry.resolve("deepseek/deepseek-r1-0528:free")
    assert provider.transport == TRANSPORT_HTTP
    assert provider.chat_completions_url == "https://openrouter.example/api/v1/chat/completions"

    spec, provider = registry.resolve("claude-3.7-sonnet")
    assert provider.id == "anthropic"
    assert provider.transport == TRANSPORT_SDK
    assert spec.upstream_id == "claude-3-7-sonnet-latest"
    assert spec.provider_options["thinking"]["type"] == "enabled"

    spec, _ = registry.resolve("gpt-4o")
    assert spec.upstream_id == "gpt-4o"


def test_unknown_model_raises_provider_not_found():
    registry = build_default_registry("https://openrouter.ai/api/v1")
    with pytest.raises(ProviderNotFound) as excinfo:
        registry.resolve("gpt-17")
    assert excinfo.value.status_code == 400
    assert excinfo.value.message == "Model gpt-17 not supported"


def test_registry_rejects_unknown_provider_and_duplicates():
    provider = ProviderSpec(id="p", display_name="P", transport=TRANSPORT_HTTP, base_url="http://x")
    with pytest.raises(ValueError):
        ProviderRegistry([provider], [ModelSpec(model="m", provider="other")])
    with pytest.raises(ValueError):
        ProviderRegistry(
            [provider],
            [ModelSpec(model="m", provider="p"), ModelSpec(model="m", provider="p")],
        )


def test_catalog_is_read_only():
    registry = build_default_registry("https://openrouter.ai/api/v1")
    spec = registry.get_model("gemini-2.0-flash")
    assert spec.has_vision and spec.has_search and not spec.has_thinking
    with pytest.raises(TypeError):
        spec.provider_options["extra"] = 1  # type: ignore[index]
    with pytest.raises(AttributeError):
        spec.model = "other"  # type: ignore[misc]
