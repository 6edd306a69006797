"""Tests for the LLM provider registry utilities."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Sequence

import pytest

from ophiuchus.llm import (
    ContentGenerator,
    FallbackLLMClient,
    LLMClient,
    LLMErrorCategory,
    LLMMessage,
    LLMResponse,
)
from ophiuchus.llm_provider_registry import LLMProviderRegistry, parse_cli_options
from ophiuchus.llm_providers import default_registry


class DummyClient(LLMClient):
    def __init__(self, **config: Any) -> None:
        self.config = config

    def complete(
        self, messages: Sequence[LLMMessage], *, temperature: float | None = None
    ) -> LLMResponse:
        return LLMResponse(LLMMessage(role="assistant", content="dummy"))


class OverloadedError(Exception):
    pass


@pytest.fixture()
def registry() -> LLMProviderRegistry:
    return LLMProviderRegistry()


def _registered_factory(**options: Any) -> DummyClient:
    return DummyClient(**options)


def test_register_and_create_provider(registry: LLMProviderRegistry) -> None:
    registry.register("dummy", _registered_factory)
    client = registry.create("dummy", api_key="secret")
    assert isinstance(client, DummyClient)
    assert client.config == {"api_key": "secret"}


def test_register_duplicate_name(registry: LLMProviderRegistry) -> None:
    registry.register("dummy", _registered_factory)
    with pytest.raises(ValueError):
        registry.register("DUMMY", _registered_factory)


def test_create_unknown_provider(registry: LLMProviderRegistry) -> None:
    with pytest.raises(KeyError):
        registry.create("unknown")


def test_create_from_config_mapping(registry: LLMProviderRegistry) -> None:
    registry.register("dummy", _registered_factory)
    client = registry.create_from_config(
        {"provider": "dummy", "options": {"timeout": 12}}
    )
    assert isinstance(client, DummyClient)
    assert client.config == {"timeout": 12}


def test_create_from_cli_with_options(registry: LLMProviderRegistry) -> None:
    registry.register("dummy", _registered_factory)
    client = registry.create_from_cli("dummy", ["timeout=2.5", "enabled=true"])
    assert isinstance(client, DummyClient)
    assert client.config == {"timeout": 2.5, "enabled": True}


def test_parse_cli_options_rejects_invalid_format() -> None:
    with pytest.raises(ValueError):
        parse_cli_options(["missing_separator"])


def test_parse_cli_options_rejects_duplicate_keys() -> None:
    with pytest.raises(ValueError):
        parse_cli_options(["key=1", "key=2"])


def test_cli_parser_keeps_plain_strings() -> None:
    assert parse_cli_options(["model=gemini-1.5-flash", "note="]) == {
        "model": "gemini-1.5-flash",
        "note": "",
    }


def test_dynamic_import_factory(tmp_path: Path, registry: LLMProviderRegistry) -> None:
    module_path = tmp_path / "external_provider.py"
    module_path.write_text(
        """
from ophiuchus.llm import LLMClient, LLMMessage, LLMResponse


class ImportedClient(LLMClient):
    def __init__(self, label: str) -> None:
        self.label = label

    def complete(self, messages, *, temperature=None):
        return LLMResponse(LLMMessage(role="assistant", content=self.label))


def build_client(**options):
    return ImportedClient(options["label"])
"""
    )

    sys.path.insert(0, str(tmp_path))
    try:
        client = registry.create("external_provider:build_client", label="imported")
        assert client.label == "imported"
    finally:
        sys.path.remove(str(tmp_path))
        sys.modules.pop("external_provider", None)


def test_dynamic_import_missing_module(registry: LLMProviderRegistry) -> None:
    with pytest.raises(LookupError) as excinfo:
        registry.create("nonexistent.module:build")
    assert "nonexistent.module" in str(excinfo.value)


def test_factory_must_return_llm_client(registry: LLMProviderRegistry) -> None:
    def build_non_client(**_: Any) -> object:
        return object()

    registry.register("invalid", build_non_client)  # type: ignore[arg-type]
    with pytest.raises(TypeError):
        registry.create("invalid")


def test_create_generator_without_models_uses_provider_default(
    registry: LLMProviderRegistry,
) -> None:
    registry.register("dummy", _registered_factory)

    generator = registry.create_generator("dummy", options={"timeout": 5})

    assert isinstance(generator, ContentGenerator)
    assert isinstance(generator.client, DummyClient)
    assert generator.client.config == {"timeout": 5}
    assert generator.generate("hello") == "dummy"


def test_create_generator_builds_failover_chain(registry: LLMProviderRegistry) -> None:
    registry.register("dummy", _registered_factory)

    generator = registry.create_generator(
        "dummy", models=["gemini-2.0-flash", "gemini-1.5-flash"]
    )

    assert isinstance(generator.client, FallbackLLMClient)


def test_single_model_skips_failover(registry: LLMProviderRegistry) -> None:
    registry.register("dummy", _registered_factory)

    generator = registry.create_generator("dummy", models=["only-model"])

    assert isinstance(generator.client, DummyClient)
    assert generator.client.config == {"model": "only-model"}


def test_error_rules_extend_classifier(registry: LLMProviderRegistry) -> None:
    registry.register(
        "dummy",
        _registered_factory,
        error_rules=lambda classifier: classifier.register(
            LLMErrorCategory.TRANSIENT, OverloadedError
        ),
    )

    classifier = registry.error_classifier()

    assert classifier.classify(OverloadedError()) is LLMErrorCategory.TRANSIENT
    assert classifier.classify(TimeoutError()) is LLMErrorCategory.TRANSIENT
    assert classifier.classify(RuntimeError()) is LLMErrorCategory.FATAL


def test_default_registry_exposes_builtin_providers() -> None:
    assert default_registry().available_providers() == ["anthropic", "gemini", "openai"]
