"""Registry resolving content-generation providers by name."""

from __future__ import annotations

import importlib
import json
from typing import Any, Callable, Dict, Mapping, Sequence

from .llm import (
    ContentGenerator,
    FallbackLLMClient,
    LLMClient,
    LLMErrorClassifier,
    default_error_classifier,
)


ProviderFactory = Callable[..., LLMClient]


class LLMProviderRegistry:
    """Maps provider names (or ``module:factory`` paths) to client factories."""

    def __init__(self) -> None:
        self._providers: Dict[str, ProviderFactory] = {}
        self._classifier_hooks: list[Callable[[LLMErrorClassifier], None]] = []

    def register(
        self,
        name: str,
        factory: ProviderFactory,
        *,
        error_rules: Callable[[LLMErrorClassifier], None] | None = None,
    ) -> None:
        """Register ``factory`` under the case-insensitive ``name``.

        ``error_rules`` lets a provider teach the shared classifier which of
        its SDK exceptions are worth falling back on.
        """

        key = _normalise_name(name)
        if key in self._providers:
            raise ValueError(f"Provider '{name}' is already registered")
        if not callable(factory):
            raise TypeError("factory must be callable")
        self._providers[key] = factory
        if error_rules is not None:
            self._classifier_hooks.append(error_rules)

    def available_providers(self) -> Sequence[str]:
        return sorted(self._providers)

    def create(self, identifier: str, **options: Any) -> LLMClient:
        """Instantiate the provider identified by ``identifier``."""

        factory = self._resolve_factory(identifier)
        client = factory(**options)
        if not isinstance(client, LLMClient):
            raise TypeError("Provider factory did not return an LLMClient instance")
        return client

    def create_from_config(self, config: Mapping[str, Any] | str) -> LLMClient:
        """Instantiate a provider from ``{"provider": ..., "options": {...}}``."""

        if isinstance(config, str):
            return self.create(_validate_identifier(config))
        if not isinstance(config, Mapping):
            raise TypeError("config must be a mapping or identifier string")
        provider = config.get("provider")
        if not isinstance(provider, str):
            raise ValueError("config must name a 'provider' string")
        options = config.get("options", {})
        if not isinstance(options, Mapping) or not all(
            isinstance(key, str) for key in options
        ):
            raise TypeError("config 'options' must be a mapping of keyword arguments")
        return self.create(provider, **dict(options))

    def create_from_cli(
        self, provider: str, option_strings: Sequence[str] | None = None
    ) -> LLMClient:
        """Instantiate a provider using CLI style ``key=value`` option strings."""

        options = parse_cli_options(option_strings or [])
        return self.create(_validate_identifier(provider), **options)

    def error_classifier(self) -> LLMErrorClassifier:
        """Return a classifier aware of every registered provider's errors."""

        classifier = default_error_classifier()
        for hook in self._classifier_hooks:
            hook(classifier)
        return classifier

    def create_generator(
        self,
        provider: str,
        *,
        models: Sequence[str] = (),
        options: Mapping[str, Any] | None = None,
    ) -> ContentGenerator:
        """Build a :class:`ContentGenerator` with model failover.

        One client is created per entry in ``models`` (in order); with no
        models the provider's own default is used.
        """

        base_options = dict(options or {})
        if not models:
            client: LLMClient = self.create(provider, **base_options)
        else:
            clients = [
                self.create(provider, **{**base_options, "model": model})
                for model in models
            ]
            client = (
                clients[0]
                if len(clients) == 1
                else FallbackLLMClient(clients, classifier=self.error_classifier())
            )
        return ContentGenerator(client)

    def _resolve_factory(self, identifier: str) -> ProviderFactory:
        name = _validate_identifier(identifier)
        provider = self._providers.get(name.lower())
        if provider is not None:
            return provider
        if ":" not in name and "." not in name:
            raise KeyError(f"No provider registered under '{identifier}'")
        return _import_factory(name)


def _import_factory(identifier: str) -> ProviderFactory:
    if ":" in identifier:
        module_name, _, attr_name = identifier.partition(":")
    else:
        module_name, _, attr_name = identifier.rpartition(".")
    if not module_name or not attr_name:
        raise ValueError("Dynamic provider identifiers must include a module and attribute")
    try:
        module = importlib.import_module(module_name)
    except ModuleNotFoundError as exc:
        raise LookupError(f"Could not import provider module '{module_name}'") from exc
    factory = getattr(module, attr_name, None)
    if factory is None:
        raise LookupError(f"Factory '{attr_name}' not found in module '{module_name}'")
    if not callable(factory):
        raise TypeError(f"Imported attribute '{attr_name}' is not callable")
    return factory


def parse_cli_options(option_strings: Sequence[str]) -> Dict[str, Any]:
    """Parse CLI-style ``key=value`` pairs, decoding JSON values when possible."""

    options: Dict[str, Any] = {}
    for entry in option_strings:
        if not isinstance(entry, str):
            raise TypeError("CLI option entries must be strings")
        key, sep, raw_value = entry.partition("=")
        key = key.strip()
        if not sep:
            raise ValueError(f"CLI option '{entry}' must be in 'key=value' format")
        if not key:
            raise ValueError("CLI option keys must be non-empty")
        if key in options:
            raise ValueError(f"CLI option '{key}' provided multiple times")
        value = raw_value.strip()
        try:
            options[key] = json.loads(value) if value else ""
        except json.JSONDecodeError:
            options[key] = value
    return options


def _normalise_name(name: str) -> str:
    return _validate_identifier(name).lower()


def _validate_identifier(identifier: str) -> str:
    if not isinstance(identifier, str):
        raise TypeError("provider identifier must be a string")
    stripped = identifier.strip()
    if not stripped:
        raise ValueError("provider identifier must be non-empty")
    return stripped


__all__ = ["LLMProviderRegistry", "ProviderFactory", "parse_cli_options"]
