"""Content generation on top of pluggable large language model providers."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Sequence


logger = logging.getLogger(__name__)


def _validate_text(value: str, *, field_name: str) -> str:
    """Ensure text fields contain non-empty string values."""

    if not isinstance(value, str):
        raise TypeError(f"{field_name} must be a string, got {type(value)!r}")

    stripped = value.strip()
    if not stripped:
        raise ValueError(f"{field_name} must be a non-empty string")

    return stripped


@dataclass(frozen=True)
class LLMMessage:
    """Represents a single message exchanged with an LLM service."""

    role: str
    content: str

    def __post_init__(self) -> None:  # pragma: no cover - trivial setters
        role = _validate_text(self.role, field_name="role").lower()
        content = _validate_text(self.content, field_name="content")

        object.__setattr__(self, "role", role)
        object.__setattr__(self, "content", content)


@dataclass(frozen=True)
class LLMResponse:
    """Container describing the result returned by an LLM invocation."""

    message: LLMMessage
    usage: Mapping[str, int] = field(default_factory=dict)
    metadata: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        usage = {
            _validate_text(str(key), field_name="usage key"): value
            for key, value in (self.usage or {}).items()
            if isinstance(value, int) and not isinstance(value, bool)
        }
        metadata = {
            _validate_text(str(key), field_name="metadata key"): str(value)
            for key, value in (self.metadata or {}).items()
            if value is not None and str(value).strip()
        }
        object.__setattr__(self, "usage", MappingProxyType(usage))
        object.__setattr__(self, "metadata", MappingProxyType(metadata))

    @property
    def text(self) -> str:
        return self.message.content


class LLMClient(ABC):
    """Abstract interface encapsulating calls to an LLM provider."""

    @abstractmethod
    def complete(
        self, messages: Sequence[LLMMessage], *, temperature: float | None = None
    ) -> LLMResponse:
        """Generate a completion from a set of chat-style messages."""

    def complete_prompt(
        self, prompt: str, *, temperature: float | None = None
    ) -> LLMResponse:
        """Helper for providers that accept a single user prompt."""

        message = LLMMessage(role="user", content=prompt)
        return self.complete([message], temperature=temperature)


class LLMClientError(RuntimeError):
    """Raised when content generation fails for any reason."""


class LLMErrorCategory(str, Enum):
    """High-level categories used to classify LLM failures."""

    TRANSIENT = "transient"
    RATE_LIMIT = "rate_limit"
    FATAL = "fatal"

    def is_retryable(self) -> bool:
        """Return ``True`` when another model may succeed where this one failed."""

        return self in {self.TRANSIENT, self.RATE_LIMIT}


class LLMErrorClassifier:
    """Utility for mapping exceptions to :class:`LLMErrorCategory` values.

    Provider adapters wrap SDK exceptions in :class:`LLMClientError`, so the
    classifier also inspects the ``__cause__`` chain.
    """

    def __init__(
        self,
        *,
        default_category: LLMErrorCategory = LLMErrorCategory.FATAL,
        rules: Sequence[tuple[LLMErrorCategory, type[Exception]]] | None = None,
    ) -> None:
        self._default_category = default_category
        self._rules: list[tuple[type[Exception], LLMErrorCategory]] = []

        if rules is not None:
            for category, exc_type in rules:
                self.register(category, exc_type)

    def register(
        self, category: LLMErrorCategory, *exception_types: type[Exception]
    ) -> None:
        """Register one or more exception types for ``category``."""

        if not exception_types:
            raise ValueError("at least one exception type must be provided")

        for exc_type in exception_types:
            if not isinstance(exc_type, type) or not issubclass(exc_type, Exception):
                raise TypeError(
                    "exception_types must be Exception subclasses, " f"got {exc_type!r}"
                )
            self._rules.append((exc_type, category))

    def classify(self, error: BaseException) -> LLMErrorCategory:
        """Return the category associated with ``error`` or its causes."""

        current: BaseException | None = error
        seen: set[int] = set()
        while current is not None and id(current) not in seen:
            seen.add(id(current))
            for exc_type, category in self._rules:
                if isinstance(current, exc_type):
                    return category
            current = current.__cause__
        return self._default_category


class FallbackLLMClient(LLMClient):
    """Try each client in order, moving on only for retryable failures.

    Typically used to fall back from a preferred model to a lighter one when
    the first is overloaded. A fatal failure propagates immediately.
    """

    def __init__(
        self,
        clients: Sequence[LLMClient],
        *,
        classifier: LLMErrorClassifier | None = None,
    ) -> None:
        if not clients:
            raise ValueError("at least one client must be provided")
        self._clients = list(clients)
        self._classifier = classifier or default_error_classifier()

    def complete(
        self, messages: Sequence[LLMMessage], *, temperature: float | None = None
    ) -> LLMResponse:
        last_error: Exception | None = None
        for index, client in enumerate(self._clients):
            try:
                return client.complete(messages, temperature=temperature)
            except Exception as error:
                category = self._classifier.classify(error)
                if not category.is_retryable():
                    raise
                last_error = error
                if index + 1 < len(self._clients):
                    logger.warning(
                        "LLM client %d failed (%s); falling back to the next model",
                        index,
                        category.value,
                    )
        assert last_error is not None
        raise last_error


def default_error_classifier() -> LLMErrorClassifier:
    """Return a classifier treating network timeouts as transient."""

    classifier = LLMErrorClassifier()
    classifier.register(LLMErrorCategory.TRANSIENT, TimeoutError, ConnectionError)
    return classifier


class ContentGenerator:
    """Facade turning a prompt into trimmed, non-empty text.

    Every room engine depends on this single ``generate`` operation. Failures
    propagate as :class:`LLMClientError`; nothing is retried here.
    """

    def __init__(self, client: LLMClient, *, temperature: float | None = None) -> None:
        self._client = client
        self._temperature = temperature

    @property
    def client(self) -> LLMClient:
        return self._client

    def generate(self, prompt: str) -> str:
        try:
            response = self._client.complete_prompt(
                prompt, temperature=self._temperature
            )
        except LLMClientError:
            raise
        except (TypeError, ValueError) as exc:
            raise LLMClientError("Content generation returned no usable text") from exc
        text = response.text.strip()
        if not text:
            raise LLMClientError("Content generation returned an empty response")
        return text


__all__ = [
    "ContentGenerator",
    "FallbackLLMClient",
    "LLMClient",
    "LLMClientError",
    "LLMErrorCategory",
    "LLMErrorClassifier",
    "LLMMessage",
    "LLMResponse",
    "default_error_classifier",
]
