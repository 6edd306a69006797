"""Adapter that exposes OpenAI's chat completion API via :class:`LLMClient`."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..llm import LLMClient, LLMClientError, LLMErrorCategory, LLMMessage, LLMResponse
from ._common import coerce_options, extract_attr, require_str, usage_mapping


def _message_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    if isinstance(payload, Sequence):
        parts = [
            str(extract_attr(item, "text", ""))
            for item in payload
            if extract_attr(item, "type") == "text"
        ]
        if parts:
            return "".join(parts)
    raise ValueError("OpenAI response did not include textual content")


class OpenAIChatClient(LLMClient):
    """Concrete :class:`LLMClient` powered by the OpenAI Python SDK."""

    def __init__(
        self,
        *,
        model: str = "gpt-4o-mini",
        api_key: str | None = None,
        timeout: float | None = None,
        client: Any | None = None,
        default_options: Mapping[str, Any] | None = None,
        **client_options: Any,
    ) -> None:
        self._model = require_str(model, field_name="model")
        self._default_options = coerce_options(default_options)

        if client is None:
            from openai import OpenAI

            init_kwargs: dict[str, Any] = dict(client_options)
            if api_key is not None:
                init_kwargs["api_key"] = api_key
            if timeout is not None:
                init_kwargs["timeout"] = timeout
            client = OpenAI(**init_kwargs)
        elif client_options:
            raise TypeError(
                "client_options cannot be provided when supplying a client instance"
            )
        self._client = client

    @property
    def model(self) -> str:
        return self._model

    def complete(
        self,
        messages: Sequence[LLMMessage],
        *,
        temperature: float | None = None,
    ) -> LLMResponse:
        payload = [
            {"role": message.role, "content": message.content} for message in messages
        ]
        request_kwargs = dict(self._default_options)
        if temperature is not None:
            request_kwargs["temperature"] = temperature

        try:
            response = self._client.chat.completions.create(
                model=self._model, messages=payload, **request_kwargs
            )
        except Exception as exc:
            raise LLMClientError("OpenAI completion failed") from exc

        choices = extract_attr(response, "choices")
        if not choices:
            raise LLMClientError("OpenAI completion returned no choices")
        message_payload = extract_attr(choices[0], "message")
        if message_payload is None:
            raise LLMClientError("OpenAI completion missing message payload")

        try:
            content = _message_text(extract_attr(message_payload, "content"))
            message = LLMMessage(role="assistant", content=content)
        except (TypeError, ValueError) as exc:
            raise LLMClientError("OpenAI completion returned no text") from exc

        return LLMResponse(
            message=message,
            usage=usage_mapping(extract_attr(response, "usage")),
            metadata={
                "id": extract_attr(response, "id"),
                "model": extract_attr(response, "model"),
            },
        )


def register_error_rules(classifier: Any) -> None:
    """Teach ``classifier`` which OpenAI failures justify a model fallback."""

    import openai

    classifier.register(
        LLMErrorCategory.TRANSIENT,
        openai.APITimeoutError,
        openai.APIConnectionError,
        openai.InternalServerError,
    )
    classifier.register(LLMErrorCategory.RATE_LIMIT, openai.RateLimitError)


__all__ = ["OpenAIChatClient", "register_error_rules"]
