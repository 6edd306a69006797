"""Adapter exposing Google's Gemini models through :class:`LLMClient`."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..llm import LLMClient, LLMClientError, LLMErrorCategory, LLMMessage, LLMResponse
from ._common import coerce_options, extract_attr, require_str, usage_mapping


class GeminiClient(LLMClient):
    """Concrete :class:`LLMClient` built on the ``google-genai`` SDK."""

    def __init__(
        self,
        *,
        model: str = "gemini-2.0-flash",
        api_key: str | None = None,
        timeout: float | None = None,
        client: Any | None = None,
        default_options: Mapping[str, Any] | None = None,
    ) -> None:
        self._model = require_str(model, field_name="model")
        self._default_options = coerce_options(default_options)

        if client is None:
            from google import genai
            from google.genai import types

            init_kwargs: dict[str, Any] = {}
            if api_key is not None:
                init_kwargs["api_key"] = api_key
            if timeout is not None:
                # The SDK expects milliseconds.
                init_kwargs["http_options"] = types.HttpOptions(
                    timeout=int(timeout * 1000)
                )
            client = genai.Client(**init_kwargs)
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
        system_parts = [m.content for m in messages if m.role == "system"]
        contents = [
            {
                "role": "model" if message.role == "assistant" else "user",
                "parts": [{"text": message.content}],
            }
            for message in messages
            if message.role != "system"
        ]
        config: dict[str, Any] = dict(self._default_options)
        if system_parts:
            config["system_instruction"] = "\n\n".join(system_parts)
        if temperature is not None:
            config["temperature"] = temperature

        request_kwargs: dict[str, Any] = {"model": self._model, "contents": contents}
        if config:
            request_kwargs["config"] = config

        try:
            response = self._client.models.generate_content(**request_kwargs)
        except Exception as exc:
            raise LLMClientError(f"Gemini completion failed ({self._model})") from exc

        try:
            message = LLMMessage(
                role="assistant", content=extract_attr(response, "text") or ""
            )
        except (TypeError, ValueError) as exc:
            raise LLMClientError("Gemini completion returned no text") from exc

        return LLMResponse(
            message=message,
            usage=usage_mapping(extract_attr(response, "usage_metadata")),
            metadata={"model": self._model},
        )


def register_error_rules(classifier: Any) -> None:
    """Server-side Gemini failures (overload, 5xx) justify a model fallback."""

    from google.genai import errors

    classifier.register(LLMErrorCategory.TRANSIENT, errors.ServerError)


__all__ = ["GeminiClient", "register_error_rules"]
