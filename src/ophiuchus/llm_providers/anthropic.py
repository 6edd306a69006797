"""Adapter mapping Anthropic's Messages API onto :class:`LLMClient`."""

from __future__ import annotations

from typing import Any, Mapping, Sequence

from ..llm import LLMClient, LLMClientError, LLMErrorCategory, LLMMessage, LLMResponse
from ._common import coerce_options, extract_attr, require_str, usage_mapping


def _text_blocks(blocks: Any) -> str:
    if isinstance(blocks, str):
        return blocks
    if isinstance(blocks, Sequence):
        parts = [
            str(extract_attr(block, "text", ""))
            for block in blocks
            if extract_attr(block, "type") == "text"
        ]
        if parts:
            return "".join(parts)
    raise ValueError("Anthropic response did not contain textual content")


class AnthropicMessagesClient(LLMClient):
    """Concrete :class:`LLMClient` built on top of the official Anthropic SDK."""

    def __init__(
        self,
        *,
        model: str = "claude-3-5-haiku-latest",
        api_key: str | None = None,
        timeout: float | None = None,
        max_tokens: int = 1024,
        client: Any | None = None,
        default_options: Mapping[str, Any] | None = None,
        **client_options: Any,
    ) -> None:
        self._model = require_str(model, field_name="model")
        self._default_options = coerce_options(default_options)
        self._default_options.setdefault("max_tokens", max_tokens)

        if client is None:
            from anthropic import Anthropic

            init_kwargs: dict[str, Any] = dict(client_options)
            if api_key is not None:
                init_kwargs["api_key"] = api_key
            if timeout is not None:
                init_kwargs["timeout"] = timeout
            client = Anthropic(**init_kwargs)
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
        system_parts = [m.content for m in messages if m.role == "system"]
        payload = [
            {"role": message.role, "content": message.content}
            for message in messages
            if message.role != "system"
        ]
        request_kwargs = dict(self._default_options)
        if system_parts:
            request_kwargs["system"] = "\n\n".join(system_parts)
        if temperature is not None:
            request_kwargs["temperature"] = temperature

        try:
            response = self._client.messages.create(
                model=self._model, messages=payload, **request_kwargs
            )
        except Exception as exc:
            raise LLMClientError("Anthropic completion failed") from exc

        try:
            content = _text_blocks(extract_attr(response, "content", ""))
            message = LLMMessage(role="assistant", content=content)
        except (TypeError, ValueError) as exc:
            raise LLMClientError("Anthropic completion returned no text") from exc

        return LLMResponse(
            message=message,
            usage=usage_mapping(extract_attr(response, "usage")),
            metadata={"id": extract_attr(response, "id")},
        )


def register_error_rules(classifier: Any) -> None:
    """Teach ``classifier`` which Anthropic failures justify a model fallback."""

    import anthropic

    classifier.register(
        LLMErrorCategory.TRANSIENT,
        anthropic.APITimeoutError,
        anthropic.APIConnectionError,
        anthropic.InternalServerError,
    )
    classifier.register(LLMErrorCategory.RATE_LIMIT, anthropic.RateLimitError)


__all__ = ["AnthropicMessagesClient", "register_error_rules"]
