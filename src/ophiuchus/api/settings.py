"""Configuration helpers for deploying the quest API."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping


STORE_KINDS = ("memory", "file")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def _normalise_path(value: str | None) -> Path | None:
    if value is None:
        return None

    trimmed = value.strip()
    if not trimmed:
        return None

    return Path(trimmed).expanduser()


def _normalise_string(value: str | None, *, default: str) -> str:
    if value is None:
        return default

    trimmed = value.strip()
    return trimmed or default


def _normalise_list(value: str | None) -> tuple[str, ...]:
    if value is None:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


def _parse_positive_number(
    value: str | None, *, name: str, default: float | None, integer: bool = False
) -> float | int | None:
    if value is None or not value.strip():
        return default
    kind = "integer" if integer else "number"
    try:
        parsed: float | int = int(value.strip()) if integer else float(value.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be a positive {kind}.") from exc
    if parsed <= 0:
        raise ValueError(f"{name} must be greater than zero.")
    return parsed


@dataclass(frozen=True)
class OphiuchusSettings:
    """Deployment settings for the quest service.

    Values are read from ``OPHIUCHUS_*`` environment variables. Empty strings
    are treated as if the variable was unset; paths expand ``~`` prefixes.
    """

    store: str = "memory"
    data_dir: Path | None = None
    audio_dir: Path | None = None
    llm_provider: str = "gemini"
    llm_models: tuple[str, ...] = field(default_factory=tuple)
    llm_timeout: float | None = 30.0
    speech_enabled: bool = False
    log_level: str = "INFO"
    api_host: str = "127.0.0.1"
    api_port: int = 8000

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "OphiuchusSettings":
        """Return settings populated from ``environ`` (default :data:`os.environ`)."""

        source = environ if environ is not None else os.environ

        store = _normalise_string(source.get("OPHIUCHUS_STORE"), default="memory").lower()
        if store not in STORE_KINDS:
            raise ValueError(
                f"OPHIUCHUS_STORE must be one of: {', '.join(STORE_KINDS)}."
            )
        data_dir = _normalise_path(source.get("OPHIUCHUS_DATA_DIR"))
        if store == "file" and data_dir is None:
            raise ValueError("OPHIUCHUS_DATA_DIR is required when OPHIUCHUS_STORE=file.")
        audio_dir = _normalise_path(source.get("OPHIUCHUS_AUDIO_DIR"))
        if audio_dir is None and data_dir is not None:
            audio_dir = data_dir / "audio"

        log_level = _normalise_string(source.get("OPHIUCHUS_LOG_LEVEL"), default="INFO").upper()
        if log_level not in LOG_LEVELS:
            raise ValueError(f"OPHIUCHUS_LOG_LEVEL must be one of: {', '.join(LOG_LEVELS)}.")

        speech_raw = _normalise_string(source.get("OPHIUCHUS_SPEECH"), default="off").lower()
        if speech_raw not in ("on", "off", "true", "false", "1", "0"):
            raise ValueError("OPHIUCHUS_SPEECH must be 'on' or 'off'.")

        return cls(
            store=store,
            data_dir=data_dir,
            audio_dir=audio_dir,
            llm_provider=_normalise_string(
                source.get("OPHIUCHUS_LLM_PROVIDER"), default="gemini"
            ),
            llm_models=_normalise_list(source.get("OPHIUCHUS_LLM_MODELS")),
            llm_timeout=_parse_positive_number(
                source.get("OPHIUCHUS_LLM_TIMEOUT"), name="OPHIUCHUS_LLM_TIMEOUT", default=30.0
            ),
            speech_enabled=speech_raw in ("on", "true", "1"),
            log_level=log_level,
            api_host=_normalise_string(source.get("OPHIUCHUS_API_HOST"), default="127.0.0.1"),
            api_port=int(
                _parse_positive_number(
                    source.get("OPHIUCHUS_API_PORT"),
                    name="OPHIUCHUS_API_PORT",
                    default=8000,
                    integer=True,
                )
            ),
        )


__all__ = ["OphiuchusSettings"]
