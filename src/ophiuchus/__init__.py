"""Core package for the Ophiuchus musical scavenger hunt."""

import logging

from .errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    InternalError,
    NotFoundError,
    QuestError,
    UnauthorizedError,
)
from .leaderboard import LeaderboardAggregator
from .llm import ContentGenerator, LLMClient, LLMClientError, LLMMessage, LLMResponse
from .llm_provider_registry import LLMProviderRegistry, parse_cli_options
from .models import (
    CompletedGame,
    GameSession,
    LeaderboardEntry,
    OphiuchusIdentity,
    Room,
    RoomClue,
    Song,
    UserProfile,
)
from .persistence import (
    DocumentStore,
    FileDocumentStore,
    InMemoryDocumentStore,
    StoreHandle,
)
from .progression import QuestService, RandomSongSelector, SongSelector

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str | int = "INFO") -> None:
    """Install a root handler for command-line and server runs."""

    logging.basicConfig(level=level, format=LOG_FORMAT, force=True)


__all__ = [
    "BadRequestError",
    "CompletedGame",
    "ConflictError",
    "ContentGenerator",
    "DocumentStore",
    "FileDocumentStore",
    "ForbiddenError",
    "GameSession",
    "InMemoryDocumentStore",
    "InternalError",
    "LLMClient",
    "LLMClientError",
    "LLMMessage",
    "LLMProviderRegistry",
    "LLMResponse",
    "LeaderboardAggregator",
    "LeaderboardEntry",
    "NotFoundError",
    "OphiuchusIdentity",
    "QuestError",
    "QuestService",
    "RandomSongSelector",
    "Room",
    "RoomClue",
    "Song",
    "SongSelector",
    "StoreHandle",
    "UnauthorizedError",
    "UserProfile",
    "configure_logging",
    "parse_cli_options",
]
