"""Shared plumbing for the room puzzle engines."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Sequence

from ..errors import BadRequestError, RoomCompletedError
from ..llm import ContentGenerator
from ..models import GameSession, Room, RoomClue, Song
from ..persistence import song_to_payload


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RoomResult:
    """What a room interaction returns to the player and what it wants stored.

    ``clue`` is ``None`` when the interaction changed nothing, for example when
    a completed room is re-opened.
    """

    payload: Dict[str, Any]
    clue: RoomClue | None = None


def points_for_attempt(attempt: int, table: Sequence[int]) -> int:
    """Return the points for a success on ``attempt`` (1-based)."""

    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    return table[min(attempt, len(table)) - 1]


def song_credit(song: Song) -> str:
    return f"Song: {song.name}\nArtist: {song.credit()}"


class RoomEngine:
    """Base class for the per-room puzzle engines."""

    room: Room

    def __init__(self, generator: ContentGenerator, *, clock: Clock | None = None) -> None:
        self._generator = generator
        self._clock = clock or utcnow

    def stored(self, session: GameSession) -> RoomClue:
        return session.clue_for(self.room)

    def ensure_open(self, session: GameSession) -> RoomClue:
        """Return the stored clue, refusing to touch a room that is frozen."""

        clue = self.stored(session)
        if clue.completed:
            raise RoomCompletedError(f"The {self.room.value} room is already completed")
        return clue

    def generate(self, prompt: str) -> str:
        return self._generator.generate(prompt)

    def new_clue(self, previous: RoomClue, **changes: Any) -> RoomClue:
        """Copy ``previous`` with ``changes`` applied and a fresh timestamp."""

        values = {
            "clue": previous.clue,
            "correct": previous.correct,
            "score": previous.score,
            "points": previous.points,
            "attempts": previous.attempts,
            "completed": previous.completed,
            "audio_url": previous.audio_url,
            "questions_asked": previous.questions_asked,
            "puzzle": dict(previous.puzzle),
        }
        puzzle_updates = changes.pop("puzzle", None)
        values.update(changes)
        if puzzle_updates:
            values["puzzle"].update(puzzle_updates)
        return RoomClue(updated_at=self._clock(), **values)


def require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise BadRequestError(f"'{field_name}' is required")
    return value


def revealed(song: Song) -> Dict[str, Any]:
    return song_to_payload(song)


__all__ = [
    "Clock",
    "RoomEngine",
    "RoomResult",
    "points_for_attempt",
    "require_text",
    "revealed",
    "song_credit",
    "utcnow",
]
