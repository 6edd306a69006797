"""Plain data structures describing quests, rooms, and archived results."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Mapping


class Room(str, Enum):
    """Identifiers of the quest rooms, in their narrative order."""

    NEBULA = "nebula"
    CRADLE = "cradle"
    COMET = "comet"
    AURORA = "aurora"
    NOVA = "nova"

    @classmethod
    def parse(cls, value: str) -> "Room":
        """Return the room named ``value`` (case-sensitive)."""

        for room in cls:
            if room.value == value:
                return room
        raise ValueError(f"Unknown room '{value}'")


ALL_ROOMS: tuple[Room, ...] = tuple(Room)

# Nova is the terminal room and cannot be skipped.
SKIPPABLE_ROOMS: tuple[Room, ...] = (
    Room.NEBULA,
    Room.CRADLE,
    Room.COMET,
    Room.AURORA,
)


@dataclass(frozen=True)
class Song:
    """A track embedded in a quest. Identity is the catalogue ``id``."""

    id: str
    name: str
    artists: tuple[str, ...] = ()
    album: str = ""
    image_url: str = ""
    spotify_url: str | None = None

    @property
    def primary_artist(self) -> str:
        return self.artists[0] if self.artists else ""

    def credit(self) -> str:
        """Return the comma-joined artist credit used in prompts."""

        return ", ".join(self.artists)

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "artists": list(self.artists)}


@dataclass
class RoomClue:
    """Outcome record for one room of one session."""

    clue: str | None = None
    correct: bool | None = None
    score: float | None = None
    points: int = 0
    attempts: int = 0
    completed: bool = False
    audio_url: str | None = None
    questions_asked: int | None = None
    puzzle: Dict[str, Any] = field(default_factory=dict)
    updated_at: datetime | None = None


@dataclass(frozen=True)
class OphiuchusIdentity:
    """The narrative reveal unlocked when the cosmic song is guessed."""

    title: str
    description: str
    image_url: str = ""


@dataclass
class GameSession:
    """Mutable aggregate owned by exactly one user."""

    id: str
    user_id: str
    spotify_user_id: str
    cosmic_song: Song
    intermediary_songs: List[Song]
    initial_clue: str
    rooms_completed: List[Room] = field(default_factory=list)
    room_clues: Dict[Room, RoomClue] = field(default_factory=dict)
    final_guesses: int = 0
    completed: bool = False
    ophiuchus_identity: OphiuchusIdentity | None = None
    created_at: datetime | None = None
    version: int = 0

    def clue_for(self, room: Room) -> RoomClue:
        """Return the stored clue for ``room``, or an empty placeholder."""

        return self.room_clues.get(room) or RoomClue()

    def is_room_completed(self, room: Room) -> bool:
        clue = self.room_clues.get(room)
        return bool(clue is not None and clue.completed)

    @property
    def total_points(self) -> int:
        """Cosmic points, derived by summation over the room outcomes."""

        return sum(clue.points for clue in self.room_clues.values())

    def room_points(self) -> Dict[str, int]:
        return {
            room.value: (self.room_clues[room].points if room in self.room_clues else 0)
            for room in ALL_ROOMS
        }


@dataclass(frozen=True)
class CompletedGame:
    """Snapshot of a finished session archived into a user profile."""

    session_id: str
    cosmic_song: Mapping[str, Any]
    total_points: int
    room_points: Mapping[str, int]
    final_guess_attempts: int
    ophiuchus_identity: OphiuchusIdentity
    completed_at: datetime


@dataclass
class UserProfile:
    """Durable per-user record of every archived quest."""

    user_id: str
    spotify_user_id: str
    username: str
    total_games_played: int = 0
    total_points: int = 0
    completed_games: List[CompletedGame] = field(default_factory=list)
    last_played_at: datetime | None = None

    def has_archived(self, session_id: str) -> bool:
        return any(game.session_id == session_id for game in self.completed_games)


@dataclass
class LeaderboardEntry:
    """Ranking rollup kept alongside the profile."""

    user_id: str
    username: str
    spotify_user_id: str
    total_points: int = 0
    total_games_completed: int = 0
    highest_single_game_points: int = 0
    last_played_at: datetime | None = None


__all__ = [
    "ALL_ROOMS",
    "CompletedGame",
    "GameSession",
    "LeaderboardEntry",
    "OphiuchusIdentity",
    "Room",
    "RoomClue",
    "SKIPPABLE_ROOMS",
    "Song",
    "UserProfile",
]
