"""Document persistence for quests, profiles, and leaderboard entries."""

from __future__ import annotations

import copy
import json
import logging
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Iterator, List, Mapping, Sequence, Union

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


logger = logging.getLogger(__name__)

SESSIONS = "game_sessions"
PROFILES = "user_profiles"
LEADERBOARD = "leaderboard"

VERSION_FIELD = "_version"

Document = Dict[str, Any]
Filter = Mapping[str, Any]
SortSpec = Sequence[tuple[str, int]]

ASCENDING = 1
DESCENDING = -1


class VersionConflictError(RuntimeError):
    """Raised when a document changed since the caller last read it."""


class DuplicateKeyError(ValueError):
    """Raised when inserting a document whose ``_id`` is already stored."""


class DocumentStore(ABC):
    """Minimal document database: query-by-field, pagination, versioned writes."""

    @abstractmethod
    def insert(self, collection: str, document: Mapping[str, Any]) -> Document:
        """Store a new document (which must carry ``_id``) and return it."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Document | None:
        """Return a copy of the document stored under ``doc_id``."""

    @abstractmethod
    def find(
        self,
        collection: str,
        filter: Filter | None = None,
        *,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> List[Document]:
        """Return copies of the documents matching ``filter``."""

    @abstractmethod
    def count(self, collection: str, filter: Filter | None = None) -> int:
        """Return how many documents match ``filter``."""

    @abstractmethod
    def replace(
        self,
        collection: str,
        doc_id: str,
        document: Mapping[str, Any],
        *,
        expected_version: int | None = None,
        upsert: bool = False,
    ) -> Document:
        """Overwrite a document atomically.

        Raises:
            VersionConflictError: If ``expected_version`` no longer matches.
            KeyError: If the document is absent and ``upsert`` is false.
        """

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        """Remove a document, returning ``True`` when something was deleted."""

    @abstractmethod
    def transaction(self) -> Any:
        """Context manager making the enclosed writes all-or-nothing."""

    def find_one(self, collection: str, filter: Filter | None = None) -> Document | None:
        matches = self.find(collection, filter, limit=1)
        return matches[0] if matches else None

    def close(self) -> None:
        """Release any resources held by the store."""


class InMemoryDocumentStore(DocumentStore):
    """Keep documents in local process memory."""

    def __init__(self) -> None:
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._lock = threading.RLock()
        self._depth = 0
        self._dirty: set[str] = set()

    def insert(self, collection: str, document: Mapping[str, Any]) -> Document:
        doc_id = _validate_id(document.get("_id"))
        with self._lock:
            documents = self._collection(collection)
            if doc_id in documents:
                raise DuplicateKeyError(f"Document '{doc_id}' already exists in {collection}")
            stored = copy.deepcopy(dict(document))
            stored["_id"] = doc_id
            stored[VERSION_FIELD] = 1
            documents[doc_id] = stored
            self._changed(collection)
            return copy.deepcopy(stored)

    def get(self, collection: str, doc_id: str) -> Document | None:
        with self._lock:
            stored = self._collection(collection).get(_validate_id(doc_id))
            return copy.deepcopy(stored) if stored is not None else None

    def find(
        self,
        collection: str,
        filter: Filter | None = None,
        *,
        sort: SortSpec | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> List[Document]:
        if skip < 0:
            raise ValueError("skip must be non-negative")
        if limit is not None and limit < 0:
            raise ValueError("limit must be non-negative")
        with self._lock:
            matches = [
                document
                for document in self._collection(collection).values()
                if matches_filter(document, filter or {})
            ]
            if sort:
                matches = sort_documents(matches, sort)
            end = None if limit is None else skip + limit
            return [copy.deepcopy(document) for document in matches[skip:end]]

    def count(self, collection: str, filter: Filter | None = None) -> int:
        with self._lock:
            return sum(
                1
                for document in self._collection(collection).values()
                if matches_filter(document, filter or {})
            )

    def replace(
        self,
        collection: str,
        doc_id: str,
        document: Mapping[str, Any],
        *,
        expected_version: int | None = None,
        upsert: bool = False,
    ) -> Document:
        key = _validate_id(doc_id)
        with self._lock:
            documents = self._collection(collection)
            current = documents.get(key)
            if current is None:
                if expected_version is not None:
                    raise VersionConflictError(f"Document '{key}' no longer exists")
                if not upsert:
                    raise KeyError(f"Document '{key}' does not exist in {collection}")
                version = 0
            else:
                version = int(current.get(VERSION_FIELD, 0))
                if expected_version is not None and version != expected_version:
                    raise VersionConflictError(
                        f"Document '{key}' is at version {version}, expected {expected_version}"
                    )
            stored = copy.deepcopy(dict(document))
            stored["_id"] = key
            stored[VERSION_FIELD] = version + 1
            documents[key] = stored
            self._changed(collection)
            return copy.deepcopy(stored)

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            removed = self._collection(collection).pop(_validate_id(doc_id), None)
            if removed is not None:
                self._changed(collection)
            return removed is not None

    @contextmanager
    def transaction(self) -> Iterator["InMemoryDocumentStore"]:
        """Hold the store lock and roll every collection back on failure."""

        with self._lock:
            snapshot = copy.deepcopy(self._collections) if self._depth == 0 else None
            self._depth += 1
            try:
                yield self
            except BaseException:
                self._depth -= 1
                if snapshot is not None:
                    self._collections = snapshot
                    self._dirty.clear()
                raise
            self._depth -= 1
            if self._depth == 0:
                dirty, self._dirty = self._dirty, set()
                for collection in sorted(dirty):
                    self._flush(collection)

    def _collection(self, name: str) -> Dict[str, Document]:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("collection name must be a non-empty string")
        return self._collections.setdefault(name, {})

    def _changed(self, collection: str) -> None:
        if self._depth:
            self._dirty.add(collection)
        else:
            self._flush(collection)

    def _flush(self, collection: str) -> None:
        """Hook for durable subclasses; memory needs no flushing."""


class FileDocumentStore(InMemoryDocumentStore):
    """Persist each collection as a JSON file on disk."""

    def __init__(self, storage_dir: Path) -> None:
        super().__init__()
        self.storage_dir = Path(storage_dir)
        self.storage_dir.mkdir(parents=True, exist_ok=True)
        for collection_file in sorted(self.storage_dir.glob("*.json")):
            payload = json.loads(collection_file.read_text(encoding="utf-8"))
            if not isinstance(payload, list):
                raise ValueError(f"Invalid collection file: {collection_file.name}")
            self._collections[collection_file.stem] = {
                _validate_id(document.get("_id")): document for document in payload
            }

    def _flush(self, collection: str) -> None:
        path = self.storage_dir / f"{collection}.json"
        documents = list(self._collections.get(collection, {}).values())
        temporary = path.with_suffix(".json.tmp")
        temporary.write_text(json.dumps(documents, indent=2), encoding="utf-8")
        temporary.replace(path)


class StoreHandle:
    """Process-wide store created lazily on first use and closed on shutdown."""

    def __init__(self, factory: Callable[[], DocumentStore]) -> None:
        self._factory = factory
        self._store: DocumentStore | None = None
        self._lock = threading.Lock()

    def get(self) -> DocumentStore:
        store = self._store
        if store is not None:
            return store
        with self._lock:
            if self._store is None:
                logger.info("Opening document store")
                self._store = self._factory()
            return self._store

    def close(self) -> None:
        with self._lock:
            store, self._store = self._store, None
        if store is not None:
            logger.info("Closing document store")
            store.close()

    @property
    def is_open(self) -> bool:
        return self._store is not None


StoreSource = Union[DocumentStore, StoreHandle]


def resolve_store(source: StoreSource) -> DocumentStore:
    """Return the concrete store behind ``source``, opening it if needed."""

    return source.get() if isinstance(source, StoreHandle) else source


# Query helpers -------------------------------------------------------------

_OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
    "$gt": lambda value, operand: value is not None and value > operand,
    "$gte": lambda value, operand: value is not None and value >= operand,
    "$lt": lambda value, operand: value is not None and value < operand,
    "$lte": lambda value, operand: value is not None and value <= operand,
    "$ne": lambda value, operand: value != operand,
    "$in": lambda value, operand: value in operand,
}


def matches_filter(document: Mapping[str, Any], filter: Filter) -> bool:
    """Return ``True`` when ``document`` satisfies every clause of ``filter``."""

    for field_name, condition in filter.items():
        value = document.get(field_name)
        if isinstance(condition, Mapping) and condition and all(
            str(key).startswith("$") for key in condition
        ):
            for operator, operand in condition.items():
                try:
                    check = _OPERATORS[operator]
                except KeyError as exc:
                    raise ValueError(f"Unsupported filter operator '{operator}'") from exc
                if not check(value, operand):
                    return False
        elif value != condition:
            return False
    return True


def sort_documents(documents: Iterable[Document], sort: SortSpec) -> List[Document]:
    """Stable multi-key sort; missing values order before present ones."""

    ordered = list(documents)
    for field_name, direction in reversed(list(sort)):
        if direction not in (ASCENDING, DESCENDING):
            raise ValueError("sort direction must be 1 or -1")
        ordered.sort(
            key=lambda document: (
                document.get(field_name) is not None,
                document.get(field_name),
            ),
            reverse=direction == DESCENDING,
        )
    return ordered


# Codecs --------------------------------------------------------------------


def song_to_payload(song: Song) -> Dict[str, Any]:
    payload: Dict[str, Any] = {
        "id": song.id,
        "name": song.name,
        "artists": list(song.artists),
        "album": song.album,
        "imageUrl": song.image_url,
    }
    if song.spotify_url:
        payload["spotifyUrl"] = song.spotify_url
    return payload


def song_from_payload(payload: Any) -> Song:
    if not isinstance(payload, Mapping):
        raise ValueError("Invalid song payload: expected an object")
    artists = payload.get("artists", [])
    if isinstance(artists, (str, bytes)) or not isinstance(artists, Iterable):
        raise ValueError("Invalid song payload: artists must be a list")
    return Song(
        id=_require_text(payload.get("id"), "song id"),
        name=_require_text(payload.get("name"), "song name"),
        artists=tuple(str(artist) for artist in artists),
        album=str(payload.get("album") or ""),
        image_url=str(payload.get("imageUrl") or ""),
        spotify_url=payload.get("spotifyUrl") or None,
    )


def room_clue_to_payload(clue: RoomClue) -> Dict[str, Any]:
    return {
        "clue": clue.clue,
        "correct": clue.correct,
        "score": clue.score,
        "points": clue.points,
        "attempts": clue.attempts,
        "completed": clue.completed,
        "audioUrl": clue.audio_url,
        "questionsAsked": clue.questions_asked,
        "puzzle": copy.deepcopy(clue.puzzle),
        "updatedAt": _datetime_to_text(clue.updated_at),
    }


def room_clue_from_payload(payload: Any) -> RoomClue:
    if not isinstance(payload, Mapping):
        raise ValueError("Invalid room clue payload: expected an object")
    puzzle = payload.get("puzzle") or {}
    if not isinstance(puzzle, Mapping):
        raise ValueError("Invalid room clue payload: puzzle must be an object")
    score = payload.get("score")
    questions_asked = payload.get("questionsAsked")
    return RoomClue(
        clue=payload.get("clue"),
        correct=payload.get("correct"),
        score=float(score) if score is not None else None,
        points=_non_negative_int(payload.get("points", 0), "points"),
        attempts=_non_negative_int(payload.get("attempts", 0), "attempts"),
        completed=bool(payload.get("completed", False)),
        audio_url=payload.get("audioUrl"),
        questions_asked=(
            _non_negative_int(questions_asked, "questionsAsked")
            if questions_asked is not None
            else None
        ),
        puzzle=dict(puzzle),
        updated_at=_datetime_from_text(payload.get("updatedAt")),
    )


def identity_to_payload(identity: OphiuchusIdentity) -> Dict[str, Any]:
    return {
        "title": identity.title,
        "description": identity.description,
        "imageUrl": identity.image_url,
    }


def identity_from_payload(payload: Any) -> OphiuchusIdentity:
    if not isinstance(payload, Mapping):
        raise ValueError("Invalid identity payload: expected an object")
    return OphiuchusIdentity(
        title=_require_text(payload.get("title"), "identity title"),
        description=str(payload.get("description") or ""),
        image_url=str(payload.get("imageUrl") or ""),
    )


def session_to_document(session: GameSession) -> Document:
    """Return the stored representation of ``session``."""

    rooms_completed: List[str] = []
    for room in session.rooms_completed:
        if room.value not in rooms_completed:
            rooms_completed.append(room.value)
    return {
        "_id": _validate_id(session.id),
        "userId": _require_text(session.user_id, "userId"),
        "spotifyUserId": session.spotify_user_id,
        "cosmicSong": song_to_payload(session.cosmic_song),
        "intermediarySongs": [song_to_payload(song) for song in session.intermediary_songs],
        "initialClue": session.initial_clue,
        "roomsCompleted": rooms_completed,
        "roomClues": {
            room.value: room_clue_to_payload(clue)
            for room, clue in session.room_clues.items()
        },
        "finalGuesses": session.final_guesses,
        "completed": session.completed,
        "ophiuchusIdentity": (
            identity_to_payload(session.ophiuchus_identity)
            if session.ophiuchus_identity is not None
            else None
        ),
        "createdAt": _datetime_to_text(session.created_at),
    }


def session_from_document(document: Mapping[str, Any]) -> GameSession:
    """Build a :class:`GameSession` from its stored representation."""

    intermediary = document.get("intermediarySongs", [])
    if not isinstance(intermediary, list):
        raise ValueError("Invalid session document: intermediarySongs must be a list")
    room_clues_payload = document.get("roomClues") or {}
    if not isinstance(room_clues_payload, Mapping):
        raise ValueError("Invalid session document: roomClues must be an object")
    identity_payload = document.get("ophiuchusIdentity")

    return GameSession(
        id=_validate_id(document.get("_id")),
        user_id=_require_text(document.get("userId"), "userId"),
        spotify_user_id=str(document.get("spotifyUserId") or ""),
        cosmic_song=song_from_payload(document.get("cosmicSong")),
        intermediary_songs=[song_from_payload(song) for song in intermediary],
        initial_clue=str(document.get("initialClue") or ""),
        rooms_completed=[Room.parse(str(room)) for room in document.get("roomsCompleted", [])],
        room_clues={
            Room.parse(str(room)): room_clue_from_payload(clue)
            for room, clue in room_clues_payload.items()
        },
        final_guesses=_non_negative_int(document.get("finalGuesses", 0), "finalGuesses"),
        completed=bool(document.get("completed", False)),
        ophiuchus_identity=(
            identity_from_payload(identity_payload) if identity_payload else None
        ),
        created_at=_datetime_from_text(document.get("createdAt")),
        version=int(document.get(VERSION_FIELD, 0)),
    )


def completed_game_to_payload(game: CompletedGame) -> Dict[str, Any]:
    return {
        "sessionId": game.session_id,
        "cosmicSong": dict(game.cosmic_song),
        "totalPoints": game.total_points,
        "roomPoints": dict(game.room_points),
        "finalGuessAttempts": game.final_guess_attempts,
        "ophiuchusIdentity": identity_to_payload(game.ophiuchus_identity),
        "completedAt": _datetime_to_text(game.completed_at),
    }


def completed_game_from_payload(payload: Any) -> CompletedGame:
    if not isinstance(payload, Mapping):
        raise ValueError("Invalid completed game payload: expected an object")
    completed_at = _datetime_from_text(payload.get("completedAt"))
    if completed_at is None:
        raise ValueError("Invalid completed game payload: completedAt is required")
    return CompletedGame(
        session_id=_require_text(payload.get("sessionId"), "sessionId"),
        cosmic_song=dict(payload.get("cosmicSong") or {}),
        total_points=int(payload.get("totalPoints", 0)),
        room_points={str(k): int(v) for k, v in (payload.get("roomPoints") or {}).items()},
        final_guess_attempts=int(payload.get("finalGuessAttempts", 0)),
        ophiuchus_identity=identity_from_payload(payload.get("ophiuchusIdentity")),
        completed_at=completed_at,
    )


def profile_to_document(profile: UserProfile) -> Document:
    return {
        "_id": _validate_id(profile.user_id),
        "userId": profile.user_id,
        "spotifyUserId": profile.spotify_user_id,
        "username": profile.username,
        "totalGamesPlayed": profile.total_games_played,
        "totalPoints": profile.total_points,
        "completedGames": [completed_game_to_payload(game) for game in profile.completed_games],
        "lastPlayedAt": _datetime_to_text(profile.last_played_at),
    }


def profile_from_document(document: Mapping[str, Any]) -> UserProfile:
    games = document.get("completedGames", [])
    if not isinstance(games, list):
        raise ValueError("Invalid profile document: completedGames must be a list")
    return UserProfile(
        user_id=_require_text(document.get("userId"), "userId"),
        spotify_user_id=str(document.get("spotifyUserId") or ""),
        username=str(document.get("username") or ""),
        total_games_played=_non_negative_int(document.get("totalGamesPlayed", 0), "totalGamesPlayed"),
        total_points=int(document.get("totalPoints", 0)),
        completed_games=[completed_game_from_payload(game) for game in games],
        last_played_at=_datetime_from_text(document.get("lastPlayedAt")),
    )


def leaderboard_entry_to_document(entry: LeaderboardEntry) -> Document:
    return {
        "_id": _validate_id(entry.user_id),
        "userId": entry.user_id,
        "username": entry.username,
        "spotifyUserId": entry.spotify_user_id,
        "totalPoints": entry.total_points,
        "totalGamesCompleted": entry.total_games_completed,
        "highestSingleGamePoints": entry.highest_single_game_points,
        "lastPlayedAt": _datetime_to_text(entry.last_played_at),
    }


def leaderboard_entry_from_document(document: Mapping[str, Any]) -> LeaderboardEntry:
    return LeaderboardEntry(
        user_id=_require_text(document.get("userId"), "userId"),
        username=str(document.get("username") or ""),
        spotify_user_id=str(document.get("spotifyUserId") or ""),
        total_points=int(document.get("totalPoints", 0)),
        total_games_completed=_non_negative_int(
            document.get("totalGamesCompleted", 0), "totalGamesCompleted"
        ),
        highest_single_game_points=int(document.get("highestSingleGamePoints", 0)),
        last_played_at=_datetime_from_text(document.get("lastPlayedAt")),
    )


def _validate_id(value: Any) -> str:
    if not isinstance(value, str):
        raise TypeError("document _id must be a string")
    stripped = value.strip()
    if not stripped:
        raise ValueError("document _id must be a non-empty string")
    return stripped


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid document: {field_name} must be a non-empty string")
    return value.strip()


def _non_negative_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValueError(f"Invalid document: {field_name} must be a non-negative integer")
    return value


def _datetime_to_text(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _datetime_from_text(value: Any) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValueError("Invalid document: timestamps must be ISO-8601 strings")
    return datetime.fromisoformat(value)


__all__ = [
    "ASCENDING",
    "DESCENDING",
    "DocumentStore",
    "DuplicateKeyError",
    "FileDocumentStore",
    "InMemoryDocumentStore",
    "LEADERBOARD",
    "PROFILES",
    "SESSIONS",
    "StoreHandle",
    "StoreSource",
    "VERSION_FIELD",
    "VersionConflictError",
    "leaderboard_entry_from_document",
    "leaderboard_entry_to_document",
    "matches_filter",
    "profile_from_document",
    "profile_to_document",
    "resolve_store",
    "session_from_document",
    "session_to_document",
    "sort_documents",
]
