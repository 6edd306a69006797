"""Session progression: quest creation, room interactions and completion.

Every write to a :class:`GameSession` goes through a versioned
compare-and-swap. Generator calls happen before the write so that a failed
generation never leaves a room half-updated.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import random
import uuid
from typing import Any, Callable, Dict, List, Mapping, Protocol, Sequence, TypeVar

from .errors import (
    BadRequestError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    RoomCompletedError,
    SessionCompletedError,
)
from .identity import Identity
from .leaderboard import LeaderboardAggregator
from .llm import ContentGenerator
from .models import (
    CompletedGame,
    GameSession,
    OphiuchusIdentity,
    Room,
    RoomClue,
    SKIPPABLE_ROOMS,
    Song,
)
from .persistence import (
    DESCENDING,
    SESSIONS,
    VERSION_FIELD,
    StoreSource,
    VersionConflictError,
    identity_to_payload,
    resolve_store,
    room_clue_to_payload,
    session_from_document,
    session_to_document,
    song_to_payload,
)
from .rooms import (
    AuroraRoom,
    CometRoom,
    CradleRoom,
    EmotionScorer,
    NebulaRoom,
    NovaRoom,
    RoomResult,
)
from .rooms.base import Clock, require_text, song_credit, utcnow
from .speech import SpeechSynthesizer
from .spotify import TrackOracle


logger = logging.getLogger(__name__)

QUEST_SONG_COUNT = 3
MAX_FINAL_GUESSES = 2
MAX_WRITE_ATTEMPTS = 3
SKIPPED_CLUE = "Room skipped"

DEFAULT_IDENTITY_TITLE = "Ophiuchus of the Celestial Harmonist"
DEFAULT_IDENTITY_DESCRIPTION = (
    "A soul blessed by the 13th constellation, forever seeking cosmic truth through music."
)

T = TypeVar("T")


class SongSelector(Protocol):
    def select(self, candidates: Sequence[Song]) -> tuple[Song, List[Song]]:
        """Return ``(cosmic_song, intermediary_songs)`` drawn from ``candidates``."""


class RandomSongSelector:
    """Draw three distinct songs and promote one of them to cosmic song."""

    def __init__(self, rng: random.Random | None = None) -> None:
        self._rng = rng or random.Random()

    def select(self, candidates: Sequence[Song]) -> tuple[Song, List[Song]]:
        unique: Dict[str, Song] = {}
        for song in candidates:
            unique.setdefault(song.id, song)
        if len(unique) < QUEST_SONG_COUNT:
            raise BadRequestError(
                f"Not enough tracks in the listening history; at least {QUEST_SONG_COUNT} are needed"
            )
        chosen = self._rng.sample(list(unique.values()), QUEST_SONG_COUNT)
        cosmic_index = self._rng.randrange(QUEST_SONG_COUNT)
        intermediary = [song for index, song in enumerate(chosen) if index != cosmic_index]
        return chosen[cosmic_index], intermediary


def initial_clue_prompt(song: Song) -> str:
    return (
        "Create a mysterious, poetic one-line clue about this song without "
        "revealing the title or artist name directly.\n\n"
        f"{song_credit(song)}\n\n"
        "Hint at its themes, mood or story and make it sound celestial. Keep "
        "it to one sentence of at most 20 words.\n\nReturn only the clue text."
    )


def identity_prompt(session: GameSession) -> str:
    song = session.cosmic_song
    profile = (
        f"The player completed {len(session.rooms_completed)} cosmic chambers and "
        f'discovered their cosmic song "{song.name}" by {song.credit()}.'
    )
    return (
        "Create a unique Ophiuchus zodiac identity from this cosmic song and "
        "the player's musical journey.\n\n"
        f"Cosmic Song: {song.name} by {song.credit()}\n"
        f"Musical Profile: {profile}\n\n"
        "Answer with JSON of this shape:\n"
        '{"title": "Ophiuchus of the [poetic descriptor]", '
        '"description": "two or three mystical sentences about their musical soul", '
        '"imageUrl": ""}\n\n'
        "Return only valid JSON."
    )


def parse_identity(text: str, cosmic_song: Song) -> OphiuchusIdentity:
    """Read the identity JSON leniently, filling gaps with defaults."""

    payload: Mapping[str, Any] = {}
    start, end = text.find("{"), text.rfind("}")
    if start != -1 and end > start:
        try:
            decoded = json.loads(text[start : end + 1])
        except json.JSONDecodeError:
            logger.warning("Identity completion was not valid JSON; using defaults")
        else:
            if isinstance(decoded, Mapping):
                payload = decoded

    def _text(key: str) -> str:
        value = payload.get(key)
        return value.strip() if isinstance(value, str) else ""

    return OphiuchusIdentity(
        title=_text("title") or DEFAULT_IDENTITY_TITLE,
        description=_text("description") or DEFAULT_IDENTITY_DESCRIPTION,
        image_url=_text("imageUrl") or cosmic_song.image_url,
    )


def public_room_clue(clue: RoomClue) -> Dict[str, Any]:
    payload = room_clue_to_payload(clue)
    payload.pop("puzzle", None)
    return payload


def session_view(session: GameSession) -> Dict[str, Any]:
    """Client view of ``session``; the cosmic song stays hidden until completion."""

    return {
        "id": session.id,
        "initialClue": session.initial_clue,
        "roomsCompleted": [room.value for room in session.rooms_completed],
        "roomClues": {
            room.value: public_room_clue(clue) for room, clue in session.room_clues.items()
        },
        "finalGuesses": session.final_guesses,
        "completed": session.completed,
        "ophiuchusIdentity": (
            identity_to_payload(session.ophiuchus_identity)
            if session.ophiuchus_identity is not None
            else None
        ),
        "totalPoints": session.total_points,
        "cosmicSong": song_to_payload(session.cosmic_song) if session.completed else None,
    }


def merge_room_outcome(session: GameSession, room: Room, outcome: RoomClue) -> bool:
    """Fold ``outcome`` into ``session``; returns ``False`` for a frozen room."""

    existing = session.room_clues.get(room)
    if existing is not None and existing.completed:
        return False
    puzzle = dict(existing.puzzle) if existing is not None else {}
    puzzle.update(outcome.puzzle)
    session.room_clues[room] = dataclasses.replace(outcome, puzzle=puzzle)
    if outcome.completed and room not in session.rooms_completed:
        session.rooms_completed.append(room)
    return True


def _fingerprint(clue: RoomClue) -> tuple:
    return (clue.attempts, clue.questions_asked, clue.completed, clue.puzzle)


class QuestService:
    """Session progression controller used by the HTTP layer and the CLI."""

    def __init__(
        self,
        store: StoreSource,
        generator: ContentGenerator,
        *,
        selector: SongSelector | None = None,
        aggregator: LeaderboardAggregator | None = None,
        speech: SpeechSynthesizer | None = None,
        scorer: EmotionScorer | None = None,
        rng: random.Random | None = None,
        clock: Clock | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._store_source = store
        self._generator = generator
        self._clock = clock or utcnow
        self._selector = selector or RandomSongSelector(rng)
        self._aggregator = aggregator or LeaderboardAggregator(store, clock=self._clock)
        self._id_factory = id_factory or (lambda: uuid.uuid4().hex)

        self.nebula = NebulaRoom(generator, clock=self._clock)
        self.cradle = CradleRoom(generator, clock=self._clock)
        self.comet = CometRoom(generator, clock=self._clock)
        self.aurora = AuroraRoom(
            generator, scorer=scorer, speech=speech, rng=rng, clock=self._clock
        )
        self.nova = NovaRoom(generator, clock=self._clock)

    @property
    def store(self):
        return resolve_store(self._store_source)

    @property
    def aggregator(self) -> LeaderboardAggregator:
        return self._aggregator

    # Session lifecycle -----------------------------------------------------

    def create_session(
        self,
        user_id: str,
        candidate_songs: Sequence[Song],
        *,
        spotify_user_id: str = "",
    ) -> GameSession:
        if not user_id:
            raise BadRequestError("A user id is required to start a quest")
        cosmic_song, intermediary = self._selector.select(candidate_songs)
        initial_clue = self._generator.generate(initial_clue_prompt(cosmic_song))

        session = GameSession(
            id=self._id_factory(),
            user_id=user_id,
            spotify_user_id=spotify_user_id,
            cosmic_song=cosmic_song,
            intermediary_songs=list(intermediary),
            initial_clue=initial_clue,
            created_at=self._clock(),
        )
        stored = self.store.insert(SESSIONS, session_to_document(session))
        session.version = int(stored.get(VERSION_FIELD, 0))
        logger.info(
            "Created session %s for user %s from %d candidate songs",
            session.id,
            user_id,
            len(candidate_songs),
        )
        return session

    def start_quest(self, identity: Identity, oracle: TrackOracle) -> Dict[str, Any]:
        history = oracle.listening_history()
        session = self.create_session(
            identity.user_id, history, spotify_user_id=identity.spotify_user_id
        )
        return {"sessionId": session.id, "initialClue": session.initial_clue}

    def load_session(self, session_id: str, user_id: str) -> GameSession:
        """Return the stored session, enforcing that ``user_id`` owns it."""

        if not isinstance(session_id, str) or not session_id.strip():
            raise BadRequestError("'sessionId' is required")
        document = self.store.get(SESSIONS, session_id)
        if document is None:
            raise NotFoundError(f"Game session '{session_id}' not found")
        session = session_from_document(document)
        if session.user_id != user_id:
            raise ForbiddenError("This quest belongs to another player")
        return session

    def get_session(self, session_id: str, user_id: str) -> Dict[str, Any]:
        return session_view(self.load_session(session_id, user_id))

    def get_latest_session(self, user_id: str) -> Dict[str, Any]:
        documents = self.store.find(
            SESSIONS, {"userId": user_id}, sort=[("createdAt", DESCENDING)], limit=1
        )
        if not documents:
            raise NotFoundError("No quest in progress")
        return session_view(session_from_document(documents[0]))

    def update_room_completion(
        self, session_id: str, user_id: str, room: Room, outcome: RoomClue
    ) -> GameSession:
        """Merge ``outcome`` into the room; a completed room is left untouched."""

        return self._mutate(
            session_id,
            lambda session: merge_room_outcome(session, room, outcome),
            user_id=user_id,
        )

    def skip_room(self, session_id: str, user_id: str, room_name: str) -> Dict[str, Any]:
        try:
            room = Room.parse(room_name)
        except ValueError:
            room = None
        if room not in SKIPPABLE_ROOMS:
            raise BadRequestError(f"Invalid room '{room_name}'", code="invalid_room")

        def apply(session: GameSession) -> bool:
            if session.completed:
                raise SessionCompletedError("Game session already completed")
            if session.is_room_completed(room):
                raise RoomCompletedError(f"The {room.value} room is already completed")
            return merge_room_outcome(
                session,
                room,
                RoomClue(
                    clue=SKIPPED_CLUE,
                    correct=False,
                    points=0,
                    attempts=0,
                    completed=True,
                    puzzle={"skipped": True},
                    updated_at=self._clock(),
                ),
            )

        self._mutate(session_id, apply, user_id=user_id)
        logger.info("Session %s skipped the %s room", session_id, room.value)
        return {"room": room.value, "message": "Room skipped successfully"}

    def submit_final_guess(
        self, session_id: str, user_id: str, guessed_track_id: str
    ) -> Dict[str, Any]:
        guessed_track_id = require_text(guessed_track_id, "guessedTrackId").strip()
        session = self.load_session(session_id, user_id)
        if session.completed:
            raise SessionCompletedError("Game session already completed")
        if session.final_guesses >= MAX_FINAL_GUESSES:
            raise ConflictError("No final guesses remain", code="no_guesses_remaining")

        baseline = session.final_guesses
        correct = guessed_track_id == session.cosmic_song.id
        identity = (
            parse_identity(self._generator.generate(identity_prompt(session)), session.cosmic_song)
            if correct
            else None
        )

        def apply(current: GameSession) -> bool:
            if current.completed:
                raise SessionCompletedError("Game session already completed")
            if current.final_guesses != baseline:
                raise ConflictError("Another final guess was recorded concurrently")
            current.final_guesses += 1
            if correct:
                current.completed = True
                current.ophiuchus_identity = identity
            return True

        updated = self._mutate(session.id, apply, user_id=user_id, session=session)
        logger.info(
            "Final guess %d/%d for session %s: correct=%s",
            updated.final_guesses,
            MAX_FINAL_GUESSES,
            session_id,
            correct,
        )
        if correct:
            return {
                "correct": True,
                "cosmicSong": song_to_payload(updated.cosmic_song),
                "ophiuchusIdentity": identity_to_payload(identity),
                "attemptsUsed": updated.final_guesses,
            }
        remaining = max(0, MAX_FINAL_GUESSES - updated.final_guesses)
        return {"correct": False, "attemptsRemaining": remaining, "gameOver": remaining == 0}

    def complete_session(
        self, session_id: str, user_id: str, *, username: str | None = None
    ) -> CompletedGame | None:
        """Mark completed, archive, then drop the live session document."""

        def apply(session: GameSession) -> bool:
            if session.completed:
                return False
            session.completed = True
            return True

        session = self._mutate(session_id, apply, user_id=user_id)
        game = self._aggregator.archive(session, username=username)
        try:
            self.store.delete(SESSIONS, session.id)
        except Exception:
            logger.exception("Failed to delete session %s after archiving", session.id)
        return game

    # Rooms -----------------------------------------------------------------

    def open_nebula(self, session_id: str, user_id: str) -> Dict[str, Any]:
        return self._interact(session_id, user_id, Room.NEBULA, self.nebula.open)

    def guess_nebula(self, session_id: str, user_id: str, guessed_track_id: str) -> Dict[str, Any]:
        return self._interact(
            session_id,
            user_id,
            Room.NEBULA,
            lambda session: self.nebula.guess(session, guessed_track_id),
        )

    def open_comet(self, session_id: str, user_id: str) -> Dict[str, Any]:
        return self._interact(session_id, user_id, Room.COMET, self.comet.open)

    def guess_comet(self, session_id: str, user_id: str, guessed_track_id: str) -> Dict[str, Any]:
        return self._interact(
            session_id,
            user_id,
            Room.COMET,
            lambda session: self.comet.guess(session, guessed_track_id),
        )

    def open_cradle(self, session_id: str, user_id: str) -> Dict[str, Any]:
        return self._interact(session_id, user_id, Room.CRADLE, self.cradle.open)

    def ask_cradle(self, session_id: str, user_id: str, question: str) -> Dict[str, Any]:
        return self._interact(
            session_id,
            user_id,
            Room.CRADLE,
            lambda session: self.cradle.ask(session, question),
        )

    def guess_cradle(
        self,
        session_id: str,
        user_id: str,
        oracle: TrackOracle | None = None,
        *,
        guess: str | None = None,
        artist_id: str | None = None,
    ) -> Dict[str, Any]:
        """Guess the hidden artist by name, or by catalogue artist id."""

        if not guess and not artist_id:
            raise BadRequestError("Either 'guess' or 'artistId' is required")

        def action(session: GameSession) -> RoomResult:
            self.cradle.ensure_open(session)
            name = guess
            if artist_id:
                if oracle is None:
                    raise BadRequestError("Artist ids cannot be resolved without a catalogue")
                name = oracle.artist_name(artist_id)
            return self.cradle.guess(session, name or "")

        return self._interact(session_id, user_id, Room.CRADLE, action)

    def open_aurora(self, session_id: str, user_id: str) -> Dict[str, Any]:
        return self._interact(session_id, user_id, Room.AURORA, self.aurora.open)

    def submit_aurora(
        self, session_id: str, user_id: str, oracle: TrackOracle, track_id: str
    ) -> Dict[str, Any]:
        track_id = require_text(track_id, "trackId")

        def action(session: GameSession) -> RoomResult:
            self.aurora.ensure_open(session)
            return self.aurora.submit(session, oracle.track(track_id))

        return self._interact(session_id, user_id, Room.AURORA, action)

    def open_nova(self, session_id: str, user_id: str, oracle: TrackOracle) -> Dict[str, Any]:
        return self._interact(
            session_id,
            user_id,
            Room.NOVA,
            lambda session: self.nova.open(session, oracle.listening_stats),
        )

    def submit_nova(
        self, session_id: str, user_id: str, answers: Mapping[str, str]
    ) -> Dict[str, Any]:
        return self._interact(
            session_id,
            user_id,
            Room.NOVA,
            lambda session: self.nova.submit(session, answers),
        )

    # Internals -------------------------------------------------------------

    def _interact(
        self,
        session_id: str,
        user_id: str,
        room: Room,
        action: Callable[[GameSession], RoomResult],
    ) -> Dict[str, Any]:
        session = self.load_session(session_id, user_id)
        if session.completed and not session.is_room_completed(room):
            raise SessionCompletedError("Game session already completed")
        result = action(session)
        if result.clue is not None:
            self._commit_room(session, room, result.clue)
        return result.payload

    def _commit_room(self, session: GameSession, room: Room, clue: RoomClue) -> None:
        """Store ``clue`` unless the room moved on since ``session`` was read."""

        baseline = _fingerprint(session.clue_for(room))

        def apply(current: GameSession) -> bool:
            if current.completed:
                raise SessionCompletedError("Game session already completed")
            if _fingerprint(current.clue_for(room)) != baseline:
                raise ConflictError(
                    f"The {room.value} room changed while this request was in flight"
                )
            return merge_room_outcome(current, room, clue)

        self._mutate(session.id, apply, user_id=session.user_id, session=session)

    def _mutate(
        self,
        session_id: str,
        apply: Callable[[GameSession], bool],
        *,
        user_id: str,
        session: GameSession | None = None,
    ) -> GameSession:
        """Apply ``apply`` and write back, re-reading on version conflicts."""

        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            if session is None:
                session = self.load_session(session_id, user_id)
            if not apply(session):
                return session
            try:
                stored = self.store.replace(
                    SESSIONS,
                    session.id,
                    session_to_document(session),
                    expected_version=session.version,
                )
            except VersionConflictError:
                logger.warning(
                    "Session %s changed concurrently (attempt %d/%d)",
                    session_id,
                    attempt,
                    MAX_WRITE_ATTEMPTS,
                )
                session = None
                continue
            session.version = int(stored[VERSION_FIELD])
            return session
        raise ConflictError(f"Game session '{session_id}' is being modified concurrently")


__all__ = [
    "QuestService",
    "RandomSongSelector",
    "SongSelector",
    "merge_room_outcome",
    "parse_identity",
    "session_view",
]
