"""Fold finished quests into durable profiles and the ranking table."""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List

from .errors import BadRequestError, ConflictError, NotFoundError
from .models import (
    CompletedGame,
    GameSession,
    LeaderboardEntry,
    OphiuchusIdentity,
    UserProfile,
)
from .persistence import (
    ASCENDING,
    DESCENDING,
    LEADERBOARD,
    PROFILES,
    StoreSource,
    completed_game_to_payload,
    leaderboard_entry_from_document,
    leaderboard_entry_to_document,
    profile_from_document,
    profile_to_document,
    resolve_store,
)
from .rooms.base import Clock, utcnow


logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
UNKNOWN_IDENTITY = OphiuchusIdentity(title="Unknown", description="", image_url="")

RANKING_ORDER = [("totalPoints", DESCENDING), ("userId", ASCENDING)]


class LeaderboardAggregator:
    """Owns every write to :class:`UserProfile` and :class:`LeaderboardEntry`."""

    def __init__(self, store: StoreSource, *, clock: Clock | None = None) -> None:
        self._store_source = store
        self._clock: Callable = clock or utcnow

    @property
    def store(self):
        return resolve_store(self._store_source)

    def archive(
        self, session: GameSession, *, username: str | None = None
    ) -> CompletedGame | None:
        """Append ``session`` to the owner's profile and roll up the ranking.

        Both documents are written in one store transaction. Archiving a
        session that is already in the profile is a no-op returning ``None``.
        """

        if not session.completed:
            raise ConflictError("Only completed sessions can be archived")

        store = self.store
        now = self._clock()
        with store.transaction():
            document = store.get(PROFILES, session.user_id)
            profile = (
                profile_from_document(document)
                if document is not None
                else UserProfile(
                    user_id=session.user_id,
                    spotify_user_id=session.spotify_user_id,
                    username=username or session.user_id,
                )
            )
            if profile.has_archived(session.id):
                logger.info("Session %s is already archived; skipping", session.id)
                return None

            game = CompletedGame(
                session_id=session.id,
                cosmic_song=session.cosmic_song.summary(),
                total_points=session.total_points,
                room_points=session.room_points(),
                final_guess_attempts=session.final_guesses,
                ophiuchus_identity=session.ophiuchus_identity or UNKNOWN_IDENTITY,
                completed_at=now,
            )
            profile.completed_games.append(game)
            profile.total_games_played += 1
            profile.total_points = sum(item.total_points for item in profile.completed_games)
            profile.spotify_user_id = session.spotify_user_id or profile.spotify_user_id
            profile.username = username or profile.username
            profile.last_played_at = now
            store.replace(
                PROFILES, profile.user_id, profile_to_document(profile), upsert=True
            )

            entry_document = store.get(LEADERBOARD, session.user_id)
            entry = (
                leaderboard_entry_from_document(entry_document)
                if entry_document is not None
                else LeaderboardEntry(
                    user_id=session.user_id,
                    username=profile.username,
                    spotify_user_id=profile.spotify_user_id,
                )
            )
            entry.username = profile.username
            entry.spotify_user_id = profile.spotify_user_id
            entry.total_points = profile.total_points
            entry.total_games_completed += 1
            entry.highest_single_game_points = max(
                entry.highest_single_game_points, game.total_points
            )
            entry.last_played_at = now
            store.replace(
                LEADERBOARD, entry.user_id, leaderboard_entry_to_document(entry), upsert=True
            )

        logger.info(
            "Archived session %s for user %s with %d points",
            session.id,
            session.user_id,
            game.total_points,
        )
        return game

    def top_players(self, limit: int = DEFAULT_PAGE_SIZE, skip: int = 0) -> List[LeaderboardEntry]:
        _validate_page(limit, skip)
        documents = self.store.find(LEADERBOARD, sort=RANKING_ORDER, skip=skip, limit=limit)
        return [leaderboard_entry_from_document(document) for document in documents]

    def entry(self, user_id: str) -> LeaderboardEntry | None:
        document = self.store.get(LEADERBOARD, user_id)
        return leaderboard_entry_from_document(document) if document else None

    def rank(self, user_id: str) -> int | None:
        """Competition rank: one plus the number of players strictly ahead."""

        entry = self.entry(user_id)
        if entry is None:
            return None
        return self.store.count(LEADERBOARD, {"totalPoints": {"$gt": entry.total_points}}) + 1

    def leaderboard_page(
        self, requester_id: str, *, limit: int = DEFAULT_PAGE_SIZE, skip: int = 0
    ) -> Dict[str, Any]:
        entries = self.top_players(limit, skip)
        total = self.store.count(LEADERBOARD)

        current_user = None
        own = self.entry(requester_id)
        if own is not None:
            current_user = {
                "username": own.username,
                "totalPoints": own.total_points,
                "totalGamesCompleted": own.total_games_completed,
                "rank": self.rank(requester_id),
            }

        return {
            "leaderboard": [
                {
                    "rank": skip + index + 1,
                    "userId": entry.user_id,
                    "username": entry.username,
                    "totalPoints": entry.total_points,
                    "totalGamesCompleted": entry.total_games_completed,
                    "highestSingleGamePoints": entry.highest_single_game_points,
                    "isCurrentUser": entry.user_id == requester_id,
                }
                for index, entry in enumerate(entries)
            ],
            "currentUser": current_user,
            "pagination": {
                "total": total,
                "limit": limit,
                "skip": skip,
                "hasMore": skip + limit < total,
            },
        }

    def profile(self, user_id: str) -> UserProfile:
        document = self.store.get(PROFILES, user_id)
        if document is None:
            raise NotFoundError(f"No profile for user '{user_id}'")
        return profile_from_document(document)

    def quest_history(self, user_id: str) -> List[Dict[str, Any]]:
        """Archived quests, newest first. Unknown users have no history."""

        document = self.store.get(PROFILES, user_id)
        if document is None:
            return []
        games = sorted(
            profile_from_document(document).completed_games,
            key=lambda game: game.completed_at,
            reverse=True,
        )
        return [completed_game_to_payload(game) for game in games]


def profile_payload(profile: UserProfile) -> Dict[str, Any]:
    payload = profile_to_document(profile)
    payload.pop("_id", None)
    return payload


def _validate_page(limit: int, skip: int) -> None:
    if not 1 <= limit <= MAX_PAGE_SIZE:
        raise BadRequestError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    if skip < 0:
        raise BadRequestError("skip must be non-negative")


__all__ = ["LeaderboardAggregator", "RANKING_ORDER", "profile_payload"]
