"""Comet: one look at a lyric, one chance to name the song."""

from __future__ import annotations

import logging

from ..errors import BadRequestError
from ..models import GameSession, Room, Song
from .base import RoomEngine, RoomResult, require_text, revealed, song_credit


logger = logging.getLogger(__name__)

LYRIC_DURATION_SECONDS = 10
SUCCESS_POINTS = 100
CONSOLATION = "The comet has passed, and its secret remains hidden in the cosmic void."


def lyric_prompt(song: Song) -> str:
    return (
        "Quote one authentic, memorable lyric line from this song.\n\n"
        f"{song_credit(song)}\n\n"
        "Try hard to recall the real lyric. Only when you are less than 30% "
        "sure of it, write a line that is indistinguishable from the artist's "
        "style and the song's theme. One line, at most 15 words, no quotation "
        "marks or commentary.\n\nReturn only the lyric line."
    )


def reward_prompt(song: Song) -> str:
    return (
        "Give one distinctive lyric line from this song.\n\n"
        f"{song_credit(song)}\n\n"
        "If you do not know the exact words, write a line that captures the "
        "song's essence. One line, at most 15 words.\n\nReturn only the lyric."
    )


def check_guess(guessed_track_id: str, target: Song) -> bool:
    """Exact catalogue id equality."""

    return guessed_track_id == target.id


def lyric_song(session: GameSession) -> Song:
    """The second intermediary song, or the first when only one exists."""

    songs = session.intermediary_songs
    if not songs:
        raise BadRequestError("The quest has no intermediary songs")
    return songs[1] if len(songs) >= 2 else songs[0]


class CometRoom(RoomEngine):
    room = Room.COMET

    def generate_lyric(self, song: Song) -> str:
        return self.generate(lyric_prompt(song))

    def generate_reward(self, cosmic_song: Song) -> str:
        return self.generate(reward_prompt(cosmic_song))

    def open(self, session: GameSession) -> RoomResult:
        stored = self.stored(session)
        if stored.completed:
            return RoomResult(
                {
                    "completed": True,
                    "lyric": stored.puzzle.get("lyric"),
                    "clue": stored.clue,
                    "correct": stored.correct,
                    "points": stored.points,
                    "revealedSong": revealed(lyric_song(session)),
                }
            )

        lyric = stored.puzzle.get("lyric")
        clue = None
        if not lyric:
            lyric = self.generate_lyric(lyric_song(session))
            clue = self.new_clue(stored, puzzle={"lyric": lyric})
        return RoomResult(
            {"completed": False, "lyric": lyric, "duration": LYRIC_DURATION_SECONDS},
            clue,
        )

    def guess(self, session: GameSession, guessed_track_id: str) -> RoomResult:
        stored = self.ensure_open(session)
        guessed_track_id = require_text(guessed_track_id, "guessedTrackId")
        target = lyric_song(session)

        correct = check_guess(guessed_track_id, target)
        points = SUCCESS_POINTS if correct else 0
        reward = self.generate_reward(session.cosmic_song) if correct else ""
        logger.info(
            "Comet guess for session %s: correct=%s points=%d", session.id, correct, points
        )

        clue = self.new_clue(
            stored,
            clue=reward or None,
            correct=correct,
            attempts=stored.attempts + 1,
            completed=True,
            points=points,
        )
        return RoomResult(
            {
                "correct": correct,
                "reward": reward,
                "message": "" if correct else CONSOLATION,
                "points": points,
                "completed": True,
                "revealedSong": revealed(target),
            },
            clue,
        )


__all__ = ["CometRoom", "check_guess", "lyric_song"]
