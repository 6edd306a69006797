"""Nebula: guess the intermediary song behind a poetic riddle."""

from __future__ import annotations

import logging

from ..errors import BadRequestError
from ..models import GameSession, Room, Song
from .base import RoomEngine, RoomResult, points_for_attempt, require_text, revealed, song_credit


logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
POINTS_BY_ATTEMPT = (100, 50, 25)

_CLOSING = 'Close with a line such as "Which song am I?" or "What melody holds this truth?"'
_LANGUAGE = (
    "If the song is not in English, write the poem in the song's language and "
    "return only its English transliteration."
)


def riddle_prompt(song: Song) -> str:
    return (
        "Write a poetic, musical riddle about this song.\n"
        f"{_LANGUAGE}\n\n{song_credit(song)}\n\n"
        "Use 6-8 lines capturing its emotion, imagery and story. Lyrical hints "
        "are welcome but never name the title. Someone who knows the song "
        f"should be able to guess it.\n{_CLOSING}\n\nReturn only the poem."
    )


def reward_prompt(song: Song) -> str:
    return (
        "Write a poetic clue that gently hints at this song's mood, message or theme.\n"
        f"{_LANGUAGE}\n\n{song_credit(song)}\n\n"
        "Use 6-8 lines with subtle lyrical echoes, never revealing the title. "
        f"It should be fairly easy to recognise for a fan.\n{_CLOSING}\n\n"
        "Return only the poem."
    )


def penalty_prompt(song: Song) -> str:
    return (
        "Write a poetic riddle about this song that is beautiful but harder to solve.\n"
        f"{_LANGUAGE}\n\n{song_credit(song)}\n\n"
        "Use 6-8 lines describing its tone or story in a subtle, interpretive "
        "way. Stay true to the song without being revealing or misleading.\n"
        f"{_CLOSING}\n\nReturn only the poem."
    )


def check_guess(guessed_track_id: str, target: Song) -> bool:
    """Exact catalogue id equality."""

    return guessed_track_id == target.id


class NebulaRoom(RoomEngine):
    room = Room.NEBULA

    def riddle_song(self, session: GameSession) -> Song:
        if not session.intermediary_songs:
            raise BadRequestError("The quest has no intermediary songs")
        return session.intermediary_songs[0]

    def generate_riddle(self, song: Song) -> str:
        return self.generate(riddle_prompt(song))

    def generate_reward(self, cosmic_song: Song) -> str:
        return self.generate(reward_prompt(cosmic_song))

    def generate_penalty(self, cosmic_song: Song) -> str:
        return self.generate(penalty_prompt(cosmic_song))

    def open(self, session: GameSession) -> RoomResult:
        stored = self.stored(session)
        if stored.completed:
            return RoomResult(self._completed_payload(session))

        riddle = stored.puzzle.get("riddle")
        if riddle:
            return RoomResult(self._open_payload(riddle, stored.attempts))

        riddle = self.generate_riddle(self.riddle_song(session))
        clue = self.new_clue(stored, puzzle={"riddle": riddle})
        return RoomResult(self._open_payload(riddle, stored.attempts), clue)

    def guess(self, session: GameSession, guessed_track_id: str) -> RoomResult:
        stored = self.ensure_open(session)
        guessed_track_id = require_text(guessed_track_id, "guessedTrackId")
        target = self.riddle_song(session)

        attempt = stored.attempts + 1
        correct = check_guess(guessed_track_id, target)
        reward = ""
        penalty = ""
        points = 0
        if correct:
            points = points_for_attempt(attempt, POINTS_BY_ATTEMPT)
            reward = self.generate_reward(session.cosmic_song)
        elif attempt >= MAX_ATTEMPTS:
            penalty = self.generate_penalty(session.cosmic_song)
        completed = correct or attempt >= MAX_ATTEMPTS

        logger.info(
            "Nebula guess %d for session %s: correct=%s points=%d",
            attempt,
            session.id,
            correct,
            points,
        )
        clue = self.new_clue(
            stored,
            clue=(reward or penalty) or None,
            correct=correct,
            attempts=attempt,
            completed=completed,
            points=points,
        )
        return RoomResult(
            {
                "correct": correct,
                "reward": reward,
                "penalty": penalty,
                "points": points,
                "attemptsRemaining": max(0, MAX_ATTEMPTS - attempt),
                "completed": completed,
                "revealedSong": revealed(target) if completed else None,
            },
            clue,
        )

    def _open_payload(self, riddle: str, attempts: int) -> dict:
        return {
            "completed": False,
            "riddle": riddle,
            "attempts": attempts,
            "attemptsRemaining": max(0, MAX_ATTEMPTS - attempts),
        }

    def _completed_payload(self, session: GameSession) -> dict:
        stored = self.stored(session)
        return {
            "completed": True,
            "riddle": stored.puzzle.get("riddle"),
            "clue": stored.clue,
            "correct": stored.correct,
            "points": stored.points,
            "attempts": stored.attempts,
            "revealedSong": (
                revealed(session.intermediary_songs[0])
                if session.intermediary_songs
                else None
            ),
        }


__all__ = ["NebulaRoom", "check_guess"]
