"""Cradle: interrogate an oracle about the hidden artist, then name them."""

from __future__ import annotations

import logging
from typing import Any, Dict

from ..errors import BadRequestError, QuotaExceededError
from ..models import GameSession, Room, RoomClue, Song
from .base import RoomEngine, RoomResult, points_for_attempt, require_text, song_credit


logger = logging.getLogger(__name__)

MAX_QUESTIONS = 5
MAX_GUESSES = 3
POINTS_BY_ATTEMPT = (100, 75, 50)
CONSOLATION_POINTS = 10


def normalise_artist(name: str) -> str:
    return name.strip().casefold()


def check_artist_guess(guess: str, target: Song) -> bool:
    """Case-folded, trimmed exact match against the first credited artist."""

    if not target.primary_artist:
        return False
    return normalise_artist(guess) == normalise_artist(target.primary_artist)


def clue_prompt(artist: str) -> str:
    return (
        "Write a mysterious, poetic identity clue about this music artist "
        "without naming them.\n\n"
        f"Artist: {artist}\n\n"
        "Two or three celestial lines hinting at their style, achievements, "
        "background or impact.\n\nReturn only the clue."
    )


def answer_prompt(question: str, artist: str) -> str:
    return (
        f"You are a cosmic oracle who knows everything about the artist {artist}.\n\n"
        f'A seeker asks: "{question}"\n\n'
        "Answer like a wizard: cryptic but genuinely helpful, with real facts "
        "(awards, genre, collaborations, milestones) phrased poetically. Never "
        'say the name; refer to "this artist" or "they". One to three '
        "sentences.\n\nReturn only the answer."
    )


def reward_prompt(song: Song) -> str:
    return (
        "Write a one or two line mystical clue connecting the artist to this song.\n\n"
        f"{song_credit(song)}\n\nReturn only the clue."
    )


class CradleRoom(RoomEngine):
    room = Room.CRADLE

    def generate_clue(self, artist: str) -> str:
        return self.generate(clue_prompt(artist))

    def answer_question(self, question: str, artist: str) -> str:
        return self.generate(answer_prompt(question, artist))

    def generate_reward(self, cosmic_song: Song) -> str:
        return self.generate(reward_prompt(cosmic_song))

    def open(self, session: GameSession) -> RoomResult:
        stored = self.stored(session)
        if stored.completed:
            payload = self._progress(stored)
            payload.update(
                completed=True,
                clue=stored.clue,
                correct=stored.correct,
                points=stored.points,
                correctArtist=(
                    session.cosmic_song.primary_artist if stored.correct else None
                ),
            )
            return RoomResult(payload)

        artist_clue = stored.puzzle.get("artistClue")
        clue = None
        if not artist_clue:
            artist_clue = self.generate_clue(self._artist(session))
            clue = self.new_clue(
                stored,
                questions_asked=stored.questions_asked or 0,
                puzzle={"artistClue": artist_clue},
            )
        return RoomResult(self._progress(clue or stored), clue)

    def ask(self, session: GameSession, question: str) -> RoomResult:
        stored = self.ensure_open(session)
        question = require_text(question, "question").strip()
        asked = stored.questions_asked or 0
        if asked >= MAX_QUESTIONS:
            raise QuotaExceededError(
                "Maximum questions reached",
                extra={"questionsRemaining": 0, "canAsk": False},
            )

        answer = self.answer_question(question, self._artist(session))
        transcript = list(stored.puzzle.get("questions", []))
        transcript.append({"question": question, "answer": answer})
        clue = self.new_clue(
            stored, questions_asked=asked + 1, puzzle={"questions": transcript}
        )
        payload = self._progress(clue)
        payload["answer"] = answer
        return RoomResult(payload, clue)

    def guess(self, session: GameSession, artist_name: str) -> RoomResult:
        """Score a guess; ``artist_name`` is already resolved from any artist id."""

        stored = self.ensure_open(session)
        artist_name = require_text(artist_name, "guess")
        attempt = stored.attempts + 1
        correct = check_artist_guess(artist_name, session.cosmic_song)
        completed = correct or attempt >= MAX_GUESSES

        points = 0
        reward = ""
        if correct:
            points = points_for_attempt(attempt, POINTS_BY_ATTEMPT)
            reward = self.generate_reward(session.cosmic_song)
        elif completed:
            points = CONSOLATION_POINTS

        logger.info(
            "Cradle guess %d for session %s: correct=%s points=%d",
            attempt,
            session.id,
            correct,
            points,
        )
        clue = self.new_clue(
            stored,
            clue=reward or None,
            correct=correct,
            attempts=attempt,
            completed=completed,
            points=points,
        )
        payload = self._progress(clue)
        payload.update(
            correct=correct,
            reward=reward,
            points=points,
            completed=completed,
            correctArtist=session.cosmic_song.primary_artist if correct else None,
        )
        return RoomResult(payload, clue)

    def _artist(self, session: GameSession) -> str:
        artist = session.cosmic_song.primary_artist
        if not artist:
            raise BadRequestError("The cosmic song has no credited artist")
        return artist

    def _progress(self, clue: RoomClue) -> Dict[str, Any]:
        asked = clue.questions_asked or 0
        remaining = max(0, MAX_QUESTIONS - asked)
        return {
            "completed": clue.completed,
            "artistClue": clue.puzzle.get("artistClue"),
            "questionsAsked": asked,
            "questionsRemaining": remaining,
            "canAsk": remaining > 0 and not clue.completed,
            "attemptsRemaining": max(0, MAX_GUESSES - clue.attempts),
        }


__all__ = ["CradleRoom", "check_artist_guess", "normalise_artist"]
