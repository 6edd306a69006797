"""Aurora: answer an overheard confession with the right song."""

from __future__ import annotations

import logging
import random
import re
from dataclasses import dataclass
from typing import Protocol

from ..errors import BadRequestError
from ..llm import ContentGenerator
from ..models import GameSession, Room, Song
from ..speech import DEFAULT_VOICE, SpeechSynthesizer
from .base import Clock, RoomEngine, RoomResult, song_credit


logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
PASS_SCORE = 7
DEFAULT_SCORE = 5
DEFAULT_FEEDBACK = "Song evaluated based on emotional resonance."

EMOTIONAL_SITUATIONS: tuple[str, ...] = (
    # love
    "heartbroken after a breakup",
    "experiencing first love",
    "crushing on someone",
    "yearning for someone far away",
    "trying to move on while still in love",
    "realising you fell for your best friend",
    "finally confessing your feelings",
    "watching someone you love fall for someone else",
    "getting over a toxic ex",
    # growth
    "struggling with adulting and responsibilities",
    "feeling lost and searching for meaning",
    "recovering from burnout",
    "starting a new chapter in life",
    "graduating with no idea what comes next",
    "starting over in a new city",
    "finally learning to love yourself",
    # nostalgia
    "feeling nostalgic about the past",
    "missing someone deeply",
    "looking through old photos",
    "feeling bittersweet about growing up",
    # loneliness
    "dealing with loneliness",
    "feeling isolated even around people",
    "pretending to be okay when you are not",
    "overthinking late at night",
    # hope
    "celebrating a major achievement",
    "finally finding peace after chaos",
    "forgiving yourself for past mistakes",
    "starting to believe in yourself again",
)


@dataclass(frozen=True)
class EmotionScore:
    score: int
    feedback: str


class EmotionScorer(Protocol):
    def score(self, song: Song, situation: str, monologue: str) -> EmotionScore:
        """Rate 0-10 how well ``song`` answers the emotional situation."""


_SCORE = re.compile(r"SCORE:\s*(\d+)", re.IGNORECASE)
_FEEDBACK = re.compile(r"FEEDBACK:\s*(.+)", re.IGNORECASE)


def parse_emotion_score(text: str) -> EmotionScore:
    """Parse ``SCORE: n`` / ``FEEDBACK: ...``, clamping to 0-10."""

    score_match = _SCORE.search(text or "")
    feedback_match = _FEEDBACK.search(text or "")
    score = int(score_match.group(1)) if score_match else DEFAULT_SCORE
    feedback = feedback_match.group(1).strip() if feedback_match else DEFAULT_FEEDBACK
    return EmotionScore(score=max(0, min(10, score)), feedback=feedback)


def points_for_score(score: int) -> int:
    if score >= 9:
        return 100
    if score >= 7:
        return 75
    if score >= 5:
        return 50
    if score >= 3:
        return 25
    return 0


def monologue_prompt(situation: str) -> str:
    return (
        "Write a short spoken monologue (3-4 sentences, under a minute aloud) "
        f"from someone who is {situation}.\n\n"
        "It should sound like a real person talking to themselves or a close "
        "friend: emotional but not melodramatic, conversational, showing the "
        "feeling through pauses and word choice. Hint at the situation without "
        "stating it.\n\nReturn only the monologue."
    )


def scoring_prompt(song: Song, situation: str, monologue: str) -> str:
    return (
        "You judge how well a song answers someone's emotional moment.\n\n"
        f"SITUATION: Someone is {situation}\n"
        f'THEIR WORDS: "{monologue}"\n'
        f'SUGGESTED SONG: "{song.name}" by {song.credit()}\n\n'
        "Rate from 0 to 10 how fitting and resonant the song is: mood, "
        "lyrics, energy and whether it would comfort them. A haunting "
        "heartbreak ballad after a breakup is a 10; a cheerful holiday jingle "
        "for the same moment is a 1.\n\n"
        "Answer in exactly this format:\n"
        "SCORE: [0-10]\n"
        "FEEDBACK: [one honest, specific sentence]"
    )


def reward_prompt(song: Song) -> str:
    return (
        "Write a one or two sentence celestial clue about the emotional "
        "essence of this song, using imagery of light, time and feeling. "
        "Do not mention the title or artist.\n\n"
        f"{song_credit(song)}\n\nReturn only the clue."
    )


class GeneratorEmotionScorer:
    """Ask the content generator for a structured score."""

    def __init__(self, generator: ContentGenerator) -> None:
        self._generator = generator

    def score(self, song: Song, situation: str, monologue: str) -> EmotionScore:
        return parse_emotion_score(
            self._generator.generate(scoring_prompt(song, situation, monologue))
        )


class AuroraRoom(RoomEngine):
    room = Room.AURORA

    def __init__(
        self,
        generator: ContentGenerator,
        *,
        scorer: EmotionScorer | None = None,
        speech: SpeechSynthesizer | None = None,
        rng: random.Random | None = None,
        clock: Clock | None = None,
    ) -> None:
        super().__init__(generator, clock=clock)
        self._scorer = scorer or GeneratorEmotionScorer(generator)
        self._speech = speech
        self._rng = rng or random.Random()

    def choose_situation(self) -> str:
        return self._rng.choice(EMOTIONAL_SITUATIONS)

    def generate_monologue(self, situation: str) -> str:
        return self.generate(monologue_prompt(situation))

    def generate_reward(self, cosmic_song: Song) -> str:
        return self.generate(reward_prompt(cosmic_song))

    def open(self, session: GameSession) -> RoomResult:
        stored = self.stored(session)
        if stored.completed:
            return RoomResult(
                {
                    "completed": True,
                    "clue": stored.clue,
                    "audioUrl": stored.audio_url,
                    "score": stored.score,
                    "points": stored.points,
                }
            )

        if stored.puzzle.get("situation"):
            return RoomResult(self._open_payload(stored.audio_url, stored.puzzle, stored.attempts))

        situation = self.choose_situation()
        monologue = self.generate_monologue(situation)
        audio_url = (
            self._speech.synthesize(monologue, voice=DEFAULT_VOICE)
            if self._speech is not None
            else None
        )
        logger.info("Aurora situation chosen for session %s", session.id)
        puzzle = {"situation": situation, "monologue": monologue}
        clue = self.new_clue(stored, audio_url=audio_url, puzzle=puzzle)
        return RoomResult(self._open_payload(audio_url, puzzle, stored.attempts), clue)

    def submit(self, session: GameSession, guessed_song: Song) -> RoomResult:
        """Score ``guessed_song`` (already resolved from its id) for the situation."""

        stored = self.ensure_open(session)
        situation = stored.puzzle.get("situation")
        if not situation:
            raise BadRequestError("Open the aurora room before suggesting a song")

        result = self._scorer.score(
            guessed_song, situation, stored.puzzle.get("monologue", "")
        )
        attempt = stored.attempts + 1
        passed = result.score >= PASS_SCORE
        completed = passed or attempt >= MAX_ATTEMPTS
        points = points_for_score(result.score)
        reward = self.generate_reward(session.cosmic_song) if passed else ""

        logger.info(
            "Aurora attempt %d for session %s: score=%d passed=%s",
            attempt,
            session.id,
            result.score,
            passed,
        )
        clue = self.new_clue(
            stored,
            clue=reward or None,
            correct=passed,
            score=float(result.score),
            attempts=attempt,
            completed=completed,
            # Points only count once the room is settled.
            points=points if completed else 0,
            puzzle={"lastPoints": points, "lastFeedback": result.feedback},
        )
        return RoomResult(
            {
                "score": result.score,
                "feedback": result.feedback,
                "points": points,
                "passed": passed,
                "reward": reward,
                "completed": completed,
                "attemptsRemaining": max(0, MAX_ATTEMPTS - attempt),
            },
            clue,
        )

    def _open_payload(self, audio_url: str | None, puzzle: dict, attempts: int) -> dict:
        return {
            "completed": False,
            "audioUrl": audio_url,
            "monologue": puzzle.get("monologue"),
            "attemptsRemaining": max(0, MAX_ATTEMPTS - attempts),
        }


__all__ = [
    "AuroraRoom",
    "EMOTIONAL_SITUATIONS",
    "EmotionScore",
    "EmotionScorer",
    "GeneratorEmotionScorer",
    "parse_emotion_score",
    "points_for_score",
]
