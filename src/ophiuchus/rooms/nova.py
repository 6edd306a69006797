"""Nova: a memory quiz about the player's own listening."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Sequence

from ..errors import BadRequestError, RoomLockedError
from ..models import GameSession, Room, SKIPPABLE_ROOMS, Song
from ..spotify import ListeningStats
from .base import RoomEngine, RoomResult, song_credit


logger = logging.getLogger(__name__)

MAX_QUESTIONS = 5
POINTS_PER_CORRECT = 20
CONSOLATION_POINTS = 10
DISTRACTOR_GENRES = ("Pop", "Rock", "Hip Hop", "R&B", "Electronic")
LISTENING_TIMES = ("Morning", "Afternoon", "Evening", "Late Night")
DEFAULT_LISTENING_TIME = "Evening"
REVERSED_MELODY = "A fragmented melody plays backward, echoing through the cosmic void..."


@dataclass(frozen=True)
class NovaQuestion:
    id: str
    question: str
    type: str
    correct_answer: str
    options: tuple[str, ...] = field(default_factory=tuple)

    def public(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"id": self.id, "question": self.question, "type": self.type}
        if self.options:
            payload["options"] = list(self.options)
        return payload

    def to_payload(self) -> Dict[str, Any]:
        payload = self.public()
        payload["correctAnswer"] = self.correct_answer
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "NovaQuestion":
        return cls(
            id=str(payload["id"]),
            question=str(payload["question"]),
            type=str(payload.get("type", "text")),
            correct_answer=str(payload.get("correctAnswer", "")),
            options=tuple(str(option) for option in payload.get("options", [])),
        )


@dataclass(frozen=True)
class NovaReward:
    type: str
    content: str


def _unique(values: Sequence[str]) -> List[str]:
    seen: List[str] = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return seen


def answer_matches(answer: str | None, expected: str) -> bool:
    """Lenient comparison: equal or contained either way after case-folding.

    A blank answer never matches.
    """

    given = (answer or "").strip().lower()
    target = expected.strip().lower()
    if not given or not target:
        return False
    return given == target or target in given or given in target


def score_answers(answers: Mapping[str, str], questions: Sequence[NovaQuestion]) -> int:
    return sum(1 for question in questions if answer_matches(answers.get(question.id), question.correct_answer))


def points_for_correct(correct: int) -> int:
    return correct * POINTS_PER_CORRECT if correct > 0 else CONSOLATION_POINTS


def listening_time(hours: Sequence[int]) -> str:
    """Most common time of day among ``hours``; evening when there are none."""

    counts = dict.fromkeys(LISTENING_TIMES, 0)
    for hour in hours:
        if 5 <= hour < 12:
            counts["Morning"] += 1
        elif 12 <= hour < 17:
            counts["Afternoon"] += 1
        elif 17 <= hour < 22:
            counts["Evening"] += 1
        else:
            counts["Late Night"] += 1
    if not any(counts.values()):
        return DEFAULT_LISTENING_TIME
    return max(LISTENING_TIMES, key=lambda name: counts[name])


def lyric_question_prompt(song: Song) -> str:
    return (
        "Write a fill-in-the-blank lyric question for this song.\n\n"
        f"{song_credit(song)}\n\n"
        "Format: Complete the lyric: '[first part] _____'\n"
        "The blank should be a memorable word or phrase.\n\n"
        "Return only the question with the blank written as _____."
    )


def lyric_answer_prompt(question: str, song: Song) -> str:
    return (
        f"What word or phrase fills the blank in: {question}\n\n"
        f"Song: {song.name}\n\nReturn only the missing word or phrase."
    )


def reward_prompt(song: Song, correct: int) -> str:
    if correct >= 5:
        return (
            "Describe how a hummed, muffled version of this song's chorus "
            'would sound, as syllables (like "da da dum, da da dum dum"). One '
            f"line.\n\n{song_credit(song)}\n\nReturn only the description."
        )
    if correct == 3:
        return (
            "Take a memorable lyric from this song and scramble its letters or "
            f"apply a simple cipher.\n\nSong: {song.name}\n\n"
            "Return only the encrypted lyric."
        )
    return (
        "Give a subtle genre and mood hint for this song.\n\n"
        f"{song_credit(song)}\n\n"
        'Format: "Genre: [genre] | Mood: [mood]"\n\nReturn only the hint.'
    )


class NovaRoom(RoomEngine):
    room = Room.NOVA

    def generate_questions(self, stats: ListeningStats, cosmic_song: Song) -> List[NovaQuestion]:
        questions: List[NovaQuestion] = []
        if stats.top_artist:
            questions.append(
                NovaQuestion(
                    id="top-artist",
                    question="Which artist have you streamed the most recently?",
                    type="text",
                    correct_answer=stats.top_artist,
                )
            )
        if stats.top_genre:
            options = _unique([*DISTRACTOR_GENRES, stats.top_genre])[:4]
            if stats.top_genre not in options:
                options[-1] = stats.top_genre
            questions.append(
                NovaQuestion(
                    id="top-genre",
                    question="What genre dominated your recent listening?",
                    type="multiple-choice",
                    correct_answer=stats.top_genre,
                    options=tuple(options),
                )
            )
        if stats.recent_tracks:
            latest = stats.recent_tracks[0].name
            options = _unique([latest, *(song.name for song in stats.top_tracks[:3])])[:4]
            questions.append(
                NovaQuestion(
                    id="recent-track",
                    question="Which song did you listen to most recently?",
                    type="multiple-choice",
                    correct_answer=latest,
                    options=tuple(options),
                )
            )

        lyric_question = self.generate(lyric_question_prompt(cosmic_song))
        lyric_answer = self.generate(lyric_answer_prompt(lyric_question, cosmic_song))
        questions.append(
            NovaQuestion(
                id="lyric-complete",
                question=lyric_question,
                type="text",
                correct_answer=lyric_answer,
            )
        )
        questions.append(
            NovaQuestion(
                id="listening-time",
                question="When do you usually play music?",
                type="multiple-choice",
                correct_answer=listening_time(stats.play_hours),
                options=LISTENING_TIMES,
            )
        )
        return questions[:MAX_QUESTIONS]

    def generate_reward(self, cosmic_song: Song, correct: int) -> NovaReward:
        if correct == 4:
            return NovaReward(type="reversed-audio", content=REVERSED_MELODY)
        content = self.generate(reward_prompt(cosmic_song, correct))
        if correct >= 5:
            return NovaReward(type="audio-description", content=content)
        if correct == 3:
            return NovaReward(type="encrypted-lyric", content=content)
        return NovaReward(type="genre-mood-hint", content=content)

    def ensure_unlocked(self, session: GameSession) -> None:
        pending = [room.value for room in SKIPPABLE_ROOMS if not session.is_room_completed(room)]
        if pending:
            raise RoomLockedError(
                "The nova room opens once every other room is completed or skipped",
                extra={"pendingRooms": pending},
            )

    def open(
        self, session: GameSession, load_stats: Callable[[], ListeningStats]
    ) -> RoomResult:
        stored = self.stored(session)
        if stored.completed:
            return RoomResult(
                {
                    "completed": True,
                    "score": stored.score,
                    "points": stored.points,
                    "reward": {
                        "type": stored.puzzle.get("rewardType"),
                        "content": stored.clue,
                    },
                }
            )
        self.ensure_unlocked(session)

        cached = stored.puzzle.get("questions")
        if cached:
            questions = [NovaQuestion.from_payload(item) for item in cached]
            return RoomResult(self._open_payload(questions))

        questions = self.generate_questions(load_stats(), session.cosmic_song)
        logger.info("Generated %d nova questions for session %s", len(questions), session.id)
        clue = self.new_clue(
            stored, puzzle={"questions": [question.to_payload() for question in questions]}
        )
        return RoomResult(self._open_payload(questions), clue)

    def submit(self, session: GameSession, answers: Mapping[str, str]) -> RoomResult:
        stored = self.ensure_open(session)
        self.ensure_unlocked(session)
        if not isinstance(answers, Mapping) or not answers:
            raise BadRequestError("'answers' is required")
        cached = stored.puzzle.get("questions")
        if not cached:
            raise BadRequestError("Open the nova room before answering")

        questions = [NovaQuestion.from_payload(item) for item in cached]
        correct = score_answers(answers, questions)
        points = points_for_correct(correct)
        reward = self.generate_reward(session.cosmic_song, correct)
        logger.info(
            "Nova answers for session %s: %d/%d correct, %d points",
            session.id,
            correct,
            len(questions),
            points,
        )

        clue = self.new_clue(
            stored,
            clue=reward.content,
            correct=correct == len(questions),
            score=float(correct),
            attempts=stored.attempts + 1,
            completed=True,
            points=points,
            puzzle={"rewardType": reward.type},
        )
        return RoomResult(
            {
                "score": correct,
                "totalQuestions": len(questions),
                "points": points,
                "perfect": correct == len(questions),
                "completed": True,
                "reward": {"type": reward.type, "content": reward.content},
            },
            clue,
        )

    def _open_payload(self, questions: Sequence[NovaQuestion]) -> Dict[str, Any]:
        return {"completed": False, "questions": [question.public() for question in questions]}


__all__ = [
    "NovaQuestion",
    "NovaReward",
    "NovaRoom",
    "answer_matches",
    "listening_time",
    "points_for_correct",
    "score_answers",
]
