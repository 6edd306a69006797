from __future__ import annotations

import pytest

from ophiuchus.errors import BadRequestError, QuotaExceededError, RoomCompletedError
from ophiuchus.models import GameSession, Room
from ophiuchus.rooms import CradleRoom
from ophiuchus.rooms.base import RoomResult
from ophiuchus.rooms.cradle import check_artist_guess

from tests.conftest import MockLLMClient


def _apply(session: GameSession, result: RoomResult) -> RoomResult:
    if result.clue is not None:
        session.room_clues[Room.CRADLE] = result.clue
    return result


@pytest.fixture()
def cradle(generator) -> CradleRoom:
    return CradleRoom(generator)


@pytest.mark.parametrize(
    "guess, expected",
    [
        ("Florence + The Machine", True),
        ("  florence + the machine ", True),
        ("Florence", False),
        ("Adele", False),
    ],
)
def test_artist_match_is_normalised_exact(
    session: GameSession, guess: str, expected: bool
) -> None:
    assert check_artist_guess(guess, session.cosmic_song) is expected


def test_open_generates_identity_clue_once(
    cradle: CradleRoom, session: GameSession, mock_llm_client: MockLLMClient
) -> None:
    mock_llm_client.queue_response("A voice like a storm over the sea")

    opened = _apply(session, cradle.open(session))

    assert opened.payload == {
        "completed": False,
        "artistClue": "A voice like a storm over the sea",
        "questionsAsked": 0,
        "questionsRemaining": 5,
        "canAsk": True,
        "attemptsRemaining": 3,
    }
    assert "Florence + The Machine" in mock_llm_client.prompts[0]
    assert cradle.open(session).clue is None


def test_questions_are_limited_to_five(
    cradle: CradleRoom, session: GameSession, mock_llm_client: MockLLMClient
) -> None:
    for index in range(5):
        mock_llm_client.queue_response(f"answer {index}")
        result = _apply(session, cradle.ask(session, f"question {index}?"))
        assert result.payload["answer"] == f"answer {index}"

    assert result.payload["questionsRemaining"] == 0
    assert result.payload["canAsk"] is False
    assert len(session.room_clues[Room.CRADLE].puzzle["questions"]) == 5

    with pytest.raises(QuotaExceededError) as excinfo:
        cradle.ask(session, "one more?")
    assert excinfo.value.to_payload() == {
        "code": "quota_exceeded",
        "message": "Maximum questions reached",
        "questionsRemaining": 0,
        "canAsk": False,
    }
    assert len(mock_llm_client.calls) == 5


def test_blank_question_is_rejected(cradle: CradleRoom, session: GameSession) -> None:
    with pytest.raises(BadRequestError):
        cradle.ask(session, "  ")


@pytest.mark.parametrize("misses, points", [(0, 100), (1, 75), (2, 50)])
def test_correct_guess_points_by_attempt(
    cradle: CradleRoom,
    session: GameSession,
    mock_llm_client: MockLLMClient,
    misses: int,
    points: int,
) -> None:
    for _ in range(misses):
        _apply(session, cradle.guess(session, "Adele"))
    mock_llm_client.queue_response("Their song glows")

    result = cradle.guess(session, "florence + the machine")

    assert result.payload["correct"] is True
    assert result.payload["points"] == points
    assert result.payload["reward"] == "Their song glows"
    assert result.payload["correctArtist"] == "Florence + The Machine"
    _apply(session, result)
    assert cradle.open(session).payload["correctArtist"] == "Florence + The Machine"


def test_three_misses_award_consolation(
    cradle: CradleRoom, session: GameSession, mock_llm_client: MockLLMClient
) -> None:
    first = _apply(session, cradle.guess(session, "Adele"))
    assert first.payload["completed"] is False
    assert first.payload["correctArtist"] is None
    assert first.payload["points"] == 0

    _apply(session, cradle.guess(session, "Adele"))
    final = _apply(session, cradle.guess(session, "Adele"))

    assert final.payload["completed"] is True
    assert final.payload["points"] == 10
    assert final.payload["reward"] == ""
    assert final.payload["correctArtist"] is None
    assert cradle.open(session).payload["correctArtist"] is None
    assert mock_llm_client.calls == []

    with pytest.raises(RoomCompletedError):
        cradle.ask(session, "too late?")
    assert cradle.open(session).payload["completed"] is True
