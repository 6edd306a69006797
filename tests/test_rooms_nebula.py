from __future__ import annotations

import pytest

from ophiuchus.errors import BadRequestError, RoomCompletedError
from ophiuchus.llm import ContentGenerator, LLMClient, LLMClientError
from ophiuchus.models import GameSession, Room
from ophiuchus.rooms import NebulaRoom
from ophiuchus.rooms.base import RoomResult, points_for_attempt

from tests.conftest import MockLLMClient, TickingClock


def _apply(session: GameSession, result: RoomResult) -> None:
    if result.clue is not None:
        session.room_clues[Room.NEBULA] = result.clue


@pytest.fixture()
def nebula(generator: ContentGenerator, clock: TickingClock) -> NebulaRoom:
    return NebulaRoom(generator, clock=clock)


def test_points_for_attempt_clamps_to_last_entry() -> None:
    assert points_for_attempt(1, (100, 50, 25)) == 100
    assert points_for_attempt(5, (100, 50, 25)) == 25
    with pytest.raises(ValueError):
        points_for_attempt(0, (100,))


def test_open_generates_riddle_once(
    nebula: NebulaRoom, session: GameSession, mock_llm_client: MockLLMClient
) -> None:
    mock_llm_client.queue_response("Dogs run from the flood")

    first = nebula.open(session)
    _apply(session, first)
    second = nebula.open(session)

    assert first.payload == {
        "completed": False,
        "riddle": "Dogs run from the flood",
        "attempts": 0,
        "attemptsRemaining": 3,
    }
    assert second.clue is None
    assert second.payload == first.payload
    assert len(mock_llm_client.calls) == 1
    assert "Dog Days Are Over" in mock_llm_client.prompts[0]


def test_first_attempt_success_scores_100(
    nebula: NebulaRoom, session: GameSession, mock_llm_client: MockLLMClient
) -> None:
    mock_llm_client.queue_response("A reward verse")

    result = nebula.guess(session, "inter-1")

    assert result.payload["correct"] is True
    assert result.payload["points"] == 100
    assert result.payload["reward"] == "A reward verse"
    assert result.payload["revealedSong"]["id"] == "inter-1"
    assert result.clue.completed is True
    assert result.clue.clue == "A reward verse"
    assert "Cosmic Love" in mock_llm_client.prompts[0]


def test_third_failure_closes_room_with_penalty(
    nebula: NebulaRoom, session: GameSession, mock_llm_client: MockLLMClient
) -> None:
    for _ in range(2):
        result = nebula.guess(session, "wrong")
        _apply(session, result)
        assert result.payload["completed"] is False
        assert result.payload["revealedSong"] is None
    assert mock_llm_client.calls == []

    mock_llm_client.queue_response("A harder verse")
    final = nebula.guess(session, "wrong")

    assert final.payload["penalty"] == "A harder verse"
    assert final.payload["attemptsRemaining"] == 0
    assert final.payload["points"] == 0
    assert final.clue.completed is True
    assert final.clue.correct is False


def test_late_success_scores_less(session: GameSession) -> None:
    mock = MockLLMClient(fallback="verse")
    engine = NebulaRoom(ContentGenerator(mock))
    _apply(session, engine.guess(session, "wrong"))

    result = engine.guess(session, "inter-1")

    assert result.payload["points"] == 50
    assert result.clue.attempts == 2


def test_completed_room_rejects_guesses_and_reopens_read_only(
    nebula: NebulaRoom, session: GameSession, mock_llm_client: MockLLMClient
) -> None:
    mock_llm_client.queue_response("reward")
    _apply(session, nebula.guess(session, "inter-1"))

    with pytest.raises(RoomCompletedError):
        nebula.guess(session, "inter-1")

    reopened = nebula.open(session)
    assert reopened.clue is None
    assert reopened.payload["completed"] is True
    assert reopened.payload["points"] == 100


def test_blank_guess_is_rejected(nebula: NebulaRoom, session: GameSession) -> None:
    with pytest.raises(BadRequestError):
        nebula.guess(session, "   ")


class _UnavailableClient(LLMClient):
    def complete(self, messages, *, temperature=None):
        raise LLMClientError("model unavailable")


def test_generation_failure_leaves_nothing_to_store(
    session: GameSession, clock: TickingClock
) -> None:
    engine = NebulaRoom(ContentGenerator(_UnavailableClient()), clock=clock)

    with pytest.raises(LLMClientError):
        engine.open(session)
    assert session.room_clues == {}
