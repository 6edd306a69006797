"""Test configuration for the Ophiuchus project."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from ophiuchus.errors import BadRequestError, UnauthorizedError
from ophiuchus.identity import Identity
from ophiuchus.leaderboard import LeaderboardAggregator
from ophiuchus.llm import ContentGenerator, LLMClient, LLMMessage, LLMResponse
from ophiuchus.models import GameSession, Song
from ophiuchus.persistence import InMemoryDocumentStore
from ophiuchus.progression import QuestService
from ophiuchus.spotify import Artist, ListeningStats, SearchResults


class MockLLMClient(LLMClient):
    """Deterministic LLM client used in tests to avoid real API calls."""

    def __init__(
        self,
        responses: Sequence[LLMResponse | str] | None = None,
        *,
        fallback: str | None = None,
    ) -> None:
        self.calls: list[list[LLMMessage]] = []
        self._responses: list[LLMResponse] = []
        self._fallback = fallback

        if responses:
            for response in responses:
                self.queue_response(response)

    def queue_response(
        self,
        response: LLMResponse | str,
        *,
        role: str = "assistant",
        usage: Mapping[str, int] | None = None,
        metadata: Mapping[str, str] | None = None,
    ) -> None:
        """Append a response that will be returned on the next call."""

        if isinstance(response, LLMResponse):
            payload = response
        else:
            message = LLMMessage(role=role, content=response)
            payload = LLMResponse(
                message=message,
                usage=dict(usage or {}),
                metadata=dict(metadata or {}),
            )

        self._responses.append(payload)

    @property
    def prompts(self) -> list[str]:
        return [call[-1].content for call in self.calls]

    def complete(
        self,
        messages: Sequence[LLMMessage],
        *,
        temperature: float | None = None,
    ) -> LLMResponse:
        del temperature  # This mock ignores sampling parameters.

        self.calls.append(list(messages))
        if not self._responses:
            if self._fallback is not None:
                return LLMResponse(LLMMessage(role="assistant", content=self._fallback))
            raise AssertionError(
                "MockLLMClient expected a queued response but none remain",
            )

        return self._responses.pop(0)


class TickingClock:
    """Clock advancing one minute per reading."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current = value + timedelta(minutes=1)
        return value


class FixedSongSelector:
    """Always choose the same cosmic and intermediary songs."""

    def __init__(self, cosmic: Song, intermediary: Sequence[Song]) -> None:
        self.cosmic = cosmic
        self.intermediary = list(intermediary)
        self.calls: list[list[Song]] = []

    def select(self, candidates: Sequence[Song]) -> tuple[Song, list[Song]]:
        self.calls.append(list(candidates))
        if len(candidates) < 3:
            raise BadRequestError("Not enough tracks")
        return self.cosmic, list(self.intermediary)


class FakeTrackOracle:
    """In-memory stand-in for the Spotify catalogue."""

    def __init__(
        self,
        songs: Sequence[Song] = (),
        *,
        artists: Mapping[str, str] | None = None,
        stats: ListeningStats | None = None,
        user: tuple[str, str] = ("listener-1", "Listener One"),
    ) -> None:
        self.songs = list(songs)
        self.artists = dict(artists or {})
        self.stats = stats or ListeningStats()
        self.user = user
        self.calls: list[str] = []

    def listening_history(self) -> list[Song]:
        self.calls.append("listening_history")
        return list(self.songs)

    def search(self, query: str, *, type: str = "track", limit: int = 10) -> SearchResults:
        self.calls.append("search")
        if type == "artist":
            found = [
                Artist(id=artist_id, name=name)
                for artist_id, name in self.artists.items()
                if query.lower() in name.lower()
            ]
            return SearchResults(artists=found[:limit])
        found_songs = [song for song in self.songs if query.lower() in song.name.lower()]
        return SearchResults(tracks=found_songs[:limit])

    def track(self, track_id: str) -> Song:
        self.calls.append("track")
        for song in self.songs:
            if song.id == track_id:
                return song
        raise BadRequestError(f"Unknown track {track_id}")

    def artist_name(self, artist_id: str) -> str:
        self.calls.append("artist_name")
        try:
            return self.artists[artist_id]
        except KeyError:
            raise BadRequestError(f"Unknown artist {artist_id}") from None

    def listening_stats(self) -> ListeningStats:
        self.calls.append("listening_stats")
        return self.stats

    def current_user(self) -> tuple[str, str]:
        return self.user


class FakeIdentityProvider:
    """Resolve bearer tokens against a fixed set of identities."""

    def __init__(self, *identities: Identity) -> None:
        self.by_token = {identity.access_token: identity for identity in identities}

    def resolve(self, bearer_token: str | None) -> Identity:
        try:
            return self.by_token[bearer_token or ""]
        except KeyError:
            raise UnauthorizedError("Missing bearer token") from None


@pytest.fixture()
def mock_llm_client() -> MockLLMClient:
    """Return a deterministic mock client for use in tests."""

    return MockLLMClient()


@pytest.fixture()
def generator(mock_llm_client: MockLLMClient) -> ContentGenerator:
    return ContentGenerator(mock_llm_client)


@pytest.fixture()
def clock() -> TickingClock:
    return TickingClock()


@pytest.fixture()
def cosmic_song() -> Song:
    return Song(
        id="cosmic-1",
        name="Cosmic Love",
        artists=("Florence + The Machine",),
        album="Lungs",
        image_url="https://img.example/lungs.jpg",
        spotify_url="https://open.spotify.com/track/cosmic-1",
    )


@pytest.fixture()
def intermediary_songs() -> list[Song]:
    return [
        Song(id="inter-1", name="Dog Days Are Over", artists=("Florence + The Machine",)),
        Song(id="inter-2", name="Shake It Out", artists=("Florence + The Machine",)),
    ]


@pytest.fixture()
def session(cosmic_song: Song, intermediary_songs: list[Song]) -> GameSession:
    return GameSession(
        id="session-1",
        user_id="listener-1",
        spotify_user_id="listener-1",
        cosmic_song=cosmic_song,
        intermediary_songs=list(intermediary_songs),
        initial_clue="A starlit ache.",
    )


@pytest.fixture()
def store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture()
def identity() -> Identity:
    return Identity(
        user_id="listener-1",
        username="Listener One",
        access_token="token-1",
        spotify_user_id="listener-1",
    )


@pytest.fixture()
def oracle(cosmic_song: Song, intermediary_songs: list[Song]) -> FakeTrackOracle:
    return FakeTrackOracle(
        [cosmic_song, *intermediary_songs],
        artists={"artist-florence": "Florence + The Machine", "artist-other": "Adele"},
        stats=ListeningStats(
            top_artist="Florence + The Machine",
            top_genre="Indie Rock",
            top_tracks=(cosmic_song,),
            recent_tracks=(intermediary_songs[0],),
        ),
    )


@pytest.fixture()
def service(
    store: InMemoryDocumentStore,
    generator: ContentGenerator,
    clock: TickingClock,
    cosmic_song: Song,
    intermediary_songs: list[Song],
) -> QuestService:
    counter = iter(range(1, 1000))
    return QuestService(
        store,
        generator,
        selector=FixedSongSelector(cosmic_song, intermediary_songs),
        aggregator=LeaderboardAggregator(store, clock=clock),
        clock=clock,
        id_factory=lambda: f"session-{next(counter)}",
    )


def start_session(
    service: QuestService,
    mock_llm_client: MockLLMClient,
    songs: Sequence[Song],
    *,
    user_id: str = "listener-1",
    clue: str = "A starlit ache.",
) -> GameSession:
    """Create a session through the service with a queued initial clue."""

    mock_llm_client.queue_response(clue)
    return service.create_session(user_id, songs, spotify_user_id=user_id)


@pytest.fixture()
def started(
    service: QuestService,
    mock_llm_client: MockLLMClient,
    cosmic_song: Song,
    intermediary_songs: list[Song],
) -> GameSession:
    return start_session(service, mock_llm_client, [cosmic_song, *intermediary_songs])


def make_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "id": "track-1",
        "name": "Track One",
        "artists": [{"name": "Artist A"}, {"name": "Artist B"}],
        "album": {"name": "Album", "images": [{"url": "https://img.example/a.jpg"}]},
        "external_urls": {"spotify": "https://open.spotify.com/track/track-1"},
    }
    payload.update(overrides)
    return payload
