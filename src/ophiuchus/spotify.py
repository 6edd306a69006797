"""Spotify-backed track oracle: listening history, search, and metadata."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Protocol, Sequence, TypeVar

import spotipy

from .errors import BadRequestError, TrackOracleError, UnauthorizedError
from .models import Song


logger = logging.getLogger(__name__)

HISTORY_LIMIT = 49
SEARCH_TYPES = ("track", "artist")

T = TypeVar("T")


def song_from_track(payload: Mapping[str, Any]) -> Song:
    """Map a Spotify track object onto :class:`Song`.

    This is the only place the wire format is interpreted; everything past
    this point works with typed songs.
    """

    if not isinstance(payload, Mapping):
        raise ValueError("track payload must be an object")
    track_id = payload.get("id")
    name = payload.get("name")
    if not isinstance(track_id, str) or not track_id:
        raise ValueError("track payload is missing an id")
    if not isinstance(name, str) or not name:
        raise ValueError(f"track {track_id} is missing a name")

    album = payload.get("album") or {}
    images = album.get("images") or []
    external_urls = payload.get("external_urls") or {}
    return Song(
        id=track_id,
        name=name,
        artists=tuple(
            str(artist.get("name"))
            for artist in payload.get("artists") or []
            if artist.get("name")
        ),
        album=str(album.get("name") or ""),
        image_url=str(images[0].get("url") or "") if images else "",
        spotify_url=external_urls.get("spotify") or None,
    )


@dataclass(frozen=True)
class Artist:
    id: str
    name: str
    genres: tuple[str, ...] = ()
    image_url: str = ""


def artist_from_payload(payload: Mapping[str, Any]) -> Artist:
    images = payload.get("images") or []
    return Artist(
        id=str(payload.get("id") or ""),
        name=str(payload.get("name") or ""),
        genres=tuple(str(genre) for genre in payload.get("genres") or []),
        image_url=str(images[0].get("url") or "") if images else "",
    )


@dataclass(frozen=True)
class ListeningStats:
    """Short-term listening snapshot used by the memory quiz."""

    top_artist: str | None = None
    top_genre: str | None = None
    top_tracks: Sequence[Song] = field(default_factory=tuple)
    recent_tracks: Sequence[Song] = field(default_factory=tuple)
    play_hours: Sequence[int] = field(default_factory=tuple)


@dataclass(frozen=True)
class SearchResults:
    tracks: Sequence[Song] = ()
    artists: Sequence[Artist] = ()


class TrackOracle(Protocol):
    """Read-only view of a player's catalogue and listening history."""

    def listening_history(self) -> List[Song]:
        ...

    def search(self, query: str, *, type: str = "track", limit: int = 10) -> SearchResults:
        ...

    def track(self, track_id: str) -> Song:
        ...

    def artist_name(self, artist_id: str) -> str:
        ...

    def listening_stats(self) -> ListeningStats:
        ...

    def current_user(self) -> tuple[str, str]:
        ...


class SpotifyTrackOracle:
    """:class:`TrackOracle` implementation using ``spotipy`` and a bearer token."""

    def __init__(
        self,
        access_token: str | None = None,
        *,
        client: Any | None = None,
        requests_timeout: float = 10.0,
    ) -> None:
        if client is None:
            if not access_token:
                raise UnauthorizedError("A Spotify access token is required")
            client = spotipy.Spotify(
                auth=access_token, requests_timeout=requests_timeout, retries=0
            )
        self._client = client

    def listening_history(self) -> List[Song]:
        """Merge saved, recent, and top tracks, weighted by how they appear.

        Saved and recently played tracks count once, top tracks twice. The
        result is ordered by weight, ties keeping first-seen order.
        """

        saved = self._call(self._client.current_user_saved_tracks, limit=HISTORY_LIMIT)
        recent = self._call(
            self._client.current_user_recently_played, limit=HISTORY_LIMIT
        )
        top = self._call(self._client.current_user_top_tracks, limit=HISTORY_LIMIT)

        weighted: Dict[str, tuple[Song, int]] = {}
        sources = (
            ([item.get("track") for item in _items(saved)], 1),
            ([item.get("track") for item in _items(recent)], 1),
            (_items(top), 2),
        )
        for tracks, weight in sources:
            for payload in tracks:
                song = _safe_song(payload)
                if song is None:
                    continue
                previous = weighted.get(song.id)
                total = weight + (previous[1] if previous else 0)
                weighted[song.id] = (previous[0] if previous else song, total)

        ordered = sorted(weighted.values(), key=lambda pair: pair[1], reverse=True)
        logger.debug("Listening history holds %d unique tracks", len(ordered))
        return [song for song, _ in ordered]

    def search(self, query: str, *, type: str = "track", limit: int = 10) -> SearchResults:
        query = (query or "").strip()
        if not query:
            raise BadRequestError("Search query is required")
        if type not in SEARCH_TYPES:
            raise BadRequestError(f"Search type must be one of {', '.join(SEARCH_TYPES)}")
        if not 1 <= limit <= 50:
            raise BadRequestError("Search limit must be between 1 and 50")

        payload = self._call(self._client.search, q=query, limit=limit, type=type)
        if type == "track":
            tracks = [
                song
                for song in (_safe_song(item) for item in _items((payload or {}).get("tracks")))
                if song is not None
            ]
            return SearchResults(tracks=tracks)
        artists = [
            artist_from_payload(item)
            for item in _items((payload or {}).get("artists"))
            if item and item.get("id")
        ]
        return SearchResults(artists=artists)

    def track(self, track_id: str) -> Song:
        if not track_id or not track_id.strip():
            raise BadRequestError("A track id is required")
        payload = self._call(self._client.track, track_id.strip())
        try:
            return song_from_track(payload)
        except ValueError as exc:
            raise TrackOracleError(f"Spotify returned an unusable track for {track_id}") from exc

    def artist_name(self, artist_id: str) -> str:
        payload = self._call(self._client.artist, artist_id.strip())
        name = (payload or {}).get("name")
        if not name:
            raise TrackOracleError(f"Spotify returned no name for artist {artist_id}")
        return str(name)

    def listening_stats(self) -> ListeningStats:
        top_artists = _items(
            self._call(
                self._client.current_user_top_artists, limit=1, time_range="short_term"
            )
        )
        top_tracks = _items(
            self._call(
                self._client.current_user_top_tracks, limit=5, time_range="short_term"
            )
        )
        recent = _items(self._call(self._client.current_user_recently_played, limit=10))

        artist = artist_from_payload(top_artists[0]) if top_artists else None
        return ListeningStats(
            top_artist=artist.name if artist else None,
            top_genre=(artist.genres[0] if artist and artist.genres else "Pop"),
            top_tracks=tuple(s for s in map(_safe_song, top_tracks) if s is not None),
            recent_tracks=tuple(
                s for s in (_safe_song(item.get("track")) for item in recent) if s is not None
            ),
            play_hours=tuple(
                hour
                for hour in (_played_hour(item.get("played_at")) for item in recent)
                if hour is not None
            ),
        )

    def current_user(self) -> tuple[str, str]:
        payload = self._call(self._client.current_user) or {}
        user_id = payload.get("id")
        if not user_id:
            raise UnauthorizedError("Spotify did not identify the current user")
        return str(user_id), str(payload.get("display_name") or user_id)

    def _call(self, operation: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        try:
            return operation(*args, **kwargs)
        except spotipy.SpotifyException as exc:
            if exc.http_status == 401:
                raise UnauthorizedError("Spotify rejected the access token") from exc
            if exc.http_status in (400, 404):
                raise BadRequestError(f"Spotify could not resolve the request: {exc.msg}") from exc
            logger.warning("Spotify request failed with status %s", exc.http_status)
            raise TrackOracleError("Spotify request failed") from exc
        except Exception as exc:
            logger.warning("Spotify request failed: %s", exc)
            raise TrackOracleError("Spotify request failed") from exc


def _items(payload: Any) -> List[Any]:
    if not isinstance(payload, Mapping):
        return []
    return [item for item in payload.get("items") or [] if item]


def _safe_song(payload: Any) -> Song | None:
    try:
        return song_from_track(payload)
    except ValueError:
        # Local files and unavailable tracks carry no id.
        return None


def _played_hour(value: Any) -> int | None:
    """Hour of day (UTC) of a recently-played ``played_at`` timestamp."""

    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip().replace("Z", "+00:00")).hour
    except ValueError:
        return None


__all__ = [
    "Artist",
    "ListeningStats",
    "SearchResults",
    "SpotifyTrackOracle",
    "TrackOracle",
    "artist_from_payload",
    "song_from_track",
]
