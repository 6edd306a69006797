"""Identity boundary: who is making a request and with which credential."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Protocol

from .errors import UnauthorizedError
from .spotify import SpotifyTrackOracle, TrackOracle


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """A stable player identifier plus the bearer credential it came with."""

    user_id: str
    username: str
    access_token: str
    spotify_user_id: str = ""
    expires_at: datetime | None = None

    def require_valid(self, *, now: datetime | None = None) -> "Identity":
        """Return ``self`` or raise :class:`UnauthorizedError`."""

        if not self.user_id or not self.access_token:
            raise UnauthorizedError("No valid credential is available")
        if self.expires_at is not None:
            current = now or datetime.now(timezone.utc)
            expires_at = self.expires_at
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= current:
                raise UnauthorizedError("The access token has expired")
        return self


class IdentityProvider(Protocol):
    def resolve(self, bearer_token: str | None) -> Identity:
        """Return the identity behind ``bearer_token`` or raise ``UnauthorizedError``."""


OracleFactory = Callable[[str], TrackOracle]


class SpotifyIdentityProvider:
    """Resolve bearer tokens by asking Spotify who owns them.

    The Spotify user id doubles as the player id. Tokens are not refreshed.
    """

    def __init__(self, oracle_factory: OracleFactory | None = None) -> None:
        self._oracle_factory = oracle_factory or (
            lambda token: SpotifyTrackOracle(token)
        )

    def resolve(self, bearer_token: str | None) -> Identity:
        token = (bearer_token or "").strip()
        if not token:
            raise UnauthorizedError("Missing bearer token")
        spotify_user_id, display_name = self._oracle_factory(token).current_user()
        logger.debug("Resolved bearer token to Spotify user %s", spotify_user_id)
        return Identity(
            user_id=spotify_user_id,
            username=display_name,
            access_token=token,
            spotify_user_id=spotify_user_id,
        ).require_valid()


def parse_bearer(header_value: str | None) -> str | None:
    """Extract the token from an ``Authorization: Bearer <token>`` header."""

    if not header_value:
        return None
    scheme, _, token = header_value.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


__all__ = [
    "Identity",
    "IdentityProvider",
    "OracleFactory",
    "SpotifyIdentityProvider",
    "parse_bearer",
]
