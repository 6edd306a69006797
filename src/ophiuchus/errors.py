"""Exception taxonomy shared by the quest engine and the HTTP layer."""

from __future__ import annotations

from typing import Any, Mapping


class QuestError(RuntimeError):
    """Base class for failures that carry a machine-readable error code."""

    code = "quest_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        extra: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.extra: dict[str, Any] = dict(extra or {})

    def to_payload(self) -> dict[str, Any]:
        """Return the JSON error body exposed to API clients."""

        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        payload.update(self.extra)
        return payload

    def __str__(self) -> str:  # pragma: no cover - trivial representation
        return self.message


class UnauthorizedError(QuestError):
    """Raised when no valid identity or credential is available."""

    code = "unauthorized"
    status_code = 401


class ForbiddenError(QuestError):
    """Raised when a valid identity does not own the requested resource."""

    code = "forbidden"
    status_code = 403


class NotFoundError(QuestError, KeyError):
    """Raised when a session or profile does not exist."""

    code = "not_found"
    status_code = 404


class BadRequestError(QuestError, ValueError):
    """Raised for missing or invalid input detected before any mutation."""

    code = "bad_request"
    status_code = 400


class QuotaExceededError(BadRequestError):
    """Raised when a room's question or attempt allowance is used up."""

    code = "quota_exceeded"


class RoomLockedError(BadRequestError):
    """Raised when a room is requested before its prerequisites are met."""

    code = "room_locked"


class ConflictError(QuestError):
    """Raised when the requested transition clashes with the stored state."""

    code = "conflict"
    status_code = 409


class SessionCompletedError(ConflictError):
    """Raised when a mutation targets a session that is already completed."""

    code = "session_completed"


class RoomCompletedError(ConflictError):
    """Raised when a mutation targets a room whose outcome is frozen."""

    code = "room_completed"


class InternalError(QuestError):
    """Raised when a collaborator (store, catalogue) fails."""

    code = "internal"
    status_code = 500


class TrackOracleError(InternalError):
    """Raised when the music catalogue cannot satisfy a request."""

    code = "track_oracle_failed"


__all__ = [
    "BadRequestError",
    "ConflictError",
    "ForbiddenError",
    "InternalError",
    "NotFoundError",
    "QuestError",
    "QuotaExceededError",
    "RoomCompletedError",
    "RoomLockedError",
    "SessionCompletedError",
    "TrackOracleError",
    "UnauthorizedError",
]
