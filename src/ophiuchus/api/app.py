"""FastAPI application exposing the quest, room and leaderboard endpoints."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field
from starlette.responses import JSONResponse

from ..errors import BadRequestError, NotFoundError, QuestError
from ..identity import (
    Identity,
    IdentityProvider,
    OracleFactory,
    SpotifyIdentityProvider,
    parse_bearer,
)
from ..leaderboard import profile_payload
from ..llm import ContentGenerator, LLMClientError
from ..llm_providers import default_registry
from ..persistence import (
    FileDocumentStore,
    InMemoryDocumentStore,
    StoreHandle,
    StoreSource,
    song_to_payload,
)
from ..progression import QuestService
from ..speech import GeminiSpeechSynthesizer, audio_path
from ..spotify import SpotifyTrackOracle, TrackOracle
from .settings import OphiuchusSettings


logger = logging.getLogger(__name__)


class GuessRequest(BaseModel):
    """A guess naming a catalogue track."""

    guessedTrackId: str = Field(..., description="Catalogue id of the guessed track.")


class SkipRequest(BaseModel):
    room: str = Field(..., description="Room to skip; nova cannot be skipped.")


class QuestionRequest(BaseModel):
    question: str = Field(..., description="Free-text question about the hidden artist.")


class ArtistGuessRequest(BaseModel):
    guess: str | None = Field(None, description="Guessed artist name.")
    artistId: str | None = Field(None, description="Catalogue id of the guessed artist.")


class SongSuggestionRequest(BaseModel):
    trackId: str = Field(..., description="Catalogue id of the suggested track.")


class NovaAnswersRequest(BaseModel):
    answers: Dict[str, str] = Field(..., description="Answers keyed by question id.")


def create_store_handle(settings: OphiuchusSettings) -> StoreHandle:
    """Return a lazily opened store matching ``settings.store``."""

    if settings.store == "file":
        data_dir = settings.data_dir
        return StoreHandle(lambda: FileDocumentStore(data_dir / "store"))
    return StoreHandle(InMemoryDocumentStore)


def create_service(
    settings: OphiuchusSettings,
    *,
    store: StoreSource,
    generator: ContentGenerator | None = None,
) -> QuestService:
    """Wire a :class:`QuestService` from deployment settings."""

    if generator is None:
        options: Dict[str, Any] = {}
        if settings.llm_timeout is not None:
            options["timeout"] = settings.llm_timeout
        generator = default_registry().create_generator(
            settings.llm_provider, models=settings.llm_models, options=options
        )
    speech = None
    if settings.speech_enabled and settings.audio_dir is not None:
        speech = GeminiSpeechSynthesizer(settings.audio_dir)
    return QuestService(store, generator, speech=speech)


def _error_response(status_code: int, payload: Dict[str, Any]) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": payload})


def create_app(
    settings: OphiuchusSettings | None = None,
    *,
    service: QuestService | None = None,
    identity_provider: IdentityProvider | None = None,
    oracle_factory: OracleFactory | None = None,
    store: StoreSource | None = None,
) -> FastAPI:
    """Create the FastAPI app serving the quest endpoints."""

    resolved_settings = settings or OphiuchusSettings.from_env()
    make_oracle: OracleFactory = oracle_factory or (lambda token: SpotifyTrackOracle(token))
    identities = identity_provider or SpotifyIdentityProvider(make_oracle)

    handle = store if store is not None else create_store_handle(resolved_settings)
    quests = service or create_service(resolved_settings, store=handle)

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        yield
        if isinstance(handle, StoreHandle):
            handle.close()

    tags_metadata = [
        {"name": "Quests", "description": "Start, inspect, skip through and finish quests."},
        {"name": "Rooms", "description": "Puzzle interactions for each quest room."},
        {"name": "Leaderboard", "description": "Rankings, profiles and quest history."},
        {"name": "Catalogue", "description": "Track and artist search and room audio."},
    ]

    app = FastAPI(
        title="Ophiuchus Quest API",
        version="0.1.0",
        description=(
            "HTTP API for the Ophiuchus musical scavenger hunt: quests seeded "
            "from the player's listening history, AI-generated room puzzles and "
            "a cross-game leaderboard."
        ),
        openapi_tags=tags_metadata,
        lifespan=lifespan,
    )
    app.state.quest_service = quests

    @app.exception_handler(QuestError)
    async def handle_quest_error(_: Request, exc: QuestError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("Request failed: %s", exc.message)
        return _error_response(exc.status_code, exc.to_payload())

    @app.exception_handler(LLMClientError)
    async def handle_generation_error(_: Request, exc: LLMClientError) -> JSONResponse:
        logger.error("Content generation failed: %s", exc)
        return _error_response(
            500, {"code": "generation_failed", "message": "Content generation failed"}
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        fields = [".".join(str(part) for part in error["loc"][1:]) for error in exc.errors()]
        error = BadRequestError("Missing or invalid fields", extra={"fields": fields})
        return _error_response(error.status_code, error.to_payload())

    def current_identity(authorization: str | None = Header(None)) -> Identity:
        return identities.resolve(parse_bearer(authorization))

    def current_oracle(identity: Identity = Depends(current_identity)) -> TrackOracle:
        return make_oracle(identity.access_token)

    # Quests ----------------------------------------------------------------

    @app.post("/api/quests", status_code=201, tags=["Quests"])
    def start_quest(
        identity: Identity = Depends(current_identity),
        oracle: TrackOracle = Depends(current_oracle),
    ) -> Dict[str, Any]:
        return quests.start_quest(identity, oracle)

    @app.get("/api/quests/latest", tags=["Quests"])
    def latest_quest(identity: Identity = Depends(current_identity)) -> Dict[str, Any]:
        return {"session": quests.get_latest_session(identity.user_id)}

    @app.get("/api/quests/{session_id}", tags=["Quests"])
    def get_quest(
        session_id: str, identity: Identity = Depends(current_identity)
    ) -> Dict[str, Any]:
        return {"session": quests.get_session(session_id, identity.user_id)}

    @app.post("/api/quests/{session_id}/complete", tags=["Quests"])
    def complete_quest(
        session_id: str, identity: Identity = Depends(current_identity)
    ) -> Dict[str, Any]:
        game = quests.complete_session(
            session_id, identity.user_id, username=identity.username
        )
        return {
            "success": True,
            "archived": game is not None,
            "totalPoints": game.total_points if game is not None else None,
        }

    @app.post("/api/quests/{session_id}/skip", tags=["Quests"])
    def skip_room(
        session_id: str,
        payload: SkipRequest,
        identity: Identity = Depends(current_identity),
    ) -> Dict[str, Any]:
        return quests.skip_room(session_id, identity.user_id, payload.room)

    @app.post("/api/quests/{session_id}/final-guess", tags=["Quests"])
    def final_guess(
        session_id: str,
        payload: GuessRequest,
        identity: Identity = Depends(current_identity),
    ) -> Dict[str, Any]:
        return quests.submit_final_guess(session_id, identity.user_id, payload.guessedTrackId)

    # Rooms -----------------------------------------------------------------

    @app.get("/api/quests/{session_id}/rooms/nebula", tags=["Rooms"])
    def open_nebula(
        session_id: str, identity: Identity = Depends(current_identity)
    ) -> Dict[str, Any]:
        return quests.open_nebula(session_id, identity.user_id)

    @app.post("/api/quests/{session_id}/rooms/nebula", tags=["Rooms"])
    def guess_nebula(
        session_id: str,
        payload: GuessRequest,
        identity: Identity = Depends(current_identity),
    ) -> Dict[str, Any]:
        return quests.guess_nebula(session_id, identity.user_id, payload.guessedTrackId)

    @app.get("/api/quests/{session_id}/rooms/comet", tags=["Rooms"])
    def open_comet(
        session_id: str, identity: Identity = Depends(current_identity)
    ) -> Dict[str, Any]:
        return quests.open_comet(session_id, identity.user_id)

    @app.post("/api/quests/{session_id}/rooms/comet", tags=["Rooms"])
    def guess_comet(
        session_id: str,
        payload: GuessRequest,
        identity: Identity = Depends(current_identity),
    ) -> Dict[str, Any]:
        return quests.guess_comet(session_id, identity.user_id, payload.guessedTrackId)

    @app.get("/api/quests/{session_id}/rooms/cradle", tags=["Rooms"])
    def open_cradle(
        session_id: str, identity: Identity = Depends(current_identity)
    ) -> Dict[str, Any]:
        return quests.open_cradle(session_id, identity.user_id)

    @app.post("/api/quests/{session_id}/rooms/cradle/ask", tags=["Rooms"])
    def ask_cradle(
        session_id: str,
        payload: QuestionRequest,
        identity: Identity = Depends(current_identity),
    ) -> Dict[str, Any]:
        return quests.ask_cradle(session_id, identity.user_id, payload.question)

    @app.post("/api/quests/{session_id}/rooms/cradle/guess", tags=["Rooms"])
    def guess_cradle(
        session_id: str,
        payload: ArtistGuessRequest,
        identity: Identity = Depends(current_identity),
        oracle: TrackOracle = Depends(current_oracle),
    ) -> Dict[str, Any]:
        return quests.guess_cradle(
            session_id,
            identity.user_id,
            oracle,
            guess=payload.guess,
            artist_id=payload.artistId,
        )

    @app.get("/api/quests/{session_id}/rooms/aurora", tags=["Rooms"])
    def open_aurora(
        session_id: str, identity: Identity = Depends(current_identity)
    ) -> Dict[str, Any]:
        return quests.open_aurora(session_id, identity.user_id)

    @app.post("/api/quests/{session_id}/rooms/aurora", tags=["Rooms"])
    def submit_aurora(
        session_id: str,
        payload: SongSuggestionRequest,
        identity: Identity = Depends(current_identity),
        oracle: TrackOracle = Depends(current_oracle),
    ) -> Dict[str, Any]:
        return quests.submit_aurora(session_id, identity.user_id, oracle, payload.trackId)

    @app.get("/api/quests/{session_id}/rooms/nova", tags=["Rooms"])
    def open_nova(
        session_id: str,
        identity: Identity = Depends(current_identity),
        oracle: TrackOracle = Depends(current_oracle),
    ) -> Dict[str, Any]:
        return quests.open_nova(session_id, identity.user_id, oracle)

    @app.post("/api/quests/{session_id}/rooms/nova", tags=["Rooms"])
    def submit_nova(
        session_id: str,
        payload: NovaAnswersRequest,
        identity: Identity = Depends(current_identity),
    ) -> Dict[str, Any]:
        return quests.submit_nova(session_id, identity.user_id, payload.answers)

    # Leaderboard -----------------------------------------------------------

    @app.get("/api/leaderboard", tags=["Leaderboard"])
    def leaderboard(
        limit: int = Query(10, description="Entries per page (1-100)."),
        skip: int = Query(0, description="Entries to skip."),
        identity: Identity = Depends(current_identity),
    ) -> Dict[str, Any]:
        return quests.aggregator.leaderboard_page(identity.user_id, limit=limit, skip=skip)

    @app.get("/api/users/me/quests", tags=["Leaderboard"])
    def my_quests(identity: Identity = Depends(current_identity)) -> Dict[str, Any]:
        return {"quests": quests.aggregator.quest_history(identity.user_id)}

    @app.get("/api/users/me/profile", tags=["Leaderboard"])
    def my_profile(identity: Identity = Depends(current_identity)) -> Dict[str, Any]:
        return {"profile": profile_payload(quests.aggregator.profile(identity.user_id))}

    # Catalogue -------------------------------------------------------------

    @app.get("/api/spotify/search", tags=["Catalogue"])
    def search(
        q: str = Query(..., description="Search text."),
        type: str = Query("track", description="Either 'track' or 'artist'."),
        limit: int = Query(10, description="Maximum number of results."),
        oracle: TrackOracle = Depends(current_oracle),
    ) -> Dict[str, Any]:
        results = oracle.search(q, type=type, limit=limit)
        return {
            "tracks": [song_to_payload(song) for song in results.tracks],
            "artists": [
                {
                    "id": artist.id,
                    "name": artist.name,
                    "genres": list(artist.genres),
                    "imageUrl": artist.image_url,
                }
                for artist in results.artists
            ],
        }

    @app.get("/api/audio/{audio_id}", tags=["Catalogue"])
    def get_audio(audio_id: str) -> FileResponse:
        directory = resolved_settings.audio_dir
        path = audio_path(directory, audio_id) if directory is not None else None
        if path is None:
            raise NotFoundError(f"Audio '{audio_id}' not found")
        return FileResponse(path, media_type="audio/wav")

    return app


__all__ = ["create_app", "create_service", "create_store_handle"]
