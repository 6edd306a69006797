import json
from datetime import datetime, timezone
from pathlib import Path

import pytest

from ophiuchus.models import (
    CompletedGame,
    GameSession,
    OphiuchusIdentity,
    Room,
    RoomClue,
    UserProfile,
)
from ophiuchus.persistence import (
    DESCENDING,
    DuplicateKeyError,
    FileDocumentStore,
    InMemoryDocumentStore,
    PROFILES,
    SESSIONS,
    StoreHandle,
    VERSION_FIELD,
    VersionConflictError,
    matches_filter,
    profile_from_document,
    profile_to_document,
    resolve_store,
    session_from_document,
    session_to_document,
    sort_documents,
)


def test_insert_get_and_delete_round_trip() -> None:
    store = InMemoryDocumentStore()

    stored = store.insert("things", {"_id": "a", "value": 1})

    assert stored[VERSION_FIELD] == 1
    assert store.get("things", "a") == {"_id": "a", "value": 1, VERSION_FIELD: 1}
    assert store.delete("things", "a") is True
    assert store.delete("things", "a") is False
    assert store.get("things", "a") is None


def test_insert_rejects_duplicates_and_invalid_ids() -> None:
    store = InMemoryDocumentStore()
    store.insert("things", {"_id": "a"})

    with pytest.raises(DuplicateKeyError):
        store.insert("things", {"_id": "a"})
    with pytest.raises(ValueError):
        store.insert("things", {"_id": "   "})
    with pytest.raises(TypeError):
        store.insert("things", {"_id": 7})


def test_returned_documents_are_copies() -> None:
    store = InMemoryDocumentStore()
    store.insert("things", {"_id": "a", "tags": ["x"]})

    fetched = store.get("things", "a")
    fetched["tags"].append("y")

    assert store.get("things", "a")["tags"] == ["x"]


def test_find_filters_sorts_and_paginates() -> None:
    store = InMemoryDocumentStore()
    for doc_id, points in [("a", 10), ("b", 30), ("c", 20), ("d", 30)]:
        store.insert("scores", {"_id": doc_id, "points": points})

    ordered = store.find("scores", sort=[("points", DESCENDING), ("_id", 1)])
    assert [document["_id"] for document in ordered] == ["b", "d", "c", "a"]

    page = store.find("scores", sort=[("points", DESCENDING), ("_id", 1)], skip=1, limit=2)
    assert [document["_id"] for document in page] == ["d", "c"]

    assert store.count("scores", {"points": {"$gt": 15}}) == 3
    assert store.find_one("scores", {"points": 20})["_id"] == "c"
    assert store.find_one("scores", {"points": 99}) is None


def test_find_rejects_negative_pagination() -> None:
    store = InMemoryDocumentStore()

    with pytest.raises(ValueError):
        store.find("scores", skip=-1)
    with pytest.raises(ValueError):
        store.find("scores", limit=-1)


def test_matches_filter_operators() -> None:
    document = {"points": 40, "room": "comet"}

    assert matches_filter(document, {"points": {"$gte": 40, "$lt": 50}})
    assert matches_filter(document, {"room": {"$in": ["comet", "nova"]}})
    assert matches_filter(document, {"room": {"$ne": "nebula"}})
    assert not matches_filter(document, {"missing": {"$gt": 0}})
    with pytest.raises(ValueError):
        matches_filter(document, {"points": {"$regex": "4"}})


def test_sort_documents_places_missing_values_first() -> None:
    documents = [{"_id": "a", "at": "2024"}, {"_id": "b"}, {"_id": "c", "at": "2023"}]

    assert [doc["_id"] for doc in sort_documents(documents, [("at", 1)])] == ["b", "c", "a"]
    with pytest.raises(ValueError):
        sort_documents(documents, [("at", 0)])


def test_replace_checks_expected_version() -> None:
    store = InMemoryDocumentStore()
    store.insert("things", {"_id": "a", "value": 1})

    updated = store.replace("things", "a", {"value": 2}, expected_version=1)
    assert updated == {"_id": "a", "value": 2, VERSION_FIELD: 2}

    with pytest.raises(VersionConflictError):
        store.replace("things", "a", {"value": 3}, expected_version=1)
    assert store.get("things", "a")["value"] == 2


def test_replace_missing_document() -> None:
    store = InMemoryDocumentStore()

    with pytest.raises(KeyError):
        store.replace("things", "a", {"value": 1})
    with pytest.raises(VersionConflictError):
        store.replace("things", "a", {"value": 1}, expected_version=1)

    created = store.replace("things", "a", {"value": 1}, upsert=True)
    assert created[VERSION_FIELD] == 1


def test_transaction_rolls_back_every_collection() -> None:
    store = InMemoryDocumentStore()
    store.insert("profiles", {"_id": "u1", "points": 10})

    with pytest.raises(RuntimeError):
        with store.transaction():
            store.replace("profiles", "u1", {"points": 20})
            store.insert("leaderboard", {"_id": "u1", "points": 20})
            raise RuntimeError("boom")

    assert store.get("profiles", "u1")["points"] == 10
    assert store.get("leaderboard", "u1") is None


def test_nested_transaction_commits_with_outer() -> None:
    store = InMemoryDocumentStore()

    with store.transaction():
        with store.transaction():
            store.insert("things", {"_id": "a"})
        store.insert("things", {"_id": "b"})

    assert store.count("things") == 2


def test_file_store_persists_between_instances(tmp_path: Path) -> None:
    store = FileDocumentStore(tmp_path)
    store.insert("things", {"_id": "a", "value": 1})
    store.replace("things", "a", {"value": 2}, expected_version=1)

    payload = json.loads((tmp_path / "things.json").read_text(encoding="utf-8"))
    assert payload == [{"_id": "a", "value": 2, VERSION_FIELD: 2}]

    reloaded = FileDocumentStore(tmp_path)
    assert reloaded.get("things", "a")["value"] == 2
    assert not list(tmp_path.glob("*.tmp"))


def test_file_store_writes_once_per_transaction(tmp_path: Path) -> None:
    store = FileDocumentStore(tmp_path)

    with pytest.raises(RuntimeError):
        with store.transaction():
            store.insert("things", {"_id": "a"})
            raise RuntimeError("abort")

    assert not (tmp_path / "things.json").exists()
    assert FileDocumentStore(tmp_path).get("things", "a") is None


def test_file_store_rejects_corrupt_collection(tmp_path: Path) -> None:
    (tmp_path / "things.json").write_text("{}", encoding="utf-8")

    with pytest.raises(ValueError):
        FileDocumentStore(tmp_path)


def test_store_handle_opens_lazily_and_closes() -> None:
    created: list[InMemoryDocumentStore] = []

    def factory() -> InMemoryDocumentStore:
        created.append(InMemoryDocumentStore())
        return created[-1]

    handle = StoreHandle(factory)
    assert handle.is_open is False

    first = resolve_store(handle)
    assert resolve_store(handle) is first
    assert len(created) == 1

    handle.close()
    assert handle.is_open is False
    assert resolve_store(handle) is not first


def test_resolve_store_passes_stores_through() -> None:
    store = InMemoryDocumentStore()
    assert resolve_store(store) is store


def test_session_document_round_trip(session: GameSession) -> None:
    session.rooms_completed = [Room.NEBULA, Room.NEBULA, Room.COMET]
    session.room_clues = {
        Room.NEBULA: RoomClue(
            clue="Seek the blue hour",
            correct=True,
            score=0.5,
            points=50,
            attempts=1,
            completed=True,
            puzzle={"targetSongId": "inter-1"},
            updated_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc),
        )
    }
    session.created_at = datetime(2024, 5, 1, 11, 0, tzinfo=timezone.utc)

    document = session_to_document(session)
    assert document["roomsCompleted"] == ["nebula", "comet"]
    assert document["cosmicSong"]["spotifyUrl"] == "https://open.spotify.com/track/cosmic-1"

    store = InMemoryDocumentStore()
    restored = session_from_document(store.insert(SESSIONS, document))

    assert restored.version == 1
    assert restored.rooms_completed == [Room.NEBULA, Room.COMET]
    assert restored.room_clues[Room.NEBULA].points == 50
    assert restored.room_clues[Room.NEBULA].puzzle == {"targetSongId": "inter-1"}
    assert restored.cosmic_song == session.cosmic_song
    assert restored.created_at == session.created_at


def test_session_document_rejects_unknown_rooms(session: GameSession) -> None:
    document = session_to_document(session)
    document["roomsCompleted"] = ["basement"]

    with pytest.raises(ValueError):
        session_from_document(document)


def test_profile_document_round_trip() -> None:
    completed_at = datetime(2024, 5, 2, 9, 30, tzinfo=timezone.utc)
    profile = UserProfile(
        user_id="listener-1",
        spotify_user_id="spotify-1",
        username="Listener One",
        total_games_played=1,
        total_points=120,
        completed_games=[
            CompletedGame(
                session_id="session-1",
                cosmic_song={"id": "cosmic-1", "name": "Cosmic Love"},
                total_points=120,
                room_points={"nebula": 50, "comet": 70},
                final_guess_attempts=1,
                ophiuchus_identity=OphiuchusIdentity("The Seeker", "Hunts for light."),
                completed_at=completed_at,
            )
        ],
        last_played_at=completed_at,
    )

    store = InMemoryDocumentStore()
    restored = profile_from_document(store.insert(PROFILES, profile_to_document(profile)))

    assert restored == profile
    assert restored.has_archived("session-1")


def test_profile_document_requires_completion_time() -> None:
    document = {
        "userId": "listener-1",
        "completedGames": [
            {
                "sessionId": "session-1",
                "ophiuchusIdentity": {"title": "The Seeker"},
            }
        ],
    }

    with pytest.raises(ValueError):
        profile_from_document(document)
