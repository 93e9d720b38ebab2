"""Tests for rooms, matchmaking and stats."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from xxxo.game import Board, GameState, Score
from xxxo.rooms import (
    MatchmakingQueue,
    RoomAccessError,
    RoomFullError,
    RoomNotFoundError,
    RoomRegistry,
    RoomStateError,
    estimated_wait,
)
from xxxo.server import app


client = TestClient(app)

# Only (0, 0) and (4, 4) are empty; no line holds more than two equal marks
NEARLY_FULL = Board.from_rows(
    [
        ["", "X", "O", "O", "X"],
        ["O", "O", "X", "X", "O"],
        ["X", "X", "O", "O", "X"],
        ["O", "O", "X", "X", "O"],
        ["X", "X", "O", "O", ""],
    ]
)


def _started_room():
    created = client.post("/api/rooms", json={"playerName": "ada"}).json()
    code = created["roomCode"]
    joined = client.post(f"/api/rooms/{code}/join", json={"playerName": "grace"}).json()
    started = client.post(f"/api/rooms/{code}/start", json={"playerId": created["playerId"]})
    assert started.status_code == 200
    return code, created["playerId"], joined["playerId"]


# ---------- Registry ----------


def test_registry_room_lifecycle():
    registry = RoomRegistry()
    room, host = registry.create("ada")
    assert len(room.code) == 6
    assert room.status == "waiting"

    _, guest = registry.join(room.code.lower(), "grace")
    with pytest.raises(RoomFullError):
        registry.join(room.code, "linus")
    with pytest.raises(RoomAccessError):
        registry.start(room.code, guest.player_id)

    started = registry.start(room.code, host.player_id)
    assert started.status == "playing"
    assert started.state == GameState()
    assert started.mark_of(host.player_id) == "X"
    assert started.mark_of(guest.player_id) == "O"

    with pytest.raises(RoomStateError):
        registry.join(room.code, "linus")


def test_registry_cannot_start_alone():
    registry = RoomRegistry()
    room, host = registry.create("ada")
    with pytest.raises(RoomStateError):
        registry.start(room.code, host.player_id)


def test_registry_unknown_room():
    with pytest.raises(RoomNotFoundError):
        RoomRegistry().get("NOPE00")


def test_registry_expires_idle_rooms():
    now = [1000.0]
    registry = RoomRegistry(ttl_seconds=60, clock=lambda: now[0])
    waiting, _ = registry.create("ada")
    playing, _, _ = registry.pair("grace", "linus")

    now[0] += 61
    with pytest.raises(RoomNotFoundError):
        registry.get(waiting.code)
    assert registry.get(playing.code).status == "playing"


def test_registry_expires_games_left_idle():
    now = [1000.0]
    registry = RoomRegistry(ttl_seconds=60, idle_ttl_seconds=600, clock=lambda: now[0])
    active, first, _ = registry.pair("ada", "grace")
    abandoned, _, _ = registry.pair("linus", "ken")

    now[0] += 500
    registry.move(active.code, first.player_id, (0, 0))
    now[0] += 200
    # Idle time counts from the last move, not from when the room opened
    assert registry.get(active.code).status == "playing"
    with pytest.raises(RoomNotFoundError):
        registry.get(abandoned.code)


def test_registry_player_name_lookup():
    registry = RoomRegistry()
    room, first, second = registry.pair("ada", "grace")
    assert registry.player_name(room.code.lower(), second.player_id) == "grace"
    assert registry.player_name(room.code, "stranger") is None
    assert registry.player_name("NOPE00", first.player_id) is None


def test_registry_records_stats_when_game_ends():
    registry = RoomRegistry()
    room, first, second = registry.pair("ada", "grace")
    room.state = GameState(board=NEARLY_FULL, score=Score(3, 1))

    result = registry.move(room.code, first.player_id, (0, 0))
    assert result.game_ended
    assert registry.get(room.code).status == "finished"

    ada = registry.stats("ada")
    assert (ada.games_played, ada.games_won, ada.total_score) == (1, 1, result.state.score.x)
    grace = registry.stats("grace")
    assert (grace.games_played, grace.games_won, grace.total_score) == (1, 0, 1)
    assert registry.stats("nobody").games_played == 0


def test_registry_rejects_strangers():
    registry = RoomRegistry()
    room, _, _ = registry.pair("ada", "grace")
    with pytest.raises(RoomAccessError):
        registry.move(room.code, "stranger", (0, 0))


# ---------- Queue ----------


def test_queue_pairs_in_arrival_order():
    queue = MatchmakingQueue()
    first, opponent = queue.join("ada")
    assert opponent is None
    assert len(queue) == 1

    second, opponent = queue.join("grace")
    assert opponent == first
    assert queue.position(second.ticket_id) is None
    assert len(queue) == 0


def test_queue_positions_and_leave():
    queue = MatchmakingQueue()
    first, _ = queue.join("ada")
    assert queue.position(first.ticket_id) == 1
    assert queue.leave(first.ticket_id)
    assert not queue.leave(first.ticket_id)
    assert queue.position(first.ticket_id) is None


def test_estimated_wait():
    assert estimated_wait(0) == 5
    assert estimated_wait(1) == 10
    assert estimated_wait(3) == 30


# ---------- HTTP ----------


def test_room_play_over_http():
    code, host_id, guest_id = _started_room()

    status = client.get(f"/api/rooms/{code}").json()
    assert status["status"] == "playing"
    assert [p["symbol"] for p in status["players"]] == ["X", "O"]
    assert status["gameState"]["currentPlayer"] == "X"

    out_of_turn = client.post(
        f"/api/rooms/{code}/move", json={"playerId": guest_id, "row": 0, "col": 0}
    )
    assert out_of_turn.status_code == 400
    assert out_of_turn.json()["reason"] == "not_your_turn"

    moved = client.post(
        f"/api/rooms/{code}/move", json={"playerId": host_id, "row": 0, "col": 0}
    )
    assert moved.status_code == 200
    body = moved.json()
    assert body["pointsGained"] == 0
    assert body["gameEnded"] is False
    assert body["winner"] is None
    assert body["room"]["gameState"]["board"][0][0] == "X"
    assert body["room"]["gameState"]["currentPlayer"] == "O"


def test_room_rejects_stranger_http():
    code, _, _ = _started_room()
    response = client.post(
        f"/api/rooms/{code}/move", json={"playerId": "stranger", "row": 0, "col": 0}
    )
    assert response.status_code == 403


def test_join_full_room_http():
    code, _, _ = _started_room()
    response = client.post(f"/api/rooms/{code}/join", json={"playerName": "linus"})
    assert response.status_code == 409


def test_missing_room_http():
    assert client.get("/api/rooms/NOPE00").status_code == 404


def test_stats_endpoint_defaults_to_zero():
    response = client.get("/api/stats/someone-new")
    assert response.status_code == 200
    assert response.json() == {
        "playerName": "someone-new",
        "gamesPlayed": 0,
        "gamesWon": 0,
        "totalScore": 0,
    }


# ---------- WebSockets ----------


def test_room_channel_applies_moves():
    code, host_id, guest_id = _started_room()
    with client.websocket_connect(f"/ws/rooms/{code}") as ws:
        snapshot = ws.receive_json()
        assert snapshot["type"] == "room-updated"
        assert snapshot["room"]["roomCode"] == code

        ws.send_json({"type": "make-move", "playerId": host_id, "row": 1, "col": 1})
        update = ws.receive_json()
        assert update["type"] == "room-updated"
        assert update["room"]["gameState"]["board"][1][1] == "X"

        ws.send_json({"type": "make-move", "playerId": guest_id, "row": 1, "col": 1})
        error = ws.receive_json()
        assert error["type"] == "error"
        assert error["reason"] == "cell_occupied"


def test_room_channel_unknown_room():
    with client.websocket_connect("/ws/rooms/NOPE00") as ws:
        message = ws.receive_json()
        assert message["type"] == "error"


def test_room_channel_reports_malformed_json():
    code, host_id, _ = _started_room()
    with client.websocket_connect(f"/ws/rooms/{code}") as ws:
        ws.receive_json()
        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "message": "Malformed JSON"}

        # The socket stays usable afterwards
        ws.send_json({"type": "make-move", "playerId": host_id, "row": 0, "col": 0})
        assert ws.receive_json()["type"] == "room-updated"


def test_room_channel_announces_departure_of_named_player():
    code, host_id, _ = _started_room()
    with TestClient(app) as local_client:
        with local_client.websocket_connect(f"/ws/rooms/{code}") as guest:
            guest.receive_json()
            with local_client.websocket_connect(
                f"/ws/rooms/{code}?playerId={host_id}"
            ) as host:
                host.receive_json()
            departed = guest.receive_json()

    assert departed == {"type": "player-disconnected", "playerName": "ada"}


def test_room_channel_learns_player_from_first_move():
    code, host_id, _ = _started_room()
    with TestClient(app) as local_client:
        with local_client.websocket_connect(f"/ws/rooms/{code}") as guest:
            guest.receive_json()
            with local_client.websocket_connect(f"/ws/rooms/{code}") as host:
                host.receive_json()
                host.send_json(
                    {"type": "make-move", "playerId": host_id, "row": 2, "col": 2}
                )
                host.receive_json()
            departed = _receive_until(guest, "player-disconnected")

    assert departed["playerName"] == "ada"


def _receive_until(ws, message_type):
    while True:
        message = ws.receive_json()
        if message["type"] == message_type:
            return message


def test_matchmaking_pairs_two_players():
    with TestClient(app) as local_client:
        with local_client.websocket_connect("/ws/queue") as first:
            first.send_json({"type": "join-queue", "playerName": "ada"})
            joined = first.receive_json()
            assert joined["type"] == "queue-joined"
            assert joined["position"] == 1
            assert joined["estimatedWait"] == 10

            with local_client.websocket_connect("/ws/queue") as second:
                second.send_json({"type": "join-queue", "playerName": "grace"})
                second_match = _receive_until(second, "match-found")
                first_match = _receive_until(first, "match-found")

    assert first_match["roomCode"] == second_match["roomCode"]
    assert first_match["symbol"] == "X"
    assert second_match["symbol"] == "O"
    assert first_match["opponent"] == "grace"

    room = client.get(f"/api/rooms/{first_match['roomCode']}").json()
    assert room["status"] == "playing"
    assert [p["name"] for p in room["players"]] == ["ada", "grace"]


def test_queue_channel_reports_malformed_json():
    with client.websocket_connect("/ws/queue") as ws:
        ws.send_text("join-queue")
        assert ws.receive_json() == {"type": "error", "message": "Malformed JSON"}
        ws.send_json({"type": "leave-queue"})
        assert ws.receive_json() == {"type": "queue-left"}
