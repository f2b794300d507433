"""
End-to-end tests through the Flask-SocketIO handlers.
"""

import pytest

from conftest import FakeExecutor, InlinePool, ManualScheduler
from config import BattleConfig
from orchestrator import NO_SUBMISSION
from server import create_app


@pytest.fixture
def server_parts():
    scheduler = ManualScheduler()
    config = BattleConfig(array_length=8, countdown_ticks=3)
    app, socketio = create_app(battle_config=config, executor=FakeExecutor(),
                               scheduler=scheduler, pool=InlinePool())
    return app, socketio, scheduler


def received(client, name):
    return [event["args"] for event in client.get_received() if event["name"] == name]


def events(messages, name):
    return [event["args"] for event in messages if event["name"] == name]


def connect(app, socketio, room_id, display_name):
    client = socketio.test_client(app)
    client.emit("join", {"roomId": room_id, "displayName": display_name})
    return client


def test_connect_and_join(server_parts):
    app, socketio, _ = server_parts
    client = socketio.test_client(app)
    assert received(client, "connected")
    client.emit("join", {"roomId": "R1", "displayName": "Alice"})
    messages = client.get_received()
    [code] = events(messages, "codeUpdate")
    assert code[0].startswith("def sort(arr):")
    [joined] = events(messages, "roomJoined")
    assert joined[0]["participants"][0]["displayName"] == "Alice"


def test_positional_join_arguments(server_parts):
    app, socketio, _ = server_parts
    client = socketio.test_client(app)
    client.emit("join", "R1", "Alice")
    [joined] = received(client, "roomJoined")
    assert joined[0]["id"] == "R1"


def test_code_change_reaches_other_participants(server_parts):
    app, socketio, _ = server_parts
    alice = connect(app, socketio, "R1", "Alice")
    bob = connect(app, socketio, "R1", "Bob")
    alice.get_received()
    bob.get_received()

    alice.emit("codeChange", "def sort(arr):\n    return arr\n")
    assert received(bob, "codeUpdate") == [["def sort(arr):\n    return arr\n"]]
    assert received(alice, "codeUpdate") == []


def test_battle_round(server_parts):
    app, socketio, scheduler = server_parts
    alice = connect(app, socketio, "R1", "Alice")
    bob = connect(app, socketio, "R1", "Bob")
    alice.get_received()
    bob.get_received()

    alice.emit("startBattle")
    bob.emit("startBattle")
    bob_messages = bob.get_received()
    [error] = events(bob_messages, "battleError")
    assert error[0]["kind"] == "invalid_phase_transition"

    for _ in range(3):
        scheduler.run_next()
    alice_messages = alice.get_received()
    assert events(alice_messages, "countdownTick") == [[3], [2], [1], [0]]
    [start] = events(alice_messages, "battleStart")
    test_input = start[0]
    assert len(test_input) == 8

    alice.emit("submit", "good")
    [result] = received(alice, "executionResult")
    assert result[0]["array"] == sorted(test_input)

    bob.emit("submit", "broken")
    bob_messages = bob.get_received()
    assert events(bob_messages, "executionFailure") == [["ValueError: boom"]]
    [results] = events(bob_messages, "battleResults")
    assert [(r["displayName"], r["rank"], r["correct"]) for r in results[0]] == [
        ("Alice", 1, True), ("Bob", 2, False)]


def test_disconnect_mid_round(server_parts):
    app, socketio, scheduler = server_parts
    alice = connect(app, socketio, "R1", "Alice")
    bob = connect(app, socketio, "R1", "Bob")
    alice.emit("startBattle")
    bob.disconnect()
    for _ in range(3):
        scheduler.run_next()
    alice.emit("submit", "good")
    [results] = received(alice, "battleResults")
    assert results[0][1]["failureReason"] == NO_SUBMISSION


def test_errors_reported_to_caller(server_parts):
    app, socketio, _ = server_parts
    client = socketio.test_client(app)
    client.get_received()
    client.emit("startBattle")
    [error] = received(client, "battleError")
    assert error[0]["kind"] == "not_in_room"

    client.emit("join", {"roomId": ""})
    [error] = received(client, "battleError")
    assert error[0]["kind"] == "invalid_room_id"

    client.emit("join", {"roomId": "R1"})
    client.get_received()
    client.emit("submit", "good")
    [error] = received(client, "battleError")
    assert error[0]["kind"] == "invalid_phase_transition"

    client.emit("codeChange", {"not": "text"})
    [error] = received(client, "battleError")
    assert error[0]["kind"] == "battle_error"


def test_room_snapshot_route(server_parts):
    app, socketio, _ = server_parts
    connect(app, socketio, "R1", "Alice")
    http = app.test_client()
    response = http.get("/rooms/R1")
    assert response.status_code == 200
    assert response.get_json()["phase"] == "idle"
    assert response.get_json()["lastResults"] == []
    assert http.get("/rooms/unknown").status_code == 404


def test_battle_page(server_parts):
    app, _, _ = server_parts
    response = app.test_client().get("/battle/R1")
    assert response.status_code == 200
    assert b"R1" in response.data
