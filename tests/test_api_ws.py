"""Tests for FastAPI WebSocket /stream endpoint.

Tests verify:
- Initial snapshot message on connect
- Event and readings messages pushed as they happen
- Listeners removed when the client goes away
"""

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from fakes.fake_serial import FakeSerial, FakeTransportProvider
from soil_probe_lib.models import Severity
from soil_probe_lib.session import ConnectionSession


@pytest.fixture
def fake_serial() -> FakeSerial:
    return FakeSerial(timeout=0.02)


@pytest.fixture
def session(fake_serial: FakeSerial) -> ConnectionSession:
    return ConnectionSession(provider=FakeTransportProvider(serial=fake_serial))


@pytest.fixture
def client(session: ConnectionSession) -> Iterator[TestClient]:
    with TestClient(create_app(session=session)) as test_client:
        yield test_client


def receive_until(websocket, message_type: str, max_messages: int = 50) -> dict:
    """Read messages until one of the given type arrives."""
    for _ in range(max_messages):
        message = websocket.receive_json()
        if message["type"] == message_type:
            return message
    raise AssertionError(f"No {message_type!r} message within {max_messages} messages")


def test_websocket_initial_snapshot(client: TestClient, session: ConnectionSession) -> None:
    """First message describes the full current state."""
    session.event_log.append(Severity.INFO, "before client")

    with client.websocket_connect("/stream") as websocket:
        message = websocket.receive_json()

    assert message["type"] == "snapshot"
    assert message["state"] == "idle"
    assert message["readings"]["N"] == 0.0
    assert set(message["readings"].keys()) == {"N", "P", "K", "EC", "temp", "moisture"}
    assert message["events"][0]["message"] == "before client"


def test_websocket_pushes_events(client: TestClient, session: ConnectionSession) -> None:
    with client.websocket_connect("/stream") as websocket:
        websocket.receive_json()  # snapshot

        session.event_log.append(Severity.WARNING, "pushed")
        message = receive_until(websocket, "event")

    assert message["severity"] == "warning"
    assert message["message"] == "pushed"


def test_websocket_streams_readings(
    client: TestClient, session: ConnectionSession, fake_serial: FakeSerial
) -> None:
    """Readings parsed from the serial stream reach the client."""
    with client.websocket_connect("/stream") as websocket:
        websocket.receive_json()  # snapshot

        client.post("/connect")
        fake_serial.feed_line("N:10,temp:21.5")

        message = receive_until(websocket, "readings")

    assert message["readings"]["N"] == 10.0
    assert message["readings"]["temp"] == 21.5


def test_websocket_unsubscribes_on_close(client: TestClient, session: ConnectionSession) -> None:
    """After the client leaves, appending events must not fail."""
    with client.websocket_connect("/stream") as websocket:
        websocket.receive_json()

    session.event_log.append(Severity.INFO, "after close")
    assert session.event_log.latest().message == "after close"
