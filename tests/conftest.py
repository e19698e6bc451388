import os
import time

import jwt
import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("LOG_LEVEL", "DEBUG")

from app import create_app  # noqa: E402
from auth import Identity, TokenValidator  # noqa: E402
from connections import Connection  # noqa: E402
from registry import load_registry  # noqa: E402
from room_manager import RoomManager  # noqa: E402

SECRET = "test-secret-key-with-at-least-32-bytes!"


@pytest.fixture()
def make_token():
    """
    Mint a signed access token the way the POS login endpoint does.

    ``omit`` drops claims, ``expires_in`` may be negative for expired tokens.
    """

    def _make(user_id="u1", role="waiter", email=None, expires_in=3600, secret=SECRET, omit=(), **extra):
        now = int(time.time())
        claims = {
            "id": user_id,
            "email": email or f"{user_id}@pambazo.test",
            "role": role,
            "iat": now,
            "exp": now + expires_in,
            **extra,
        }
        for name in omit:
            claims.pop(name, None)
        return jwt.encode(claims, secret, algorithm="HS256")

    return _make


@pytest.fixture()
def validator() -> TokenValidator:
    return TokenValidator(secret=SECRET)


@pytest.fixture()
def registry():
    return load_registry()


@pytest.fixture()
def room_manager(registry) -> RoomManager:
    manager = RoomManager(registry, welcome_message="Connected to PAMBAZO real-time system")
    yield manager
    manager.shutdown()


@pytest.fixture()
def make_connection():
    """
    Build a Connection whose outbound frames are recorded in ``connection.frames``.
    """

    def _make(user_id="u1", role="waiter", email=None):
        frames = []
        identity = Identity(id=user_id, email=email or f"{user_id}@pambazo.test", role=role)
        connection = Connection(identity=identity, deliver=frames.append)
        connection.frames = frames
        return connection

    return _make


@pytest.fixture()
def app(room_manager):
    return create_app(jwt_secret=SECRET, room_manager=room_manager)


@pytest.fixture()
def client(app):
    # Context manager keeps HTTP calls and websocket sessions on one event loop
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def auth_headers(make_token):
    def _headers(user_id="boss", role="owner"):
        return {"Authorization": f"Bearer {make_token(user_id=user_id, role=role)}"}

    return _headers


@pytest.fixture()
def events():
    """
    Payloads of every recorded frame named ``name`` on a fake connection.
    """

    def _events(connection, name):
        return [frame["data"] for frame in connection.frames if frame["event"] == name]

    return _events
