"""
Shared fixtures: a controllable clock, an in-memory store, and helpers for building token responses.
"""
import base64
import json

import jwt
import pytest

from token_cache.cache import TokenCache
from token_cache.storage import InMemoryStorageAccessor

NOW = 1_700_000_000
CLIENT_ID = "app-client"
TENANT_ID = "tenant-one"
ENV = "login.example.com"
ALIASES = ["login.example.com", "login.example.net"]
HOME = "uid-1.tenant-one"


class FakeClock:
    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_client_info(uid: str, utid: str) -> str:
    raw = json.dumps({"uid": uid, "utid": utid}).encode()
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def make_id_token(**claims) -> str:
    return jwt.encode(claims, "signing-key-the-cache-never-checks-0123456789", algorithm="HS256")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return InMemoryStorageAccessor()


@pytest.fixture
def cache(storage, clock):
    return TokenCache(storage, clock=clock, refresh_buffer_seconds=300)


@pytest.fixture
def token_payload():
    """Factory for raw token endpoint bodies for the default user."""

    def _payload(scope="User.Read Mail.Read", access_token="at-1", expires_in=3600, **extra):
        body = {
            "access_token": access_token,
            "refresh_token": "rt-1",
            "id_token": make_id_token(
                oid="uid-1", tid=TENANT_ID, preferred_username="ada@example.com", name="Ada"
            ),
            "client_info": make_client_info("uid-1", "tenant-one"),
            "expires_in": expires_in,
            "scope": scope,
            "token_type": "Bearer",
        }
        body.update(extra)
        return body

    return _payload
