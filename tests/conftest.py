"""
Pytest configuration and fixtures for API testing.

The app runs against an in-memory mongomock database. Tokens are real RS256
JWTs signed with a throwaway key; the JWKS lookup is stubbed to return the
matching public key.
"""
import time
from types import SimpleNamespace

import jwt
import mongomock
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi.testclient import TestClient

from auth import TokenValidator
from config import Settings
from main import create_app

TENANT_ID = "test-tenant"
CLIENT_ID = "test-client"
ISSUER = f"https://login.microsoftonline.com/{TENANT_ID}/v2.0"
AUDIENCE = f"api://{CLIENT_ID}"
KEY_ID = "test-key"

ALICE = {"oid": "oid-alice", "email": "alice@example.com", "name": "Alice Johnson"}
BOB = {"oid": "oid-bob", "email": "bob@example.com", "name": "Bob Smith"}


class StubJwksClient:
    """Stands in for jwt.PyJWKClient; hands back one fixed public key."""

    def __init__(self, public_key, error=None):
        self.public_key = public_key
        self.error = error

    def get_signing_key_from_jwt(self, token):
        if self.error:
            raise self.error
        return SimpleNamespace(key=self.public_key)


@pytest.fixture(scope="session")
def private_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture
def jwks(private_key):
    return StubJwksClient(private_key.public_key())


@pytest.fixture
def make_token(private_key):
    def _make(oid="oid-alice", email="alice@example.com", name="Alice Johnson",
              expires_in=3600, key=None, **claims):
        now = int(time.time())
        payload = {
            "iss": ISSUER,
            "aud": AUDIENCE,
            "oid": oid,
            "sub": f"sub-{oid}",
            "name": name,
            "email": email,
            "iat": now,
            "exp": now + expires_in,
        }
        payload.update(claims)
        payload = {k: v for k, v in payload.items() if v is not None}
        return jwt.encode(payload, key or private_key, algorithm="RS256", headers={"kid": KEY_ID})
    return _make


@pytest.fixture
def auth(make_token):
    """auth(ALICE) -> Authorization header dict for that identity."""
    def _headers(identity=ALICE):
        return {"Authorization": f"Bearer {make_token(**identity)}"}
    return _headers


@pytest.fixture
def settings():
    return Settings(
        environment="test",
        database_name="blogtest",
        entra_tenant_id=TENANT_ID,
        entra_client_id=CLIENT_ID,
        cors_origins="http://localhost:5173",
    )


@pytest.fixture
def mongo():
    return mongomock.MongoClient()


@pytest.fixture
def db(mongo):
    return mongo["blogtest"]


@pytest.fixture
def app(settings, mongo, jwks):
    validator = TokenValidator(TENANT_ID, CLIENT_ID, jwks_client=jwks)
    return create_app(settings, client=mongo, token_validator=validator)


@pytest.fixture
def client(app):
    return TestClient(app)


@pytest.fixture
def create_post(client, auth):
    """Create a post through the API and return the response body."""
    def _create(title="Hello, World!", identity=ALICE, status="published", **fields):
        body = {"title": title, "content": "<p>Body</p>", "status": status, **fields}
        r = client.post("/api/posts", json=body, headers=auth(identity))
        assert r.status_code == 201, f"Create failed: {r.text}"
        return r.json()
    return _create
