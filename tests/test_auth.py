"""
Bearer-token validation.
"""
import jwt
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa

from auth import TokenValidator, user_from_claims
from conftest import AUDIENCE, CLIENT_ID, TENANT_ID, StubJwksClient
from errors import ApiError


@pytest.fixture
def validator(jwks):
    return TokenValidator(TENANT_ID, CLIENT_ID, jwks_client=jwks)


class TestTokenValidator:

    def test_valid_token(self, validator, make_token):
        user = validator.validate(make_token())
        assert user.oid == "oid-alice"
        assert user.email == "alice@example.com"
        assert user.name == "Alice Johnson"

    def test_v1_issuer_accepted(self, validator, make_token):
        token = make_token(iss=f"https://sts.windows.net/{TENANT_ID}/")
        assert validator.validate(token).oid == "oid-alice"

    def test_foreign_issuer_rejected(self, validator, make_token):
        with pytest.raises(jwt.InvalidIssuerError):
            validator.validate(make_token(iss="https://login.microsoftonline.com/other/v2.0"))

    def test_wrong_audience_rejected(self, validator, make_token):
        with pytest.raises(jwt.InvalidAudienceError):
            validator.validate(make_token(aud="spa-client-id"))

    def test_expired_rejected(self, validator, make_token):
        with pytest.raises(jwt.ExpiredSignatureError):
            validator.validate(make_token(expires_in=-60))

    def test_wrong_key_rejected(self, validator, make_token):
        other = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        with pytest.raises(jwt.InvalidSignatureError):
            validator.validate(make_token(key=other))

    def test_missing_kid_rejected(self, validator, private_key):
        token = jwt.encode({"aud": AUDIENCE}, private_key, algorithm="RS256")
        with pytest.raises(jwt.InvalidTokenError):
            validator.validate(token)

    def test_default_audience_and_issuers(self):
        v = TokenValidator("t1", "c1", jwks_client=object())
        assert v.audience == "api://c1"
        assert v.issuers == ["https://login.microsoftonline.com/t1/v2.0", "https://sts.windows.net/t1/"]


class TestClaims:

    def test_email_falls_back_to_upn(self):
        user = user_from_claims({"oid": "o", "upn": "carol@example.com"})
        assert user.email == "carol@example.com"
        assert user.name == "Unknown"

    def test_email_order(self):
        user = user_from_claims({"preferred_username": "p@example.com", "unique_name": "u@example.com"})
        assert user.email == "p@example.com"


class TestAuthenticationHeader:

    def test_invalid_format(self, client):
        r = client.get("/api/users/me", headers={"Authorization": "Basic abc"})
        assert r.status_code == 401
        assert r.json()["error"]["message"] == "Invalid authorization format"

    def test_invalid_token(self, client):
        r = client.get("/api/users/me", headers={"Authorization": "Bearer not.a.jwt"})
        assert r.json()["error"]["message"] == "Invalid token"

    def test_expired_token(self, client, make_token):
        token = make_token(expires_in=-60)
        r = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
        assert r.status_code == 401
        assert r.json()["error"]["message"] == "Token expired"

    def test_key_lookup_failure(self, client, app, make_token, private_key):
        app.state.token_validator = TokenValidator(
            TENANT_ID, CLIENT_ID,
            jwks_client=StubJwksClient(private_key.public_key(), error=jwt.PyJWKClientError("JWKS unreachable")),
        )
        r = client.get("/api/users/me", headers={"Authorization": f"Bearer {make_token()}"})
        assert r.status_code == 401
        assert r.json()["error"]["message"] == "Authentication failed"

    def test_api_error_shape(self):
        err = ApiError.not_found("Comment")
        assert (err.status_code, err.code, err.message) == (404, "NOT_FOUND", "Comment not found")
