"""
Tests for wallet sign-in, session tokens and the FastAPI auth dependencies.
"""

import base64

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from nacl.signing import SigningKey
from solders.pubkey import Pubkey
from solders.signature import Signature

from sion.auth import (
    Actor,
    ActorKind,
    AuthError,
    AuthService,
    InvalidSignatureError,
    SessionExpiredError,
    get_auth_service,
    require_actor,
)
from sion.auth.solana_signin import parse_solana_signin_message

SECRET = "test-secret-with-at-least-32-bytes!!"


def wallet():
    key = SigningKey.generate()
    return key, str(Pubkey(bytes(key.verify_key)))


def signin_message(address: str, expiration: str = "2999-01-01T00:00:00Z") -> str:
    return (
        "sion.example wants you to sign in with your Solana account:\n"
        f"{address}\n"
        "\n"
        "Sign in to Sion\n"
        "\n"
        "URI: https://sion.example\n"
        "Nonce: abc123\n"
        "Issued At: 2024-01-01T00:00:00Z\n"
        f"Expiration Time: {expiration}\n"
        "Resources:\n"
        "- https://sion.example/terms"
    )


def sign(key: SigningKey, message: str) -> str:
    return str(Signature(key.sign(message.encode("utf-8")).signature))


class TestSignInMessage:

    def test_fields_are_parsed(self):
        _, address = wallet()

        parsed = parse_solana_signin_message(signin_message(address))

        assert parsed.domain == "sion.example"
        assert parsed.address == address
        assert parsed.statement == "Sign in to Sion"
        assert parsed.nonce == "abc123"
        assert parsed.resources == ["https://sion.example/terms"]
        assert parsed.is_expired() is False

    def test_missing_nonce_is_rejected(self):
        _, address = wallet()
        message = signin_message(address).replace("Nonce: abc123\n", "")
        with pytest.raises(ValueError, match="nonce"):
            parse_solana_signin_message(message)

    def test_invalid_address_is_rejected(self):
        with pytest.raises(ValueError):
            parse_solana_signin_message(signin_message("not-an-address"))


class TestAuthService:

    def test_wallet_signature_in_base58_or_base64(self):
        key, address = wallet()
        message = signin_message(address)
        service = AuthService(SECRET)

        from_base58 = service.verify_wallet(message, sign(key, message), address=address)
        raw = key.sign(message.encode("utf-8")).signature
        from_base64 = service.verify_wallet(message, base64.b64encode(raw).decode(), address=address)

        assert from_base58 == from_base64 == Actor(id=address, kind=ActorKind.WALLET)

    def test_signature_by_another_wallet_is_rejected(self):
        _, address = wallet()
        other_key, _ = wallet()
        message = signin_message(address)

        with pytest.raises(InvalidSignatureError):
            AuthService(SECRET).verify_wallet(message, sign(other_key, message))

    def test_address_must_match_message(self):
        key, address = wallet()
        _, other_address = wallet()
        message = signin_message(address)

        with pytest.raises(InvalidSignatureError):
            AuthService(SECRET).verify_wallet(message, sign(key, message), address=other_address)

    def test_expired_message_is_rejected(self):
        key, address = wallet()
        message = signin_message(address, expiration="2000-01-01T00:00:00Z")

        with pytest.raises(SessionExpiredError):
            AuthService(SECRET).verify_wallet(message, sign(key, message))

    def test_token_round_trip_and_expiry(self):
        service = AuthService(SECRET, token_ttl_seconds=60)
        actor = Actor(id="user-1", kind=ActorKind.USER)

        assert service.verify_token(service.issue_token(actor)) == actor
        with pytest.raises(SessionExpiredError):
            service.verify_token(service.issue_token(actor, now=1_000_000))

    def test_token_signed_with_other_secret_is_rejected(self):
        token = AuthService("another-secret-of-sufficient-length!").issue_token(Actor(id="u", kind=ActorKind.USER))
        with pytest.raises(AuthError):
            AuthService(SECRET).verify_token(token)

    def test_unconfigured_secret_cannot_issue(self):
        with pytest.raises(AuthError):
            AuthService("").issue_token(Actor(id="u", kind=ActorKind.USER))


@pytest.fixture
def client():
    app = FastAPI()
    service = AuthService(SECRET)
    app.dependency_overrides[get_auth_service] = lambda: service

    @app.get("/whoami")
    async def whoami(actor: Actor = Depends(require_actor)):
        return {"id": actor.id, "kind": actor.kind.value}

    return TestClient(app), service


class TestAuthDependencies:

    def test_no_credentials_is_401(self, client):
        test_client, _ = client
        response = test_client.get("/whoami")
        assert response.status_code == 401

    def test_bearer_token(self, client):
        test_client, service = client
        token = service.issue_token(Actor(id="user-1", kind=ActorKind.USER))

        response = test_client.get("/whoami", headers={"Authorization": f"Bearer {token}"})

        assert response.json() == {"id": "user-1", "kind": "user"}

    def test_bad_bearer_token_is_401(self, client):
        test_client, _ = client
        response = test_client.get("/whoami", headers={"Authorization": "Bearer garbage"})
        assert response.status_code == 401

    def test_wallet_headers(self, client):
        test_client, _ = client
        key, address = wallet()
        message = signin_message(address)

        response = test_client.get("/whoami", headers={
            "X-Wallet-Address": address,
            "X-Wallet-Message": base64.b64encode(message.encode("utf-8")).decode(),
            "X-Wallet-Signature": sign(key, message),
        })

        assert response.json() == {"id": address, "kind": "wallet"}

    def test_unencoded_wallet_message_is_401(self, client):
        test_client, _ = client
        key, address = wallet()

        response = test_client.get("/whoami", headers={
            "X-Wallet-Address": address,
            "X-Wallet-Message": "not base64!",
            "X-Wallet-Signature": "sig",
        })

        assert response.status_code == 401
