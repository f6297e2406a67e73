"""Shared fixtures: in-memory database, signing keys and collaborator doubles."""

import base64
import json
import os

os.environ.setdefault("POSTGRES_DSN", "sqlite://")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("SERVICE_NAME", "framecast-test")

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import framecast.common.models  # noqa: F401
from framecast.common.db import Base


@pytest.fixture
def session_factory():
    """Fresh in-memory SQLite database per test."""

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)
    yield factory
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


def b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


class Signer:
    """Throwaway Ed25519 app key that produces signed webhook envelopes."""

    def __init__(self) -> None:
        self.private_key = Ed25519PrivateKey.generate()
        raw = self.private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.public_key = raw
        self.key_hex = "0x" + raw.hex()

    def envelope(self, payload: dict, fid: int = 42, header: dict | None = None) -> dict:
        header = header if header is not None else {"fid": fid, "type": "app_key", "key": self.key_hex}
        encoded_header = b64url(json.dumps(header).encode("utf-8"))
        encoded_payload = b64url(json.dumps(payload).encode("utf-8"))
        signature = self.private_key.sign(f"{encoded_header}.{encoded_payload}".encode("utf-8"))
        return {"header": encoded_header, "payload": encoded_payload, "signature": b64url(signature)}


@pytest.fixture
def signer():
    return Signer()


class FakeMailer:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    def send(self, subject: str, body: str) -> bool:
        self.sent.append((subject, body))
        return True


@pytest.fixture
def mailer():
    return FakeMailer()
