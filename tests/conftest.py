import os

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from fastapi.testclient import TestClient
import pytest

from aihub_query.security import sign_jwt
from aihub_query.types.connections import Connections
from tests.utils import FakeStorage


def pytest_configure():
    os.environ["QUERY_DB_URL"] = "sqlite:///:memory:"
    os.environ["S3_BUCKET"] = "test-bucket"
    os.environ["ALLOWED_ORIGINS"] = "*"


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
async def conn(tmp_path, storage):
    conn = Connections(query_db_url=f"sqlite:///{tmp_path}/query.db", storage=storage)
    await conn.init_db()
    yield conn
    await conn.close()


@pytest.fixture(scope="session")
def keypair():
    private_key_obj = Ed25519PrivateKey.generate()
    private_key = private_key_obj.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_key = private_key_obj.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return private_key, public_key


@pytest.fixture
def auth_headers(keypair):
    private_key, _ = keypair

    def _headers(user: str) -> dict:
        return {"Authorization": f"Bearer {sign_jwt(user, private_key)}"}

    return _headers


@pytest.fixture
def client(tmp_path, storage, keypair, monkeypatch):
    import aihub_query.query_server as query_server

    monkeypatch.setenv("JWT_VERIFY_KEY", keypair[1].decode())
    monkeypatch.setattr(
        query_server,
        "Connections",
        lambda: Connections(
            query_db_url=f"sqlite:///{tmp_path}/server.db", storage=storage
        ),
    )
    with TestClient(query_server.app) as c:
        yield c
