"""
Shared fixtures.

Tokens are signed with a freshly generated RSA key whose public half is
handed to ``TokenVerifier`` as a JWKS, the same shape the identity provider
publishes. Every test gets its own SQLite database file.
"""
import json
import os
import sys
import time
from decimal import Decimal
from typing import AsyncGenerator

import httpx
import jwt
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives.asymmetric import rsa
from jwt.algorithms import RSAAlgorithm

# Add backend/ (the application root) to the path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "backend"))

os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["AUTH_CREDENTIAL_SOURCE"] = "any"
os.environ["AUTH_ADMIN_ROLE"] = "admin"
os.environ["POST_LOGIN_REDIRECT_URL"] = "http://localhost:3000/admin/add-item"
os.environ.pop("JWT_LEEWAY_SECONDS", None)

from sqlalchemy.ext.asyncio import async_sessionmaker  # noqa: E402

from core.auth import TokenVerifier, get_token_verifier  # noqa: E402
from db.database import create_db_and_tables, get_async_session, make_engine  # noqa: E402
from db.inventory import store  # noqa: E402

ISSUER = "https://login.example.test/tenant-id/v2.0"
CLIENT_ID = "storefront-client-id"
KID = "test-signing-key"


def pytest_configure(config):
    config.addinivalue_line("markers", "concurrency: races two transactions against one database")


# =============================================================================
# Keys and tokens
# =============================================================================


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def jwks(rsa_key) -> dict:
    jwk = json.loads(RSAAlgorithm.to_jwk(rsa_key.public_key()))
    jwk.update({"kid": KID, "use": "sig", "alg": "RS256"})
    return {"keys": [jwk]}


@pytest.fixture
def verifier(jwks) -> TokenVerifier:
    return TokenVerifier(jwt.PyJWKSet.from_dict(jwks), issuer=ISSUER, audience=CLIENT_ID)


@pytest.fixture
def make_token(rsa_key):
    """Build a signed ID token; keyword arguments override claims."""

    def _make(subject="user-1", roles=None, *, expires_in=3600, key=None, kid=KID, **claims):
        now = int(time.time())
        payload = {
            "iss": ISSUER,
            "aud": CLIENT_ID,
            "oid": subject,
            "sub": f"pairwise-{subject}",
            "iat": now - 5,
            "nbf": now - 5,
            "exp": now + expires_in,
        }
        if roles is not None:
            payload["roles"] = roles
        payload.update(claims)
        return jwt.encode(payload, key or rsa_key, algorithm="RS256", headers={"kid": kid})

    return _make


@pytest.fixture
def bearer(make_token):
    """Authorization headers for a subject, optionally with roles."""

    def _headers(subject="user-1", roles=None):
        return {"Authorization": f"Bearer {make_token(subject, roles)}"}

    return _headers


# =============================================================================
# Database
# =============================================================================


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    await create_db_and_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_maker):
    async with session_maker() as session:
        yield session


@pytest.fixture
def seed_item(session_maker):
    async def _seed(name="Widget", stock=5, price="9.99", description="") -> int:
        async with session_maker() as session:
            return await store.add_item(
                session, name=name, description=description, price=Decimal(price), stock=stock
            )

    return _seed


# =============================================================================
# HTTP client
# =============================================================================


@pytest_asyncio.fixture
async def client(session_maker, verifier) -> AsyncGenerator[httpx.AsyncClient, None]:
    """Client bound to the ASGI app; lifespan (provider discovery) is not run."""
    from main import app

    async def _session():
        async with session_maker() as session:
            yield session

    app.dependency_overrides[get_async_session] = _session
    app.dependency_overrides[get_token_verifier] = lambda: verifier
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()
