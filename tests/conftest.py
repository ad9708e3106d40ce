"""Shared test fixtures."""

from __future__ import annotations

import os

os.environ["ERIGGA_JWT_SECRET"] = "test-secret-for-erigga-tokens-0123456789"
os.environ["ERIGGA_SUPABASE_URL"] = "https://identity.test"
os.environ["ERIGGA_SUPABASE_ANON_KEY"] = "anon-test-key"
os.environ["ERIGGA_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["ERIGGA_SESSION_STORE"] = "database"
os.environ["ERIGGA_PAYSTACK_SECRET_KEY"] = "sk_test_erigga"
os.environ["ERIGGA_LOG_FORMAT"] = "console"

from collections.abc import AsyncGenerator, Callable  # noqa: E402
from typing import Any  # noqa: E402

import httpx  # noqa: E402
import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from erigga.auth.dependencies import get_identity_provider  # noqa: E402
from erigga.auth.identity import Identity  # noqa: E402
from erigga.config import get_settings  # noqa: E402
from erigga.database import close_db, get_session, init_db  # noqa: E402
from erigga.db.models import Post, User  # noqa: E402
from erigga.ledger.router import get_payment_gateway  # noqa: E402
from erigga.payments.paystack import PaystackClient  # noqa: E402
from erigga.timeutils import utcnow  # noqa: E402

get_settings.cache_clear()


class FakeIdentityProvider:
    """In-process stand-in for the hosted identity provider."""

    def __init__(self) -> None:
        self.accounts: dict[str, tuple[str, str]] = {}
        self.calls = 0
        self.error: Exception | None = None

    def register(self, email: str, password: str, auth_user_id: str | None = None) -> str:
        auth_user_id = auth_user_id or f"auth-{len(self.accounts) + 1}"
        self.accounts[email.lower()] = (password, auth_user_id)
        return auth_user_id

    async def sign_in(self, email: str, password: str) -> Identity | None:
        self.calls += 1
        if self.error is not None:
            raise self.error
        account = self.accounts.get(email.lower())
        if account is None or account[0] != password:
            return None
        return Identity(auth_user_id=account[1], email=email.lower())


@pytest.fixture
def identity_provider() -> FakeIdentityProvider:
    return FakeIdentityProvider()


@pytest.fixture
def paystack_payments() -> dict[str, dict[str, Any]]:
    """reference -> Paystack `data` payload served by the mocked gateway."""
    return {}


@pytest.fixture
def paystack_client(paystack_payments: dict[str, dict[str, Any]]) -> PaystackClient:
    def handler(request: httpx.Request) -> httpx.Response:
        reference = request.url.path.rsplit("/", 1)[-1]
        data = paystack_payments.get(reference)
        if data is None:
            return httpx.Response(404, json={"status": False, "message": "Transaction reference not found"})
        return httpx.Response(200, json={"status": True, "message": "Verification successful", "data": data})

    return PaystackClient(
        "sk_test_erigga",
        base_url="https://paystack.test",
        transport=httpx.MockTransport(handler),
    )


@pytest_asyncio.fixture
async def database() -> AsyncGenerator[None, None]:
    """Fresh in-memory SQLite schema per test."""
    await init_db(get_settings().database_url, create_tables=True)
    yield
    await close_db()


@pytest_asyncio.fixture
async def db(database: None) -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


@pytest_asyncio.fixture
async def client(
    database: None,
    identity_provider: FakeIdentityProvider,
    paystack_client: PaystackClient,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app. Redis stays uninitialized, so rate limiting is off."""
    from erigga.main import create_app

    app = create_app()
    app.dependency_overrides[get_identity_provider] = lambda: identity_provider
    app.dependency_overrides[get_payment_gateway] = lambda: paystack_client

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def make_user(db: AsyncSession) -> Callable[..., Any]:
    """Insert a profile directly. Returns the committed User."""
    counter = {"n": 0}

    async def _make_user(coins: int = 500, role: str = "user", **fields: Any) -> User:
        counter["n"] += 1
        n = counter["n"]
        user = User(
            auth_user_id=fields.pop("auth_user_id", f"seed-{n}"),
            email=fields.pop("email", f"member{n}@example.com"),
            username=fields.pop("username", f"member{n}"),
            coins=coins,
            role=role,
            **fields,
        )
        db.add(user)
        await db.commit()
        return user

    return _make_user


@pytest.fixture
def make_post(db: AsyncSession) -> Callable[..., Any]:
    async def _make_post(author: User, content: str = "Paper Boi forever", **fields: Any) -> Post:
        post = Post(user_id=author.id, content=content, created_at=utcnow(), **fields)
        db.add(post)
        await db.commit()
        return post

    return _make_post


async def login(
    client: AsyncClient,
    identity_provider: FakeIdentityProvider,
    email: str = "fan@example.com",
    password: str = "Warri-2024!",
    remember_me: bool = False,
) -> dict[str, Any]:
    """Register `email` with the fake provider (if needed) and log in over HTTP."""
    if email.lower() not in identity_provider.accounts:
        identity_provider.register(email, password)
    response = await client.post(
        "/api/v1/auth/login",
        json={"email": email, "password": password, "remember_me": remember_me},
        headers={"User-Agent": "Mozilla/5.0 (Windows NT 10.0) Chrome/120.0"},
    )
    assert response.status_code == 200, response.text
    return response.json()
