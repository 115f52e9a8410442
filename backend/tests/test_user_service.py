"""
NutriLens Backend: User Service Tests
=====================================

What:  Registration, login, Google sign-in, caller resolution and admin edits
       against a real SQLite session. Google's tokeninfo endpoint is replaced
       by an httpx.MockTransport.
"""

import uuid
from datetime import timedelta

import httpx
import pytest

from nutrilens.config import settings
from nutrilens.exceptions import AuthenticationError, NotFoundError, ValidationError
from nutrilens.models.user import User
from nutrilens.schemas.user import RegisterRequest, UserUpdateRequest
from nutrilens.security import create_access_token
from nutrilens.services.google_auth import GoogleTokenVerifier
from nutrilens.services.user_service import UserService

CLIENT_ID = "test-client.apps.googleusercontent.com"


def tokeninfo_transport(claims=None, status_code=200):
    """MockTransport answering every tokeninfo call with `claims`."""
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code, json=claims or {"error": "invalid_token"})

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport


def google_claims(sub="google-sub-1", email="Diner@Example.com", name="Diner"):
    return {
        "aud": CLIENT_ID,
        "sub": sub,
        "email": email,
        "email_verified": "true",
        "name": name,
    }


@pytest.fixture
def db(session_factory):
    """A session committed by the test body, like get_db_session would."""

    class _Db:
        async def __aenter__(self):
            self.session = session_factory()
            return self.session

        async def __aexit__(self, exc_type, exc, tb):
            if exc_type is None:
                await self.session.commit()
            else:
                await self.session.rollback()
            await self.session.close()

    return _Db


class TestGoogleTokenVerifier:

    @pytest.mark.asyncio
    async def test_valid_token(self):
        transport = tokeninfo_transport(google_claims())
        verifier = GoogleTokenVerifier(client_id=CLIENT_ID, transport=transport)

        identity = await verifier.verify("id-token")

        assert identity.sub == "google-sub-1"
        assert identity.email == "diner@example.com"
        assert identity.email_verified is True
        assert transport.requests[0].url.params["id_token"] == "id-token"

    @pytest.mark.asyncio
    async def test_rejected_token(self):
        verifier = GoogleTokenVerifier(
            client_id=CLIENT_ID, transport=tokeninfo_transport(status_code=400)
        )
        with pytest.raises(AuthenticationError, match="Failed to verify Google token"):
            await verifier.verify("bad")

    @pytest.mark.asyncio
    async def test_audience_mismatch(self):
        claims = google_claims()
        claims["aud"] = "someone-else.apps.googleusercontent.com"
        verifier = GoogleTokenVerifier(client_id=CLIENT_ID, transport=tokeninfo_transport(claims))
        with pytest.raises(AuthenticationError):
            await verifier.verify("token-for-another-app")

    @pytest.mark.asyncio
    async def test_unconfigured_client_id_rejects(self):
        verifier = GoogleTokenVerifier(client_id="", transport=tokeninfo_transport(google_claims()))
        with pytest.raises(AuthenticationError):
            await verifier.verify("id-token")

    @pytest.mark.asyncio
    async def test_network_error(self):
        def handler(request):
            raise httpx.ConnectError("unreachable")

        verifier = GoogleTokenVerifier(client_id=CLIENT_ID, transport=httpx.MockTransport(handler))
        with pytest.raises(AuthenticationError):
            await verifier.verify("id-token")


class TestRegistrationAndLogin:

    def setup_method(self):
        self.service = UserService(google_verifier=GoogleTokenVerifier(client_id=CLIENT_ID))

    @pytest.mark.asyncio
    async def test_register_grants_default_credits(self, db):
        async with db() as session:
            result = await self.service.register(
                session,
                RegisterRequest(name=" Ada ", email="Ada@Example.com", password="secret123"),
            )

        assert result.user.name == "Ada"
        assert result.user.email == "ada@example.com"
        assert result.user.credits.total == settings.credits_default_total
        assert result.user.credits.used == 0
        assert result.user.api_key
        assert result.token

    @pytest.mark.asyncio
    async def test_register_duplicate_email(self, db, make_user):
        await make_user(email="taken@example.com")

        async with db() as session:
            with pytest.raises(ValidationError, match="User already exists"):
                await self.service.register(
                    session,
                    RegisterRequest(name="Other", email="TAKEN@example.com", password="secret123"),
                )

    @pytest.mark.asyncio
    async def test_login(self, db, make_user):
        user = await make_user(email="eve@example.com", password="hunter22")

        async with db() as session:
            result = await self.service.login(session, "Eve@Example.com", "hunter22")

        assert result.user.id == user.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("email, password", [("eve@example.com", "wrong"), ("nobody@example.com", "hunter22")])
    async def test_login_failures(self, db, make_user, email, password):
        await make_user(email="eve@example.com", password="hunter22")

        async with db() as session:
            with pytest.raises(AuthenticationError, match="Invalid email or password"):
                await self.service.login(session, email, password)


class TestGoogleSignIn:

    def service_for(self, claims):
        return UserService(
            google_verifier=GoogleTokenVerifier(
                client_id=CLIENT_ID, transport=tokeninfo_transport(claims)
            )
        )

    @pytest.mark.asyncio
    async def test_creates_account(self, db, session_factory):
        service = self.service_for(google_claims())

        async with db() as session:
            result = await service.google_sign_in(session, "id-token")

        assert result.user.email == "diner@example.com"
        assert result.user.credits.total == settings.credits_default_total
        async with session_factory() as session:
            stored = await session.get(User, result.user.id)
        assert stored.google_id == "google-sub-1"
        assert stored.password_hash is None

    @pytest.mark.asyncio
    async def test_links_existing_email_account(self, db, make_user, session_factory):
        user = await make_user(email="diner@example.com")
        service = self.service_for(google_claims())

        async with db() as session:
            result = await service.google_sign_in(session, "id-token")

        assert result.user.id == user.id
        async with session_factory() as session:
            assert (await session.get(User, user.id)).google_id == "google-sub-1"

    @pytest.mark.asyncio
    async def test_matches_by_google_id(self, db, make_user):
        user = await make_user(email="old@example.com", google_id="google-sub-1")
        service = self.service_for(google_claims(email="new@example.com"))

        async with db() as session:
            result = await service.google_sign_in(session, "id-token")

        assert result.user.id == user.id


class TestCallerResolution:

    def setup_method(self):
        self.service = UserService()

    @pytest.mark.asyncio
    async def test_token(self, db, make_user):
        user = await make_user()
        async with db() as session:
            resolved = await self.service.authenticate_token(session, create_access_token(user.id))
        assert resolved.id == user.id

    @pytest.mark.asyncio
    async def test_token_for_deleted_user(self, db):
        async with db() as session:
            with pytest.raises(AuthenticationError, match="user not found"):
                await self.service.authenticate_token(session, create_access_token(uuid.uuid4()))

    @pytest.mark.asyncio
    async def test_expired_token(self, db, make_user):
        user = await make_user()
        token = create_access_token(user.id, expires_in=timedelta(seconds=-1))
        async with db() as session:
            with pytest.raises(AuthenticationError, match="token failed"):
                await self.service.authenticate_token(session, token)

    @pytest.mark.asyncio
    async def test_api_key(self, db, make_user):
        user = await make_user()
        async with db() as session:
            resolved = await self.service.authenticate_api_key(session, user.api_key)
        assert resolved.id == user.id

    @pytest.mark.asyncio
    async def test_unknown_api_key(self, db):
        async with db() as session:
            with pytest.raises(AuthenticationError, match="Invalid API key"):
                await self.service.authenticate_api_key(session, "not-a-key")

    @pytest.mark.asyncio
    async def test_rotate_api_key(self, db, make_user):
        user = await make_user()
        old_key = user.api_key

        async with db() as session:
            caller = await self.service.authenticate_api_key(session, old_key)
            new_key = await self.service.rotate_api_key(session, caller)

        assert new_key != old_key
        async with db() as session:
            with pytest.raises(AuthenticationError):
                await self.service.authenticate_api_key(session, old_key)
            assert (await self.service.authenticate_api_key(session, new_key)).id == user.id


class TestAdmin:

    def setup_method(self):
        self.service = UserService()

    @pytest.mark.asyncio
    async def test_list_users(self, db, make_user):
        await make_user(email="a@example.com")
        await make_user(email="b@example.com")

        async with db() as session:
            users = await self.service.list_users(session)

        assert {u.email for u in users} == {"a@example.com", "b@example.com"}

    @pytest.mark.asyncio
    async def test_get_missing_user(self, db):
        async with db() as session:
            with pytest.raises(NotFoundError):
                await self.service.get_user(session, uuid.uuid4())

    @pytest.mark.asyncio
    async def test_update_user(self, db, make_user):
        user = await make_user(email="a@example.com")

        async with db() as session:
            summary = await self.service.update_user(
                session, user.id, UserUpdateRequest(name="Admin Ada", is_admin=True)
            )

        assert summary.name == "Admin Ada"
        assert summary.is_admin is True
        assert summary.credits.total == user.credits_total

    @pytest.mark.asyncio
    async def test_update_to_taken_email(self, db, make_user):
        await make_user(email="a@example.com")
        other = await make_user(email="b@example.com")

        async with db() as session:
            with pytest.raises(ValidationError, match="User already exists"):
                await self.service.update_user(
                    session, other.id, UserUpdateRequest(email="A@example.com")
                )
