"""
NutriLens Backend: FastAPI Dependencies
=======================================

What:  Caller resolution (JWT bearer or API key), the admin gate, and
       injectable service handles.
How:   Routes declare `CurrentUser` / `AdminUser` / `Ledger` parameters;
       tests replace get_credit_ledger through app.dependency_overrides.

Caller resolution order:
    1. Authorization: Bearer <jwt>
    2. X-API-Key: <key>
    Neither present, or the one present is invalid → 401.
"""

from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import APIKeyHeader, HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from nutrilens.database import get_db_session
from nutrilens.exceptions import AuthenticationError, PermissionDeniedError
from nutrilens.models.user import User
from nutrilens.services.analysis_service import AnalysisService, analysis_service
from nutrilens.services.credit_ledger import CreditLedger, credit_ledger
from nutrilens.services.user_service import UserService, user_service

# auto_error=False: missing credentials are reported through AuthenticationError
# so the response uses the standard error envelope
bearer_scheme = HTTPBearer(auto_error=False)
api_key_scheme = APIKeyHeader(name="X-API-Key", auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db_session)]


def get_credit_ledger() -> CreditLedger:
    return credit_ledger


def get_user_service() -> UserService:
    return user_service


def get_analysis_service() -> AnalysisService:
    return analysis_service


Ledger = Annotated[CreditLedger, Depends(get_credit_ledger)]
Users = Annotated[UserService, Depends(get_user_service)]
Analyses = Annotated[AnalysisService, Depends(get_analysis_service)]


async def get_current_user(
    db: DbSession,
    users: Users,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    api_key: Optional[str] = Depends(api_key_scheme),
) -> User:
    if credentials is not None and credentials.credentials:
        return await users.authenticate_token(db, credentials.credentials)
    if api_key:
        return await users.authenticate_api_key(db, api_key)
    raise AuthenticationError("Not authorized, no token or API key")


CurrentUser = Annotated[User, Depends(get_current_user)]


async def require_admin(user: CurrentUser) -> User:
    if not user.is_admin:
        raise PermissionDeniedError()
    return user


AdminUser = Annotated[User, Depends(require_admin)]
