"""
NutriLens Backend: User Route Handlers
======================================

What:  Registration, sign-in, profile, API key rotation and admin user
       management.

Routes:
    POST /api/users               register (201)
    POST /api/users/login         email + password
    POST /api/users/auth/google   Google ID token from a native client
    GET  /api/users/profile       caller's profile with fresh credits
    POST /api/users/api-key       rotate the caller's API key
    GET  /api/users               (admin) list users
    GET  /api/users/{user_id}     (admin) one user
    PUT  /api/users/{user_id}     (admin) update name / email / is_admin
"""

from uuid import UUID

from fastapi import APIRouter

from nutrilens.dependencies import AdminUser, CurrentUser, DbSession, Ledger, Users
from nutrilens.schemas.common import ErrorResponse
from nutrilens.schemas.user import (
    ApiKeyResponse,
    AuthResponse,
    GoogleAuthRequest,
    LoginRequest,
    RegisterRequest,
    UserListResponse,
    UserProfile,
    UserSummary,
    UserUpdateRequest,
)
from nutrilens.services.user_service import to_profile, to_summary

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.post(
    "",
    status_code=201,
    response_model=AuthResponse,
    responses={400: {"description": "User already exists", "model": ErrorResponse}},
    summary="Register a new user",
)
async def register(body: RegisterRequest, db: DbSession, users: Users) -> AuthResponse:
    return await users.register(db, body)


@router.post(
    "/login",
    response_model=AuthResponse,
    responses={401: {"description": "Invalid email or password", "model": ErrorResponse}},
    summary="Sign in with email and password",
)
async def login(body: LoginRequest, db: DbSession, users: Users) -> AuthResponse:
    return await users.login(db, body.email, body.password)


@router.post(
    "/auth/google",
    response_model=AuthResponse,
    responses={401: {"description": "Invalid Google token", "model": ErrorResponse}},
    summary="Sign in with a Google ID token",
)
async def google_sign_in(body: GoogleAuthRequest, db: DbSession, users: Users) -> AuthResponse:
    return await users.google_sign_in(db, body.id_token)


@router.get("/profile", response_model=UserProfile, summary="Caller's profile")
async def get_profile(user: CurrentUser, ledger: Ledger) -> UserProfile:
    profile = to_profile(user)
    profile.credits = await ledger.get_balance(user.id)
    return profile


@router.post("/api-key", response_model=ApiKeyResponse, summary="Regenerate API key")
async def rotate_api_key(user: CurrentUser, db: DbSession, users: Users) -> ApiKeyResponse:
    return ApiKeyResponse(api_key=await users.rotate_api_key(db, user))


@router.get(
    "",
    response_model=UserListResponse,
    responses={403: {"model": ErrorResponse}},
    summary="List users (admin)",
)
async def list_users(admin: AdminUser, db: DbSession, users: Users) -> UserListResponse:
    return UserListResponse(users=await users.list_users(db))


@router.get(
    "/{user_id}",
    response_model=UserSummary,
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    summary="Get a user (admin)",
)
async def get_user(user_id: UUID, admin: AdminUser, db: DbSession, users: Users) -> UserSummary:
    return to_summary(await users.get_user(db, user_id))


@router.put(
    "/{user_id}",
    response_model=UserSummary,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
    },
    summary="Update a user (admin)",
)
async def update_user(
    user_id: UUID,
    body: UserUpdateRequest,
    admin: AdminUser,
    db: DbSession,
    users: Users,
) -> UserSummary:
    return await users.update_user(db, user_id, body)
