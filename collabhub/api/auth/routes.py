"""
Authentication Routes

API endpoints for user authentication.
"""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request

from collabhub.api.audit.middleware import get_client_ip
from collabhub.api.audit.recorder import AuditRecorder
from collabhub.api.auth.schemas import (
    AuthResponse,
    FederatedLoginRequest,
    UserLoginRequest,
    UserResponse,
)
from collabhub.api.auth.service import AuthService
from collabhub.api.config import settings
from collabhub.api.db.repositories import SqlUnitOfWork
from collabhub.api.dependencies import get_recorder, get_uow
from collabhub.api.errors import AuthenticationError, NotFoundError


router = APIRouter()


def get_auth_service(
    uow: SqlUnitOfWork = Depends(get_uow),
    recorder: AuditRecorder = Depends(get_recorder),
) -> AuthService:
    """Dependency to get auth service."""
    return AuthService(uow, recorder, allowed_providers=tuple(settings.FEDERATED_PROVIDERS))


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Login with email and password",
)
async def login(
    data: UserLoginRequest,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """
    Authenticate with email and password.

    Returns an access token carrying the user's roles and permissions.
    """
    user = await auth_service.authenticate_password(
        data.email,
        data.password,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    token = await auth_service.issue_token(user)
    return AuthResponse(**token, user=UserResponse.model_validate(user))


@router.post(
    "/federated",
    response_model=AuthResponse,
    summary="Login with an externally verified identity",
)
async def federated_login(
    data: FederatedLoginRequest,
    request: Request,
    x_federation_secret: Optional[str] = Header(None),
    auth_service: AuthService = Depends(get_auth_service),
) -> AuthResponse:
    """
    Sign in a user whose identity the OAuth gateway has already verified.

    Only callable by the gateway: the request must carry the shared secret
    in ``X-Federation-Secret``. Without a configured secret the endpoint
    does not exist.
    """
    expected = settings.FEDERATION_SHARED_SECRET
    if not expected:
        raise NotFoundError("Endpoint")
    if not x_federation_secret or not hmac.compare_digest(x_federation_secret, expected):
        raise AuthenticationError("Invalid federation credentials")

    user = await auth_service.authenticate_federated(
        data.provider,
        data.email,
        first_name=data.first_name,
        last_name=data.last_name,
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    token = await auth_service.issue_token(user)
    return AuthResponse(**token, user=UserResponse.model_validate(user))
