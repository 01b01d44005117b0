"""
Accounts API Router - Registration and login.
"""

import logging

from fastapi import APIRouter, HTTPException, Request, status

from app.auth import AuthError
from app.schemas.requests import CredentialsRequest
from app.schemas.responses import AuthResponse, UserResponse
from app.services.shorts_service import ShortsService, UserExistsError, ValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Accounts"])


def _get_service(request: Request) -> ShortsService:
    return request.app.state.shorts_service


@router.post("/register", response_model=AuthResponse)
async def register(body: CredentialsRequest, request: Request):
    """Create an account. New accounts start with 100 credits."""
    service = _get_service(request)
    try:
        user, token = await service.register(body.email, body.password)
    except (ValidationError, UserExistsError) as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return AuthResponse(token=token, user=UserResponse(id=user.id, email=user.email, credits=user.credits))


@router.post("/login", response_model=AuthResponse)
async def login(body: CredentialsRequest, request: Request):
    """Exchange credentials for a bearer token."""
    service = _get_service(request)
    try:
        user, token = service.login(body.email, body.password)
    except AuthError as e:
        logger.info(f"Failed login for {body.email}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )

    return AuthResponse(token=token, user=UserResponse(id=user.id, email=user.email, credits=user.credits))
