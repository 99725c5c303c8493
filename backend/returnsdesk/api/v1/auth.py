from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from returnsdesk.core import security
from returnsdesk.core.dependencies import get_current_user
from returnsdesk.db.session import get_session
from returnsdesk.models.user import User
from returnsdesk.schemas.auth import LoginRequest, TokenResponse, UserRead
from returnsdesk.services import auth as auth_service

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(payload: LoginRequest, session: AsyncSession = Depends(get_session)) -> TokenResponse:
    user = await auth_service.authenticate_user(session, payload.email, payload.password)
    return TokenResponse(access_token=security.create_access_token(str(user.id)))


@router.get("/me", response_model=UserRead)
async def me(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)
