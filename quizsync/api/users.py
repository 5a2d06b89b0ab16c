"""User registration, selection and deletion routes."""

from fastapi import APIRouter, Depends, HTTPException, status

from quizsync.api.deps import get_context
from quizsync.context import QuizSyncContext
from quizsync.schemas.common import SuccessResponse
from quizsync.schemas.user import (
    CurrentUserRead,
    RegistrationResult,
    RegistrationStatus,
    UserCreate,
    UserList,
    UserSelect,
)

router = APIRouter()

_REJECTION_STATUS = {
    RegistrationStatus.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    RegistrationStatus.INVALID: status.HTTP_400_BAD_REQUEST,
    RegistrationStatus.UNAVAILABLE: status.HTTP_503_SERVICE_UNAVAILABLE,
}


@router.get("/", response_model=UserList)
def list_users(ctx: QuizSyncContext = Depends(get_context)):
    return UserList(users=ctx.list_users(), current_user=ctx.current_user())


@router.get("/current", response_model=CurrentUserRead)
def current_user(ctx: QuizSyncContext = Depends(get_context)):
    return CurrentUserRead(user_name=ctx.current_user(), mode=ctx.mode)


@router.post("/", response_model=RegistrationResult, status_code=status.HTTP_201_CREATED)
def register(body: UserCreate, ctx: QuizSyncContext = Depends(get_context)):
    """Register a new user name on this installation (and in the cloud in cloud mode)."""
    result = ctx.register_user(body.name)
    if not result.success:
        raise HTTPException(status_code=_REJECTION_STATUS[result.status], detail=result.message)
    return result


@router.post("/select", response_model=CurrentUserRead)
def select(body: UserSelect, ctx: QuizSyncContext = Depends(get_context)):
    ctx.select_user(body.name)
    return CurrentUserRead(user_name=ctx.current_user(), mode=ctx.mode)


@router.delete("/{name}", response_model=SuccessResponse)
def delete(name: str, ctx: QuizSyncContext = Depends(get_context)):
    """Delete a user together with all of their locally stored progress."""
    removed = ctx.delete_user(name)
    return SuccessResponse(message="User deleted", data={"removed_keys": removed})
