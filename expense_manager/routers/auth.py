from fastapi import APIRouter, Depends, Request

from expense_manager.core.config import Settings
from expense_manager.core.security import get_app_settings
from expense_manager.db.dal import Database
from expense_manager.models.expense import Envelope
from expense_manager.models.user import LoginIn, RegisterIn, TokenOut, UserOut
from expense_manager.services.identity import IdentityService

router = APIRouter(prefix="/auth", tags=["auth"])


def get_identity_service(request: Request) -> IdentityService:
    settings: Settings = get_app_settings(request)
    db = Database(settings.db_path, busy_timeout=settings.db_busy_timeout_seconds)
    return IdentityService(db, settings)


@router.post(
    "/register",
    response_model=Envelope[UserOut],
    status_code=201,
    summary="Register a user",
)
def register(
    payload: RegisterIn, service: IdentityService = Depends(get_identity_service)
):
    user = service.register(payload)
    return Envelope(message="User registered successfully", data=user)


@router.post(
    "/login", response_model=Envelope[TokenOut], summary="Exchange credentials for a token"
)
def login(
    payload: LoginIn, service: IdentityService = Depends(get_identity_service)
):
    token = service.login(payload)
    return Envelope(message="Login successful", data=token)
