# backend/core/dependencies.py
from fastapi import Depends, Query, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from starlette.requests import HTTPConnection
from sqlalchemy.orm import Session
from typing import Optional

from config.database import get_db
from config.settings import get_settings
from config.logging import get_logger
from core.exceptions import UnauthorizedError
from core.security import verify_token
from models.user import User
from services.realtime import RealtimeHub, get_hub
from utils.email_utils import OrderMailer, get_mailer

logger = get_logger(__name__)
settings = get_settings()
security = HTTPBearer(auto_error=False)


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> User:
    """Resolve the acting user from the bearer token."""
    if credentials is None:
        raise UnauthorizedError()

    payload = verify_token(credentials.credentials)
    if not payload or not payload.get("sub"):
        raise UnauthorizedError("Invalid authentication credentials")

    try:
        user_id = int(payload["sub"])
    except (TypeError, ValueError):
        raise UnauthorizedError("Invalid token payload")

    user = db.get(User, user_id)
    if user is None:
        raise UnauthorizedError("User not found")
    if not user.is_active:
        raise UnauthorizedError("User account is disabled")

    request.state.user_id = user.id
    return user


def get_realtime_hub(connection: HTTPConnection) -> RealtimeHub:
    return getattr(connection.app.state, "hub", None) or get_hub()


def get_order_mailer() -> OrderMailer:
    return get_mailer()


class PaginationParams:
    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number"),
        limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, description="Page size"),
        search: Optional[str] = Query(None, description="Search customer, order id, contact or city")
    ):
        self.page = page
        self.limit = min(limit, settings.MAX_PAGE_SIZE)
        self.search = search.strip() if search and search.strip() else None
        self.offset = (page - 1) * self.limit
