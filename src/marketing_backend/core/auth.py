"""Session cookie signing and request guards."""

import logging
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any, Callable, Optional

from fastapi import Depends, Request
from jose import JWTError, jwt
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from marketing_backend.core.errors import NotAuthenticatedError
from marketing_backend.core.models import ShopRecord
from marketing_backend.core.repository import ShopRepository
from marketing_backend.core.session import SessionContext, SessionStore
from marketing_backend.core.settings import SESSION_COOKIE_NAME, AppSettings

logger = logging.getLogger("session")


def create_session_token(session_id: str, settings: AppSettings) -> str:
    """Sign a session id into the value stored in the session cookie."""
    expire = datetime.now(UTC) + timedelta(seconds=settings.session_max_age)
    to_encode = {"sid": session_id, "exp": expire}
    return jwt.encode(to_encode, settings.session_secret, algorithm=settings.session_algorithm)


def decode_session_token(token: str, settings: AppSettings) -> Optional[str]:
    """Return the session id from a cookie value, or None if it is invalid or expired."""
    try:
        payload = jwt.decode(
            token,
            settings.session_secret,
            algorithms=[settings.session_algorithm],
        )
    except JWTError:
        return None

    session_id: Any | None = payload.get("sid")
    if not isinstance(session_id, str) or not session_id:
        return None
    return session_id


class SessionCookieMiddleware(BaseHTTPMiddleware):
    """
    Resolve the session id for every request.

    A missing, tampered or expired cookie gets a fresh id. The cookie is
    written, and re-signed with a new expiry, whenever the request stored
    something under that id.
    """

    def __init__(
        self,
        app: ASGIApp,
        store: SessionStore,
        settings: AppSettings,
        secure: bool = False,
    ) -> None:
        super().__init__(app)
        self.store = store
        self.settings = settings
        self.secure = secure

    async def dispatch(self, request: Request, call_next: Callable) -> Any:
        token = request.cookies.get(SESSION_COOKIE_NAME)
        session_id = decode_session_token(token, self.settings) if token else None
        issued = session_id is None
        if session_id is None:
            session_id = secrets.token_urlsafe(32)
        request.state.session_id = session_id
        before = self.store.get(session_id)

        response = await call_next(request)

        after = self.store.get(session_id)
        # A write renews the stored expiry; re-sign the cookie to match
        if after is not None and (before is None or after.expires_at != before.expires_at):
            if issued:
                logger.info("Issuing new session cookie")
            response.set_cookie(
                SESSION_COOKIE_NAME,
                create_session_token(session_id, self.settings),
                max_age=self.settings.session_max_age,
                httponly=True,
                secure=self.secure,
                samesite="lax",
            )
        return response


def get_session_context(request: Request) -> SessionContext:
    """FastAPI dependency giving the handler its session."""
    return SessionContext(request.app.state.session_store, request.state.session_id)


def require_shop(shops: ShopRepository) -> Callable[..., ShopRecord]:
    """
    Build a dependency that resolves the session's bound shop.

    Raises NotAuthenticatedError when no shop is bound or the shop has no
    access token.
    """

    def get_current_shop(session: SessionContext = Depends(get_session_context)) -> ShopRecord:
        shop_id = session.shop_id
        if shop_id is None:
            raise NotAuthenticatedError("Shopify store not connected")

        shop = shops.get(shop_id)
        if shop is None or not shop.access_token:
            raise NotAuthenticatedError("Shopify store not properly authenticated")
        return shop

    return get_current_shop
