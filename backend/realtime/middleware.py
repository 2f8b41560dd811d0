"""WebSocket authentication middleware: JWT in the query string, session as fallback."""

import logging
from urllib.parse import parse_qs

from channels.db import database_sync_to_async
from channels.middleware import BaseMiddleware
from django.contrib.auth import get_user_model
from django.contrib.auth.models import AnonymousUser
from rest_framework_simplejwt.exceptions import TokenError
from rest_framework_simplejwt.tokens import AccessToken

User = get_user_model()
logger = logging.getLogger(__name__)


@database_sync_to_async
def _user_from_token(raw_token: str):
    try:
        access = AccessToken(raw_token)
    except TokenError as exc:
        logger.debug("JWT auth failed: %s", exc)
        return AnonymousUser()
    return User.objects.filter(id=access.get("user_id"), is_active=True).first() or AnonymousUser()


class JWTOrCookieAuthMiddleware(BaseMiddleware):
    """
    Authenticate WebSocket connections using either:
    1. JWT in querystring (?token=...) - mobile clients
    2. The session user set by AuthMiddlewareStack - browsers
    """

    async def __call__(self, scope, receive, send):
        params = parse_qs(scope.get("query_string", b"").decode())
        token_list = params.get("token")

        if token_list:
            scope["user"] = await _user_from_token(token_list[0])
        elif "user" not in scope:
            scope["user"] = AnonymousUser()

        return await super().__call__(scope, receive, send)
