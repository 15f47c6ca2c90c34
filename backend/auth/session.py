"""Signed-in identity for the running service.

The session only knows the current user id; the identity provider issues
HS256 ID tokens whose ``sub`` claim is that id. Listeners are awaited in
subscription order on every change.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

import jwt

from config import settings

logger = logging.getLogger(__name__)

AuthListener = Callable[[str | None], Awaitable[None]]


class AuthError(ValueError):
    pass


def decode_id_token(token: str) -> str:
    """Return the ``sub`` claim of a valid ID token."""
    try:
        payload = jwt.decode(
            token,
            settings.AUTH_TOKEN_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError:
        raise AuthError("Invalid token")
    user_id = str(payload.get("sub") or "").strip()
    if not user_id:
        raise AuthError("Invalid token")
    return user_id


class AuthSession:
    def __init__(self):
        self._user_id: str | None = None
        self._listeners: list[AuthListener] = []

    @property
    def user_id(self) -> str | None:
        return self._user_id

    @property
    def is_authenticated(self) -> bool:
        return self._user_id is not None

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    async def _set(self, user_id: str | None) -> None:
        if user_id == self._user_id:
            return
        self._user_id = user_id
        logger.info("Auth state changed: %s", "signed in" if user_id else "signed out")
        for listener in list(self._listeners):
            await listener(user_id)

    async def sign_in(self, user_id: str) -> str:
        user_id = (user_id or "").strip()
        if not user_id:
            raise AuthError("User id is required")
        await self._set(user_id)
        return user_id

    async def sign_in_with_token(self, token: str) -> str:
        return await self.sign_in(decode_id_token(token))

    async def sign_out(self) -> None:
        await self._set(None)


def bind_auth(session: AuthSession, store) -> Callable[[], None]:
    """Keep ``store.user_id`` in step with ``session``; returns the unsubscribe hook."""
    return session.subscribe(store.set_user_id)
