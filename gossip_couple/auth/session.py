"""
Authentication Service

Thin wrapper over the hosted auth service (supabase-py GoTrue client).

RESILIENCE: signing up with an email that is already registered falls
back to a password sign-in with the same credentials instead of failing,
so a user who forgot they had an account still gets in.
"""

from typing import Any, Optional

import structlog
from pydantic import BaseModel

logger = structlog.get_logger(__name__)


CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"


class AuthError(Exception):
    """Base exception for authentication failures."""
    pass


class InvalidCredentialsError(AuthError):
    """Email and password do not match an account."""
    pass


class AlreadyRegisteredError(AuthError):
    """The email is registered and the password did not sign in."""
    pass


class AuthIdentity(BaseModel):
    """The authenticated user as seen by the rest of the app."""
    user_id: str
    email: Optional[str] = None
    access_token: Optional[str] = None


def _is_already_registered(error: Exception) -> bool:
    return getattr(error, "status", None) == 422 or "already registered" in str(error).lower()


def _identity_from(response: Any) -> Optional[AuthIdentity]:
    user = getattr(response, "user", None)
    # get_session() returns the session itself, sign-in returns a wrapper
    if getattr(response, "access_token", None):
        session = response
    else:
        session = getattr(response, "session", None)
    if user is None and session is not None:
        user = getattr(session, "user", None)
    if user is None:
        return None
    return AuthIdentity(
        user_id=str(user.id),
        email=getattr(user, "email", None),
        access_token=getattr(session, "access_token", None) if session else None,
    )


class AuthService:
    """
    Sign-up, sign-in, OAuth and session retrieval.

    Args:
        auth: the async GoTrue client (client.auth)
        admin_auth: a service-role GoTrue client, needed only for
            find_user_id_by_email
    """

    def __init__(self, auth: Any, admin_auth: Optional[Any] = None):
        self._auth = auth
        self._admin_auth = admin_auth

    async def sign_in(self, email: str, password: str) -> AuthIdentity:
        try:
            response = await self._auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except Exception as e:
            logger.info("sign_in_failed", error=str(e))
            raise InvalidCredentialsError("Invalid email or password")

        identity = _identity_from(response)
        if identity is None:
            raise InvalidCredentialsError("Invalid email or password")
        return identity

    async def sign_up(self, email: str, password: str) -> AuthIdentity:
        """
        Create an account, or sign in when the email is already registered.

        Raises:
            AlreadyRegisteredError: registered email with a wrong password
            AuthError: any other sign-up failure
        """
        try:
            response = await self._auth.sign_up({"email": email, "password": password})
        except Exception as e:
            if not _is_already_registered(e):
                raise AuthError(f"Sign-up failed: {e}")
            logger.info("sign_up_already_registered", email=email)
            try:
                return await self.sign_in(email, password)
            except InvalidCredentialsError:
                raise AlreadyRegisteredError(
                    "This email is already registered. Try signing in."
                )

        identity = _identity_from(response)
        if identity is None:
            raise AuthError("Sign-up returned no user")
        return identity

    async def oauth_url(
        self,
        redirect_to: str,
        provider: str = "google",
        scopes: str = CALENDAR_SCOPE,
    ) -> str:
        """Start a delegated OAuth sign-in and return the provider URL."""
        response = await self._auth.sign_in_with_oauth(
            {
                "provider": provider,
                "options": {
                    "redirect_to": redirect_to,
                    "scopes": scopes,
                    "query_params": {"access_type": "offline", "prompt": "consent"},
                },
            }
        )
        return response.url

    async def sign_out(self) -> None:
        await self._auth.sign_out()

    async def get_session(self) -> Optional[AuthIdentity]:
        session = await self._auth.get_session()
        if session is None:
            return None
        return _identity_from(session)

    async def find_user_id_by_email(self, email: str) -> Optional[str]:
        """Look up a user id through the admin API."""
        if self._admin_auth is None:
            raise AuthError("Admin auth client is not configured")
        users = await self._admin_auth.admin.list_users()
        for user in users or []:
            if getattr(user, "email", None) == email:
                return str(user.id)
        return None
