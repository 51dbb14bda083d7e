# =============================================================================
# todo_core/services/auth_service.py
# Email/password authentication over Supabase Auth
# =============================================================================
"""
AuthService - sign-up, sign-in and session restore for the sync core.

Wraps ``client.auth`` of a Supabase client. Every call returns a
ServiceResult; provider error codes (e.g. ``email_not_confirmed``) are passed
through verbatim in ``error_code``.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Optional

from todo_core.auth.session_store import SessionStore
from todo_core.models import CurrentUser
from todo_core.services.base_service import BaseService, ServiceResult
from todo_core.settings import AUTH_REDIRECT_URL


def _provider_error(error: Exception) -> tuple:
    """(message, code, status) of a gotrue/transport exception."""
    message = getattr(error, "message", None) or str(error)
    return message, getattr(error, "code", None), getattr(error, "status", None)


def _field(obj: Any, name: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


def session_to_dict(session: Any) -> Optional[Dict[str, Any]]:
    """The parts of a provider session that are worth persisting."""
    if session is None:
        return None
    user = CurrentUser.from_provider(_field(session, "user"))
    return {
        "access_token": _field(session, "access_token"),
        "refresh_token": _field(session, "refresh_token"),
        "expires_at": _field(session, "expires_at"),
        "user": {"id": user.id, "email": user.email} if user else None,
    }


class AuthService(BaseService):
    """
    Email/password auth with an encrypted, persisted session.

    Usage:
        auth = AuthService(client, session_store)
        result = auth.sign_in("me@example.com", "secret")
        if not result and result.error_code == "email_not_confirmed":
            auth.resend_confirmation_email("me@example.com")
    """

    def __init__(self, client: Any, session_store: SessionStore, redirect_url: str = AUTH_REDIRECT_URL):
        super().__init__()
        self.client = client
        self.session_store = session_store
        self.redirect_url = redirect_url

    # =========================================================================
    # SIGN UP / SIGN IN
    # =========================================================================

    def sign_up(self, email: str, password: str) -> ServiceResult:
        try:
            response = self.client.auth.sign_up({
                "email": email,
                "password": password,
                "options": {"email_redirect_to": self.redirect_url},
            })
        except Exception as e:
            message, code, _ = _provider_error(e)
            self.logger.error(f"Sign up failed: {message}")
            return ServiceResult.fail(message, error_code=code or "unknown")

        user, session = response.user, response.session
        needs_confirmation = bool(user) and not _field(user, "email_confirmed_at")
        if needs_confirmation:
            self.logger.info(f"Sign up for {email} awaits email confirmation")
        return ServiceResult.ok(
            {"user": user, "session": session},
            {"needs_confirmation": needs_confirmation, "has_session": session is not None},
        )

    def sign_in(self, email: str, password: str) -> ServiceResult:
        try:
            response = self.client.auth.sign_in_with_password({"email": email, "password": password})
        except Exception as e:
            message, code, _ = _provider_error(e)
            if code == "email_not_confirmed":
                self.logger.info(f"Sign in blocked, email not confirmed: {email}")
                return ServiceResult.fail(message, error_code=code, metadata={"email": email})
            self.logger.warning(f"Sign in failed: {message}")
            return ServiceResult.fail(message, error_code=code or "unknown")

        if response.session is not None:
            self.session_store.save_session(session_to_dict(response.session))
        self.logger.info(f"Signed in as {email}")
        return ServiceResult.ok({"user": response.user, "session": response.session})

    def resend_confirmation_email(self, email: str) -> ServiceResult:
        try:
            self.client.auth.resend({
                "type": "signup",
                "email": email,
                "options": {"email_redirect_to": self.redirect_url},
            })
        except Exception as e:
            message, code, status = _provider_error(e)
            self.logger.error(f"Resending confirmation to {email} failed: {message} (status={status})")
            if status == 429:
                message = "Too many emails sent, please try again later"
            elif "rate limit" in message:
                message = "Sending rate is too high, please try again later"
            elif "not found" in message:
                message = "This email is not registered or is already confirmed"
            return ServiceResult.fail(message, error_code=code or "unknown")

        self.logger.info(f"Confirmation email re-sent to {email}")
        return ServiceResult.ok()

    def sign_out(self) -> ServiceResult:
        """Sign out at the provider; the stored session is cleared either way."""
        try:
            self.client.auth.sign_out()
        except Exception as e:
            message, code, _ = _provider_error(e)
            self.logger.warning(f"Sign out failed: {message}")
            return ServiceResult.fail(message, error_code=code or "unknown")
        finally:
            self.session_store.clear_session()
        return ServiceResult.ok()

    # =========================================================================
    # CURRENT USER / SESSION
    # =========================================================================

    def get_current_user(self) -> ServiceResult:
        """The signed-in user as a CurrentUser; fails with AUTH_REQUIRED if none."""
        try:
            response = self.client.auth.get_user()
        except Exception as e:
            message, code, _ = _provider_error(e)
            return ServiceResult.fail(message, error_code=code or "AUTH_REQUIRED")

        user = CurrentUser.from_provider(_field(response, "user"))
        if user is None:
            return ServiceResult.fail("User is not signed in", error_code="AUTH_REQUIRED")
        return ServiceResult.ok(user)

    def get_session(self) -> ServiceResult:
        try:
            return ServiceResult.ok(self.client.auth.get_session())
        except Exception as e:
            message, code, _ = _provider_error(e)
            return ServiceResult.fail(message, error_code=code or "unknown")

    def restore_session(self) -> ServiceResult:
        """
        Re-establish the provider session from the encrypted session file.

        Returns:
            ServiceResult with data ``{"restored": bool}``; when not restored,
            ``reason`` says why (and ``expires_at`` is set for an expired file).
        """
        expires_at = self.session_store.get_expiration_time()
        stored = self.session_store.get_session()
        if stored is None:
            if expires_at is not None:
                return ServiceResult.ok({
                    "restored": False,
                    "reason": f"Session expired ({self.session_store.validity_days} day validity)",
                    "expires_at": expires_at,
                })
            return ServiceResult.ok({"restored": False, "reason": "No stored session"})

        access_token = stored.get("access_token")
        refresh_token = stored.get("refresh_token")
        if not access_token or not refresh_token:
            self.session_store.clear_session()
            return ServiceResult.ok({"restored": False, "reason": "Stored session has no tokens"})

        try:
            response = self.client.auth.set_session(access_token, refresh_token)
        except Exception as e:
            message, _, _ = _provider_error(e)
            self.logger.warning(f"Stored session rejected: {message}")
            self.session_store.clear_session()
            return ServiceResult.ok({"restored": False, "reason": message})

        session = _field(response, "session")
        if session is not None:
            self.session_store.save_session(session_to_dict(session))
        self.logger.info("Session restored")
        return ServiceResult.ok({"restored": True})

    def on_auth_state_change(self, callback: Callable[[str, Any], None]) -> Any:
        """Register ``callback(event, session)``; returns the provider subscription."""
        return self.client.auth.on_auth_state_change(callback)
