from __future__ import annotations

import json
import logging
from datetime import UTC, datetime, timedelta
from urllib.parse import urlencode
from urllib.request import Request, urlopen

from fastapi import Header, HTTPException, status

from app.core.config import Settings, get_settings
from app.services.oauth_session_store import (
    OAuthSession,
    OAuthSessionStore,
    create_oauth_session_store,
)
from app.services.security_utils import (
    create_signed_token,
    decode_signed_token,
    generate_session_id,
    is_valid_session_id,
)

logger = logging.getLogger(__name__)

_GOOGLE_OAUTH_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
_GOOGLE_OAUTH_TOKEN_URL = "https://oauth2.googleapis.com/token"
_GOOGLE_OAUTH_SCOPES = (
    "https://www.googleapis.com/auth/gmail.modify",
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/documents.readonly",
    "https://www.googleapis.com/auth/tasks",
)
_STATE_TOKEN_TYPE = "google_oauth_state"
_STATE_TTL_MINUTES = 10


class OAuthCallbackError(Exception):
    pass


class GoogleOAuthService:
    def __init__(
        self,
        settings: Settings | None = None,
        session_store: OAuthSessionStore | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.session_store = session_store or create_oauth_session_store(self.settings)

    def build_authorization_url(self, origin: str | None = None) -> str:
        self._assert_google_oauth_is_configured()
        claims: dict[str, object] = {"type": _STATE_TOKEN_TYPE}
        if origin and origin.strip():
            claims["origin"] = origin.strip().rstrip("/")
        state_token = create_signed_token(
            claims=claims,
            secret_key=self.settings.auth_secret_key,
            ttl_minutes=_STATE_TTL_MINUTES,
        )
        query = urlencode(
            {
                "client_id": self.settings.google_client_id,
                "redirect_uri": self.settings.google_redirect_uri,
                "response_type": "code",
                "scope": " ".join(_GOOGLE_OAUTH_SCOPES),
                "access_type": "offline",
                "prompt": "consent",
                "state": state_token,
            },
        )
        return f"{_GOOGLE_OAUTH_AUTHORIZE_URL}?{query}"

    def complete_authorization(
        self,
        *,
        code: str | None,
        state: str | None,
        provider_error: str | None = None,
    ) -> str:
        """Finish the consent flow and return the frontend redirect URL.

        Every failure redirects with ``auth=failed`` instead of raising, so the
        browser always lands back on the dashboard.
        """
        decoded_state = decode_signed_token(state or "", self.settings.auth_secret_key)
        frontend_url = self.resolve_frontend_url(decoded_state)

        if provider_error or not code:
            logger.warning(
                "Google OAuth callback without code provider_error=%s",
                provider_error or "missing_code",
            )
            return f"{frontend_url}?auth=failed"
        if not decoded_state or decoded_state.get("type") != _STATE_TOKEN_TYPE:
            logger.warning("Google OAuth callback rejected: invalid state")
            return f"{frontend_url}?auth=failed"

        try:
            token_payload = self._exchange_code_for_tokens(code)
            session_id = self._store_tokens(token_payload)
        except OAuthCallbackError as exc:
            logger.warning("Google OAuth callback failed reason=%s", exc)
            return f"{frontend_url}?auth=failed"

        logger.info("Google OAuth session created session=%s...", session_id[:16])
        return f"{frontend_url}?{urlencode({'userId': session_id, 'auth': 'success'})}"

    def revoke_session(self, session_id: str) -> bool:
        return self.session_store.delete_session(session_id)

    def resolve_frontend_url(self, decoded_state: dict[str, object] | None) -> str:
        configured = self.settings.frontend_base_url.strip()
        if configured:
            return configured.rstrip("/")

        allowed_origins = [origin.rstrip("/") for origin in self.settings.allowed_origins]
        if decoded_state:
            origin = decoded_state.get("origin")
            if isinstance(origin, str) and origin in allowed_origins:
                return origin
        if allowed_origins:
            return allowed_origins[0]
        return "/"

    def _store_tokens(self, token_payload: dict[str, object]) -> str:
        access_token = token_payload.get("access_token")
        if not isinstance(access_token, str) or not access_token.strip():
            raise OAuthCallbackError("token response did not include access_token")
        refresh_token = token_payload.get("refresh_token")
        try:
            expires_in = int(token_payload.get("expires_in", 3600))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            expires_in = 3600

        session_id = generate_session_id()
        try:
            self.session_store.save_session(
                OAuthSession(
                    session_id=session_id,
                    access_token=access_token.strip(),
                    refresh_token=refresh_token.strip() if isinstance(refresh_token, str) else "",
                    expires_at=datetime.now(UTC) + timedelta(seconds=expires_in),
                ),
            )
        except Exception as exc:
            raise OAuthCallbackError("token storage failed") from exc
        return session_id

    def _assert_google_oauth_is_configured(self) -> None:
        if (
            not self.settings.google_client_id.strip()
            or not self.settings.google_client_secret.strip()
            or not self.settings.google_redirect_uri.strip()
        ):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Google OAuth is not configured.",
            )

    def _exchange_code_for_tokens(self, code: str) -> dict[str, object]:
        body = urlencode(
            {
                "code": code,
                "client_id": self.settings.google_client_id,
                "client_secret": self.settings.google_client_secret,
                "redirect_uri": self.settings.google_redirect_uri,
                "grant_type": "authorization_code",
            },
        ).encode("utf-8")
        request = Request(
            _GOOGLE_OAUTH_TOKEN_URL,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        try:
            with urlopen(request, timeout=15) as response:
                raw_payload = response.read().decode("utf-8")
        except Exception as exc:
            raise OAuthCallbackError("token exchange request failed") from exc

        try:
            payload = json.loads(raw_payload)
        except json.JSONDecodeError as exc:
            raise OAuthCallbackError("token response is not valid JSON") from exc
        if not isinstance(payload, dict):
            raise OAuthCallbackError("token response is not a JSON object")
        if payload.get("error"):
            raise OAuthCallbackError(f"token exchange rejected: {payload.get('error')}")
        return payload


def require_session_id(
    x_user_id: str | None = Header(default=None, alias="x-user-id"),
) -> str:
    session_id = (x_user_id or "").strip()
    if not session_id or not is_valid_session_id(session_id):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    return session_id
