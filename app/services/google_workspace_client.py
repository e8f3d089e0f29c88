import json
import logging
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib import error, parse, request

from app.services.oauth_session_store import OAuthSessionStore
from app.services.slot_finder import BusyInterval

logger = logging.getLogger(__name__)

_TOKEN_EXPIRY_SKEW_SECONDS = 60
_DEFAULT_TOKEN_TTL_SECONDS = 3600


class GoogleWorkspaceError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ReauthorizationRequiredError(GoogleWorkspaceError):
    pass


class GoogleWorkspaceClient:
    def __init__(
        self,
        *,
        session_id: str,
        session_store: OAuthSessionStore,
        client_id: str = "",
        client_secret: str = "",
        calendar_id: str = "primary",
        timeout_seconds: float = 10.0,
        calendar_api_base_url: str = "https://www.googleapis.com/calendar/v3",
        oauth_token_url: str = "https://oauth2.googleapis.com/token",
    ) -> None:
        self.session_id = session_id
        self.session_store = session_store
        self.client_id = client_id
        self.client_secret = client_secret
        self.calendar_id = calendar_id
        self.timeout_seconds = timeout_seconds
        self.calendar_api_base_url = calendar_api_base_url.rstrip("/")
        self.oauth_token_url = oauth_token_url

    def get_busy_intervals(
        self,
        window_start: datetime,
        window_end: datetime,
    ) -> list[BusyInterval]:
        response_payload = self.request_json(
            "POST",
            f"{self.calendar_api_base_url}/freeBusy",
            payload={
                "timeMin": _to_rfc3339(window_start),
                "timeMax": _to_rfc3339(window_end),
                "items": [{"id": self.calendar_id}],
            },
        )
        calendars = response_payload.get("calendars")
        if not isinstance(calendars, dict):
            return []
        calendar = calendars.get(self.calendar_id)
        if not isinstance(calendar, dict):
            return []
        calendar_errors = calendar.get("errors")
        if isinstance(calendar_errors, list) and calendar_errors:
            reasons = ", ".join(
                str(item.get("reason", "unknown")) if isinstance(item, dict) else "unknown"
                for item in calendar_errors
            )
            raise GoogleWorkspaceError(
                f"Free/busy lookup failed for calendar {self.calendar_id}: {reasons}",
            )
        raw_busy = calendar.get("busy")
        if not isinstance(raw_busy, list):
            return []

        intervals: list[BusyInterval] = []
        for raw_interval in raw_busy:
            if not isinstance(raw_interval, dict):
                continue
            start = _parse_datetime(raw_interval.get("start"))
            end = _parse_datetime(raw_interval.get("end"))
            if not start or not end:
                continue
            intervals.append(BusyInterval(start=start, end=end))
        return intervals

    def list_events(
        self,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 20,
    ) -> list[dict[str, Any]]:
        query = parse.urlencode(
            {
                "timeMin": _to_rfc3339(time_min),
                "timeMax": _to_rfc3339(time_max),
                "maxResults": str(max_results),
                "singleEvents": "true",
                "orderBy": "startTime",
            },
        )
        response_payload = self.request_json("GET", f"{self._events_url()}?{query}")
        items = response_payload.get("items")
        if not isinstance(items, list):
            return []
        return [item for item in items if isinstance(item, dict)]

    def create_event(
        self,
        *,
        title: str,
        start: datetime,
        end: datetime,
        description: str | None = None,
        location: str | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "summary": title,
            "start": {"dateTime": _to_rfc3339(start), "timeZone": "UTC"},
            "end": {"dateTime": _to_rfc3339(end), "timeZone": "UTC"},
        }
        if description:
            payload["description"] = description
        if location:
            payload["location"] = location

        response_payload = self.request_json("POST", self._events_url(), payload=payload)
        event_id = response_payload.get("id")
        if not isinstance(event_id, str) or not event_id.strip():
            raise GoogleWorkspaceError("Google Calendar create event response missing id.")
        return response_payload

    def request_json(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        access_token = self._resolve_access_token()
        try:
            return self._send(method, url, access_token=access_token, payload=payload)
        except error.HTTPError as exc:
            if exc.code != 401:
                raise self._http_error(exc) from exc
            logger.info("Google API rejected token session=%s, refreshing", self._session_label())

        refreshed_token = self._refresh_access_token()
        try:
            return self._send(method, url, access_token=refreshed_token, payload=payload)
        except error.HTTPError as exc:
            if exc.code == 401:
                raise ReauthorizationRequiredError(
                    "Google API rejected refreshed credentials.",
                    status_code=401,
                ) from exc
            raise self._http_error(exc) from exc

    def _send(
        self,
        method: str,
        url: str,
        *,
        access_token: str,
        payload: dict[str, Any] | None,
    ) -> dict[str, Any]:
        raw_payload: bytes | None = None
        if payload is not None:
            raw_payload = json.dumps(payload).encode("utf-8")

        req = request.Request(
            url,
            data=raw_payload,
            method=method,
            headers={
                "Authorization": f"Bearer {access_token}",
                "Content-Type": "application/json",
            },
        )

        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except error.HTTPError:
            raise
        except TimeoutError as exc:
            raise GoogleWorkspaceError("Google API request timed out.") from exc
        except error.URLError as exc:
            raise GoogleWorkspaceError(f"Google API connection error: {exc.reason}") from exc

        if not response_body:
            return {}
        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise GoogleWorkspaceError("Google API returned invalid JSON.") from exc

        if not isinstance(parsed_body, dict):
            raise GoogleWorkspaceError("Google API response is not a JSON object.")
        return parsed_body

    def _resolve_access_token(self) -> str:
        session = self.session_store.get_session(self.session_id)
        if not session:
            raise ReauthorizationRequiredError("No stored Google credentials for this session.")
        if not session.access_token or session.expires_within(_TOKEN_EXPIRY_SKEW_SECONDS):
            return self._refresh_access_token()
        return session.access_token

    def _refresh_access_token(self) -> str:
        session = self.session_store.get_session(self.session_id)
        if not session:
            raise ReauthorizationRequiredError("No stored Google credentials for this session.")
        if not session.refresh_token.strip():
            raise ReauthorizationRequiredError("Session has no refresh token.")
        if not self.client_id.strip() or not self.client_secret.strip():
            raise ReauthorizationRequiredError("Google OAuth client is not configured.")

        body = parse.urlencode(
            {
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "refresh_token": session.refresh_token,
                "grant_type": "refresh_token",
            },
        ).encode("utf-8")
        req = request.Request(
            self.oauth_token_url,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise GoogleWorkspaceError("Google OAuth refresh request timed out.") from exc
        except error.HTTPError as exc:
            body_text = exc.read().decode("utf-8", errors="ignore")
            if exc.code in {400, 401}:
                logger.warning(
                    "Google OAuth refresh rejected session=%s status_code=%s",
                    self._session_label(),
                    exc.code,
                )
                raise ReauthorizationRequiredError(
                    f"Google OAuth refresh HTTP {exc.code}: {body_text or 'empty response body'}",
                    status_code=exc.code,
                ) from exc
            raise GoogleWorkspaceError(
                f"Google OAuth refresh HTTP {exc.code}: {body_text or 'empty response body'}",
                status_code=exc.code,
            ) from exc
        except error.URLError as exc:
            raise GoogleWorkspaceError(
                f"Google OAuth refresh connection error: {exc.reason}",
            ) from exc

        try:
            payload = json.loads(response_body.decode("utf-8"))
        except json.JSONDecodeError as exc:
            raise GoogleWorkspaceError("Google OAuth refresh returned invalid JSON.") from exc

        if not isinstance(payload, dict):
            raise GoogleWorkspaceError("Google OAuth refresh response is not a JSON object.")
        new_access_token = payload.get("access_token")
        if not isinstance(new_access_token, str) or not new_access_token.strip():
            raise GoogleWorkspaceError("Google OAuth refresh did not include access_token.")

        rotated_refresh_token = payload.get("refresh_token")
        if not isinstance(rotated_refresh_token, str) or not rotated_refresh_token.strip():
            rotated_refresh_token = None
        self.session_store.update_tokens(
            self.session_id,
            access_token=new_access_token.strip(),
            expires_at=_expires_at_from_payload(payload),
            refresh_token=rotated_refresh_token.strip() if rotated_refresh_token else None,
        )
        logger.info("Google access token refreshed session=%s", self._session_label())
        return new_access_token.strip()

    def _http_error(self, exc: error.HTTPError) -> GoogleWorkspaceError:
        body = exc.read().decode("utf-8", errors="ignore")
        return GoogleWorkspaceError(
            f"Google API HTTP {exc.code}: {body or 'empty response body'}",
            status_code=exc.code,
        )

    def _events_url(self) -> str:
        return f"{self.calendar_api_base_url}/calendars/{parse.quote(self.calendar_id, safe='')}/events"

    def _session_label(self) -> str:
        return f"{self.session_id[:16]}..."


def _expires_at_from_payload(payload: dict[str, Any]) -> datetime:
    raw_expires_in = payload.get("expires_in")
    try:
        expires_in = int(raw_expires_in)
    except (TypeError, ValueError):
        expires_in = _DEFAULT_TOKEN_TTL_SECONDS
    return datetime.now(UTC) + timedelta(seconds=expires_in)


def _to_rfc3339(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat().replace("+00:00", "Z")


def _parse_datetime(raw_value: object) -> datetime | None:
    if not isinstance(raw_value, str) or not raw_value.strip():
        return None
    normalized = raw_value.strip().replace("Z", "+00:00")
    try:
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)
