import logging
from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import HTTPException, status

from app.core.config import Settings
from app.schemas.calendar import (
    AvailableSlotsResponse,
    CalendarEvent,
    CalendarEventsResponse,
    CreateEventRequest,
    CreateEventResponse,
    FindSlotsRequest,
    TimeSlot,
)
from app.services.google_workspace_client import (
    GoogleWorkspaceClient,
    GoogleWorkspaceError,
    ReauthorizationRequiredError,
)
from app.services.oauth_session_store import OAuthSessionStore, create_oauth_session_store
from app.services.slot_finder import (
    InvalidSlotConfigurationError,
    WorkingHoursConfig,
    find_available_slots,
)

logger = logging.getLogger(__name__)

_UPCOMING_EVENTS_DAYS = 7
_UPCOMING_EVENTS_LIMIT = 20


class CalendarService:
    def __init__(
        self,
        settings: Settings,
        *,
        session_id: str,
        session_store: OAuthSessionStore | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.settings = settings
        self.session_id = session_id
        self.client = GoogleWorkspaceClient(
            session_id=session_id,
            session_store=session_store or create_oauth_session_store(settings),
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            calendar_id=settings.google_calendar_id,
            timeout_seconds=settings.google_api_timeout_seconds,
        )
        self._clock = clock or (lambda: datetime.now(UTC))

    def list_upcoming_events(self) -> CalendarEventsResponse:
        now = self._clock()
        raw_events = self._call_provider(
            lambda: self.client.list_events(
                now,
                now + timedelta(days=_UPCOMING_EVENTS_DAYS),
                max_results=_UPCOMING_EVENTS_LIMIT,
            ),
        )
        return CalendarEventsResponse(events=[_to_calendar_event(event) for event in raw_events])

    def find_slots(self, payload: FindSlotsRequest) -> AvailableSlotsResponse:
        window_start = self._clock()
        window_end = window_start + timedelta(days=payload.days)
        config = WorkingHoursConfig(
            start_hour=payload.start_hour,
            end_hour=payload.end_hour,
            timezone_offset_minutes=payload.tz_offset_minutes,
        )
        busy = self._call_provider(
            lambda: self.client.get_busy_intervals(window_start, window_end),
        )
        try:
            slots = find_available_slots(
                busy,
                window_start,
                window_end,
                payload.duration,
                config,
            )
        except InvalidSlotConfigurationError as exc:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail=str(exc),
            ) from exc

        logger.info(
            "Slot search completed busy_intervals=%s slots=%s duration=%s days=%s",
            len(busy),
            len(slots),
            payload.duration,
            payload.days,
        )
        return AvailableSlotsResponse(
            available_slots=[TimeSlot(start=slot.start, end=slot.end) for slot in slots],
        )

    def create_event(self, payload: CreateEventRequest) -> CreateEventResponse:
        if payload.end <= payload.start:
            raise HTTPException(
                status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
                detail="end must be later than start.",
            )
        raw_event = self._call_provider(
            lambda: self.client.create_event(
                title=payload.title.strip(),
                start=payload.start,
                end=payload.end,
                description=payload.description,
                location=payload.location,
            ),
        )
        return CreateEventResponse(event=_to_calendar_event(raw_event))

    def _call_provider(self, operation: Callable[[], Any]) -> Any:
        try:
            return operation()
        except ReauthorizationRequiredError as exc:
            logger.warning("Calendar request needs reauthorization reason=%s", exc)
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Session expired. Please reconnect.",
            ) from exc
        except GoogleWorkspaceError as exc:
            logger.warning(
                "Calendar provider request failed status_code=%s reason=%s",
                exc.status_code,
                exc,
            )
            raise HTTPException(
                status_code=status.HTTP_502_BAD_GATEWAY,
                detail="Failed to process calendar request",
            ) from exc


def _to_calendar_event(raw_event: dict[str, Any]) -> CalendarEvent:
    attendees = raw_event.get("attendees")
    return CalendarEvent(
        id=str(raw_event.get("id", "")),
        title=raw_event.get("summary"),
        start=_event_time(raw_event.get("start")),
        end=_event_time(raw_event.get("end")),
        location=raw_event.get("location"),
        attendees=len(attendees) if isinstance(attendees, list) else 0,
        description=raw_event.get("description"),
    )


def _event_time(raw_value: object) -> str | None:
    if not isinstance(raw_value, dict):
        return None
    # All-day events only carry a date.
    value = raw_value.get("dateTime") or raw_value.get("date")
    return value if isinstance(value, str) else None
