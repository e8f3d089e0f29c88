from fastapi import APIRouter, Depends

from app.core.config import get_settings
from app.schemas.calendar import (
    AvailableSlotsResponse,
    CalendarEventsResponse,
    CreateEventRequest,
    CreateEventResponse,
    FindSlotsRequest,
)
from app.services.calendar_service import CalendarService
from app.services.google_oauth_service import require_session_id

router = APIRouter(prefix="/calendar", tags=["calendar"])


@router.get("/events", response_model=CalendarEventsResponse)
def list_events(session_id: str = Depends(require_session_id)) -> CalendarEventsResponse:
    service = CalendarService(get_settings(), session_id=session_id)
    return service.list_upcoming_events()


@router.post("/find-slots", response_model=AvailableSlotsResponse)
def find_slots(
    payload: FindSlotsRequest | None = None,
    session_id: str = Depends(require_session_id),
) -> AvailableSlotsResponse:
    service = CalendarService(get_settings(), session_id=session_id)
    return service.find_slots(payload or FindSlotsRequest())


@router.post("/create-event", response_model=CreateEventResponse)
def create_event(
    payload: CreateEventRequest,
    session_id: str = Depends(require_session_id),
) -> CreateEventResponse:
    service = CalendarService(get_settings(), session_id=session_id)
    return service.create_event(payload)
