from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CalendarEvent(BaseModel):
    id: str
    title: str | None = None
    start: str | None = None
    end: str | None = None
    location: str | None = None
    attendees: int = 0
    description: str | None = None


class CalendarEventsResponse(BaseModel):
    events: list[CalendarEvent]


class CreateEventRequest(BaseModel):
    title: str = Field(..., min_length=1)
    start: datetime
    end: datetime
    description: str | None = None
    location: str | None = None


class CreateEventResponse(BaseModel):
    event: CalendarEvent


class FindSlotsRequest(CamelModel):
    duration: int = Field(default=60, gt=0)
    days: int = Field(default=7, ge=1, le=60)
    start_hour: int = Field(default=4, ge=0, le=23)
    end_hour: int = Field(default=21, ge=0, le=23)
    tz_offset_minutes: int = Field(default=0, ge=-24 * 60, le=24 * 60)

    @field_validator("tz_offset_minutes", mode="before")
    @classmethod
    def default_missing_offset(cls, value: int | None) -> int:
        # Browsers that cannot report an offset send null.
        if value is None:
            return 0
        return value

    @model_validator(mode="after")
    def check_working_band(self) -> "FindSlotsRequest":
        if self.start_hour >= self.end_hour:
            raise ValueError("startHour must be lower than endHour.")
        return self


class TimeSlot(BaseModel):
    start: datetime
    end: datetime


class AvailableSlotsResponse(CamelModel):
    available_slots: list[TimeSlot]
