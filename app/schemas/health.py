from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    version: str
    environment: str
    google_oauth_configured: bool
    sessions_store: str
    timestamp: datetime
