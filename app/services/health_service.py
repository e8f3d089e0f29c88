from datetime import UTC, datetime

from app.core.config import Settings
from app.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> HealthResponse:
        google_oauth_configured = bool(
            self.settings.google_client_id.strip() and self.settings.google_client_secret.strip(),
        )
        return HealthResponse(
            status="ok",
            service=self.settings.app_name,
            version=self.settings.app_version,
            environment=self.settings.app_env,
            google_oauth_configured=google_oauth_configured,
            sessions_store=self.settings.oauth_sessions_store,
            timestamp=datetime.now(UTC),
        )
