from fastapi import APIRouter, Depends, Query, Response, status
from fastapi.responses import RedirectResponse

from app.schemas.auth import GoogleAuthUrlRequest, GoogleAuthUrlResponse
from app.services.google_oauth_service import GoogleOAuthService, require_session_id

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/google/url", response_model=GoogleAuthUrlResponse)
def get_google_auth_url(payload: GoogleAuthUrlRequest | None = None) -> GoogleAuthUrlResponse:
    service = GoogleOAuthService()
    origin = payload.origin if payload else None
    return GoogleAuthUrlResponse(url=service.build_authorization_url(origin))


@router.get("/google/callback")
def handle_google_callback(
    code: str | None = Query(default=None),
    state: str | None = Query(default=None),
    error: str | None = Query(default=None),
) -> RedirectResponse:
    service = GoogleOAuthService()
    redirect_url = service.complete_authorization(code=code, state=state, provider_error=error)
    return RedirectResponse(url=redirect_url, status_code=302)


@router.delete("/google/session", status_code=status.HTTP_204_NO_CONTENT)
def revoke_google_session(session_id: str = Depends(require_session_id)) -> Response:
    service = GoogleOAuthService()
    service.revoke_session(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
