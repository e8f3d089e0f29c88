from pydantic import BaseModel


class GoogleAuthUrlRequest(BaseModel):
    origin: str | None = None


class GoogleAuthUrlResponse(BaseModel):
    url: str
