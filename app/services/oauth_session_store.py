from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from app.core.config import Settings


@dataclass(frozen=True)
class OAuthSession:
    session_id: str
    access_token: str
    refresh_token: str
    expires_at: datetime

    def expires_within(self, seconds: float, *, now: datetime | None = None) -> bool:
        reference = now or datetime.now(UTC)
        return (self.expires_at - reference).total_seconds() <= seconds


class OAuthSessionStore(ABC):
    @abstractmethod
    def get_session(self, session_id: str) -> OAuthSession | None:
        raise NotImplementedError

    @abstractmethod
    def save_session(self, session: OAuthSession) -> None:
        raise NotImplementedError

    @abstractmethod
    def update_tokens(
        self,
        session_id: str,
        *,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None:
        raise NotImplementedError

    @abstractmethod
    def delete_session(self, session_id: str) -> bool:
        raise NotImplementedError


class InMemoryOAuthSessionStore(OAuthSessionStore):
    def __init__(self) -> None:
        self._sessions: dict[str, OAuthSession] = {}

    def get_session(self, session_id: str) -> OAuthSession | None:
        return self._sessions.get(session_id)

    def save_session(self, session: OAuthSession) -> None:
        self._sessions[session.session_id] = session

    def update_tokens(
        self,
        session_id: str,
        *,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None:
        current = self._sessions.get(session_id)
        if not current:
            return
        self._sessions[session_id] = OAuthSession(
            session_id=session_id,
            access_token=access_token,
            refresh_token=refresh_token or current.refresh_token,
            expires_at=expires_at,
        )

    def delete_session(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None


class MongoOAuthSessionStore(OAuthSessionStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index("session_id", unique=True)

    def get_session(self, session_id: str) -> OAuthSession | None:
        record = self._collection.find_one({"session_id": session_id})
        return _deserialize_session(record)

    def save_session(self, session: OAuthSession) -> None:
        now = datetime.now(UTC)
        self._collection.update_one(
            {"session_id": session.session_id},
            {
                "$set": {
                    "access_token": session.access_token,
                    "refresh_token": session.refresh_token,
                    "expires_at": session.expires_at,
                    "updated_at": now,
                },
                "$setOnInsert": {
                    "created_at": now,
                },
            },
            upsert=True,
        )

    def update_tokens(
        self,
        session_id: str,
        *,
        access_token: str,
        expires_at: datetime,
        refresh_token: str | None = None,
    ) -> None:
        updates: dict[str, Any] = {
            "access_token": access_token,
            "expires_at": expires_at,
            "updated_at": datetime.now(UTC),
        }
        if refresh_token:
            updates["refresh_token"] = refresh_token
        self._collection.update_one({"session_id": session_id}, {"$set": updates})

    def delete_session(self, session_id: str) -> bool:
        result = self._collection.delete_one({"session_id": session_id})
        return result.deleted_count > 0


def _deserialize_session(record: Mapping[str, Any] | None) -> OAuthSession | None:
    if not record:
        return None
    expires_at = record.get("expires_at")
    if not isinstance(expires_at, datetime):
        expires_at = datetime.fromtimestamp(0, UTC)
    elif expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=UTC)
    return OAuthSession(
        session_id=str(record.get("session_id", "")),
        access_token=str(record.get("access_token") or ""),
        refresh_token=str(record.get("refresh_token") or ""),
        expires_at=expires_at,
    )


def create_oauth_session_store(settings: Settings) -> OAuthSessionStore:
    return _create_oauth_session_store_cached(
        oauth_sessions_store=settings.oauth_sessions_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_oauth_sessions_collection=settings.mongodb_oauth_sessions_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_oauth_session_store_cached(
    *,
    oauth_sessions_store: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_oauth_sessions_collection: str,
    mongodb_connect_timeout_ms: int,
) -> OAuthSessionStore:
    if oauth_sessions_store == "mongodb":
        return MongoOAuthSessionStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_oauth_sessions_collection,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    return InMemoryOAuthSessionStore()


def clear_oauth_session_store_cache() -> None:
    _create_oauth_session_store_cached.cache_clear()
