"""
backends.py — Where a process reads and writes the shared session.

One small interface, two implementations, chosen once at startup by the
hosting process:

  FileSessionBackend    server process — talks to the DurableSessionStore
                        directly (file I/O runs in a worker thread)
  RemoteSessionBackend  device process — speaks the /api/session wire
                        contract over httpx

The backend's `mode` tells the SyncOrchestrator which reconciliation policy
applies. No method raises: transport and I/O failures come back as None,
False or a failed SaveResult.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Optional

import httpx

from grillmon.session.schemas import (
    GrillSession,
    SessionPutRequest,
    SessionResponse,
    SessionSavedResponse,
)
from grillmon.store import DurableSessionStore, SaveResult, WriteStatus

logger = logging.getLogger(__name__)

SESSION_PATH = "/api/session"
DEVICE_HEADER = "X-Device-Id"


class SyncMode(str, Enum):
    server = "server"   # holds the durable record; merge whenever both copies exist
    client = "client"   # remote copy; merge only when the remote is strictly newer


class SessionBackend(ABC):
    mode: SyncMode
    device_id: Optional[str] = None

    def bind_device(self, device_id: str) -> None:
        """Identity stamped on the records this backend writes."""
        self.device_id = device_id

    @abstractmethod
    async def load(self) -> Optional[GrillSession]:
        """Shared copy of the session, or None when absent / expired / unreachable."""

    @abstractmethod
    async def save(self, session: GrillSession) -> SaveResult:
        """Write the session; the returned session carries the stamped last_saved."""

    @abstractmethod
    async def clear(self) -> bool:
        """Delete the shared copy. Absence is not an error."""

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# Server side: durable file store
# ---------------------------------------------------------------------------

class FileSessionBackend(SessionBackend):
    mode = SyncMode.server

    def __init__(self, store: DurableSessionStore) -> None:
        self.store = store

    async def load(self) -> Optional[GrillSession]:
        return await asyncio.to_thread(self.store.load)

    async def save(self, session: GrillSession) -> SaveResult:
        return await asyncio.to_thread(self.store.save, session, self.device_id)

    async def clear(self) -> bool:
        # an explicit clear ends the cook, backups included
        return await asyncio.to_thread(self.store.clear, True)


# ---------------------------------------------------------------------------
# Device side: HTTP
# ---------------------------------------------------------------------------

class RemoteSessionBackend(SessionBackend):
    """
    /api/session over an httpx.AsyncClient whose base_url points at the
    server. The client is owned by this backend and closed by close().
    """
    mode = SyncMode.client

    def __init__(self, client: httpx.AsyncClient, path: str = SESSION_PATH) -> None:
        self._client = client
        self._path = path

    def _headers(self, extra: Optional[dict] = None) -> dict:
        headers = dict(extra or {})
        if self.device_id:
            headers[DEVICE_HEADER] = self.device_id
        return headers

    async def load(self) -> Optional[GrillSession]:
        try:
            response = await self._client.get(self._path, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Session fetch failed: %s", exc)
            return None

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            logger.warning("Session fetch returned status=%d", response.status_code)
            return None

        try:
            return SessionResponse.model_validate(response.json()).session
        except ValueError as exc:
            logger.warning("Invalid session payload from server: %s", exc)
            return None

    async def save(self, session: GrillSession) -> SaveResult:
        body = SessionPutRequest(session=session).model_dump_json(by_alias=True)
        try:
            response = await self._client.put(
                self._path,
                content=body,
                headers=self._headers({"Content-Type": "application/json"}),
            )
        except httpx.HTTPError as exc:
            logger.warning("Session upload failed session_id=%s: %s", session.id, exc)
            return SaveResult(WriteStatus.failed)

        if response.status_code != 200:
            logger.warning("Session upload rejected session_id=%s status=%d",
                           session.id, response.status_code)
            return SaveResult(WriteStatus.failed)

        try:
            saved = SessionSavedResponse.model_validate(response.json())
        except ValueError as exc:
            logger.warning("Invalid save response session_id=%s: %s", session.id, exc)
            return SaveResult(WriteStatus.failed)
        return SaveResult(WriteStatus.saved, saved.session)

    async def clear(self) -> bool:
        try:
            response = await self._client.delete(self._path, headers=self._headers())
        except httpx.HTTPError as exc:
            logger.warning("Session clear failed: %s", exc)
            return False
        return response.status_code == 200

    async def close(self) -> None:
        await self._client.aclose()
