"""Staging notifications (fire-and-forget)."""

import asyncio
import logging
from abc import ABC, abstractmethod

from supabase import Client

from roomstage.constants import room_label

logger = logging.getLogger(__name__)


class Notifier(ABC):
    """Receives terminal job events. Callers never depend on delivery."""

    @abstractmethod
    async def notify_complete(self, user_id: str, job_id: str, room_type: str) -> None:
        ...

    @abstractmethod
    async def notify_failed(self, user_id: str, job_id: str, room_type: str, error: str) -> None:
        ...


class LoggingNotifier(Notifier):
    async def notify_complete(self, user_id: str, job_id: str, room_type: str) -> None:
        logger.info(f"Staging complete: user={user_id} job={job_id} room={room_type}")

    async def notify_failed(self, user_id: str, job_id: str, room_type: str, error: str) -> None:
        logger.info(f"Staging failed: user={user_id} job={job_id} room={room_type} error={error}")


class SupabaseNotifier(Notifier):
    """Writes in-app notifications to the notifications table."""

    def __init__(self, client: Client):
        self._client = client

    async def notify_complete(self, user_id: str, job_id: str, room_type: str) -> None:
        await self._insert(
            user_id,
            "staging_complete",
            "Staging Complete",
            f"Your {room_label(room_type)} staging is ready to view!",
        )

    async def notify_failed(self, user_id: str, job_id: str, room_type: str, error: str) -> None:
        await self._insert(
            user_id,
            "staging_failed",
            "Staging Failed",
            f"Your {room_label(room_type)} staging could not be completed. Please try again.",
        )

    async def _insert(self, user_id: str, kind: str, title: str, message: str) -> None:
        row = {
            "user_id": user_id,
            "type": kind,
            "title": title,
            "message": message,
            "link": "/history",
        }
        await asyncio.to_thread(self._client.table("notifications").insert(row).execute)
