"""
Notification transports.

* ``InAppTransport``  -- writes to the ``notifications`` inbox table.
* ``LoggingTransport`` -- logs the message; stands in for external email,
  push and sound providers.
* ``ChannelRouter``   -- routes a send to the transport bound to its channel.

Every transport raises ``TransportError`` on failure and returns whether
the message was handed off.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Mapping, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.domain.enums import CanonicalPhase, Category, Channel
from src.domain.errors import TransportError
from src.infrastructure.repositories import NotificationRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Message:
    booking_id: str
    phase: CanonicalPhase
    title: str
    body: str
    category: Category = Category.BOOKING_UPDATES


class NotificationTransport(Protocol):
    async def send(self, recipient_id: str, channel: Channel, message: Message) -> bool: ...


class InAppTransport:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def send(self, recipient_id: str, channel: Channel, message: Message) -> bool:
        try:
            async with self.session_factory() as session:
                await NotificationRepository(session).create(
                    recipient_id=recipient_id,
                    booking_id=message.booking_id,
                    category=message.category.value,
                    title=message.title,
                    body=message.body,
                )
                await session.commit()
        except SQLAlchemyError as exc:
            raise TransportError(f"In-app delivery to {recipient_id} failed") from exc
        return True


class LoggingTransport:
    def __init__(self, name: Optional[str] = None):
        self.name = name

    async def send(self, recipient_id: str, channel: Channel, message: Message) -> bool:
        logger.info(
            "[%s] %s -> %s: %s",
            self.name or channel.value,
            message.booking_id,
            recipient_id,
            message.title,
        )
        return True


class ChannelRouter:
    def __init__(self, transports: Mapping[Channel, NotificationTransport]):
        self.transports = dict(transports)

    async def send(self, recipient_id: str, channel: Channel, message: Message) -> bool:
        transport = self.transports.get(channel)
        if transport is None:
            raise TransportError(f"No transport bound to channel {channel.value}")
        return await transport.send(recipient_id, channel, message)
