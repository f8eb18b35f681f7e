"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  ``SqlPersistence`` composes them into the
persistence interface the booking store consumes: one session per call,
commit, then publish the matching change-feed event.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .change_feed import ChangeEvent, ChangeFeed, booking_topic, offers_topic
from .models import (
    BookingModel,
    DriverOfferModel,
    NotificationModel,
    NotificationPreferenceModel,
    StatusHistoryModel,
)
from src.domain.entities import (
    Booking,
    DriverOffer,
    NotificationPreference,
    StatusHistoryEntry,
    coerce_record,
    utcnow,
)
from src.domain.enums import (
    ActorRole,
    Category,
    Channel,
    OfferStatus,
    RideStatus,
    WAITING_FOR_OFFER_SYNONYMS,
)
from src.domain.errors import (
    NotFound,
    PreferenceLoadFailure,
    PreferenceSaveFailure,
    TransportError,
)

logger = logging.getLogger(__name__)

_BOOKING_COLUMNS = [c.name for c in BookingModel.__table__.columns]


def _booking_entity(row: BookingModel) -> Booking:
    return Booking.from_record({name: getattr(row, name) for name in _BOOKING_COLUMNS})


def _history_entity(row: StatusHistoryModel) -> StatusHistoryEntry:
    created_at = coerce_record({"created_at": row.created_at})["created_at"]
    return StatusHistoryEntry(
        id=row.id,
        booking_id=row.booking_id,
        status=row.status,
        actor_role=ActorRole(row.role),
        metadata=dict(row.meta or {}),
        created_at=created_at,
    )


def _offer_entity(row: DriverOfferModel) -> DriverOffer:
    return DriverOffer.from_record(
        {
            "id": row.id,
            "booking_id": row.booking_id,
            "driver_id": row.driver_id,
            "offer_price": row.offer_price,
            "status": OfferStatus(row.status).value,
            "created_at": row.created_at,
            "expires_at": row.expires_at,
        }
    )


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, booking_id: str) -> Optional[BookingModel]:
        return await self.session.get(BookingModel, booking_id)

    async def create(self, booking: Booking) -> BookingModel:
        row = BookingModel(
            **{k: v for k, v in booking.to_record().items() if k in _BOOKING_COLUMNS}
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def update_fields(self, booking_id: str, fields: dict[str, Any]) -> BookingModel:
        row = await self.get_by_id(booking_id)
        if row is None:
            raise NotFound(booking_id)
        for name, value in fields.items():
            if name in _BOOKING_COLUMNS and name != "id":
                setattr(row, name, value)
        await self.session.flush()
        return row

    async def get_stale_requests(self, cutoff: datetime) -> list[BookingModel]:
        """Bookings still waiting for an offer that were created before *cutoff*.

        Legacy rows count too: any waiting-for-offer synonym, or no payment
        status at all unless the ride status already shows an offer.
        """
        result = await self.session.execute(
            select(BookingModel)
            .where(
                or_(
                    BookingModel.payment_confirmation_status.in_(sorted(WAITING_FOR_OFFER_SYNONYMS)),
                    and_(
                        BookingModel.payment_confirmation_status.is_(None),
                        or_(
                            BookingModel.ride_status.is_(None),
                            BookingModel.ride_status != RideStatus.OFFER_SENT.value,
                        ),
                    ),
                ),
                BookingModel.created_at < cutoff,
            )
            .order_by(BookingModel.created_at)
        )
        return list(result.scalars().all())


class StatusHistoryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, entry: StatusHistoryEntry) -> StatusHistoryModel:
        row = StatusHistoryModel(
            booking_id=entry.booking_id,
            status=entry.status,
            role=entry.actor_role,
            meta=dict(entry.metadata),
            created_at=entry.created_at,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def for_booking(self, booking_id: str) -> list[StatusHistoryModel]:
        result = await self.session.execute(
            select(StatusHistoryModel)
            .where(StatusHistoryModel.booking_id == booking_id)
            .order_by(StatusHistoryModel.created_at, StatusHistoryModel.id)
        )
        return list(result.scalars().all())


class DriverOfferRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, offer: DriverOffer) -> DriverOfferModel:
        row = DriverOfferModel(
            id=offer.id,
            booking_id=offer.booking_id,
            driver_id=offer.driver_id,
            offer_price=offer.offer_price,
            status=offer.status,
            created_at=offer.created_at or utcnow(),
            expires_at=offer.expires_at,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def pending_for_booking(self, booking_id: str) -> list[DriverOfferModel]:
        result = await self.session.execute(
            select(DriverOfferModel).where(
                DriverOfferModel.booking_id == booking_id,
                DriverOfferModel.status == OfferStatus.PENDING,
            )
        )
        return list(result.scalars().all())

    async def for_booking(self, booking_id: str) -> list[DriverOfferModel]:
        result = await self.session.execute(
            select(DriverOfferModel)
            .where(DriverOfferModel.booking_id == booking_id)
            .order_by(DriverOfferModel.created_at)
        )
        return list(result.scalars().all())


class PreferenceRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str, role: ActorRole) -> Optional[NotificationPreferenceModel]:
        return await self.session.get(NotificationPreferenceModel, (user_id, role))

    async def save(self, pref: NotificationPreference) -> NotificationPreferenceModel:
        row = await self.get(pref.user_id, pref.role)
        channels = {c.value: enabled for c, enabled in pref.channels.items()}
        categories = {c.value: enabled for c, enabled in pref.categories.items()}
        if row is None:
            row = NotificationPreferenceModel(
                user_id=pref.user_id,
                role=pref.role,
                channels=channels,
                categories=categories,
            )
            self.session.add(row)
        else:
            row.channels = channels
            row.categories = categories
        await self.session.flush()
        return row


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        *,
        recipient_id: str,
        booking_id: Optional[str],
        category: str,
        title: str,
        body: str,
    ) -> NotificationModel:
        row = NotificationModel(
            recipient_id=recipient_id,
            booking_id=booking_id,
            category=category,
            title=title,
            body=body,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def unread_for(self, recipient_id: str) -> list[NotificationModel]:
        result = await self.session.execute(
            select(NotificationModel)
            .where(
                NotificationModel.recipient_id == recipient_id,
                NotificationModel.is_read.is_(False),
            )
            .order_by(NotificationModel.created_at.desc())
        )
        return list(result.scalars().all())


# ── Persistence facade used by the store ─────────────────────────────


class SqlPersistence:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: Optional[ChangeFeed] = None,
    ):
        self.session_factory = session_factory
        self.feed = feed

    async def _publish(self, topic: str, event_type: str, record: dict[str, Any]) -> None:
        if self.feed is None:
            return
        try:
            await self.feed.publish(
                topic, ChangeEvent(event_type=event_type, topic=topic, record=record)
            )
        except TransportError:
            # Row is committed; subscribers catch up on their next read.
            logger.error("Change-feed publish failed for %s", topic, exc_info=True)

    async def read_booking(self, booking_id: str) -> Optional[Booking]:
        async with self.session_factory() as session:
            row = await BookingRepository(session).get_by_id(booking_id)
            return _booking_entity(row) if row else None

    async def insert_booking(self, booking: Booking) -> Booking:
        async with self.session_factory() as session:
            row = await BookingRepository(session).create(booking)
            await session.commit()
            stored = _booking_entity(row)
        await self._publish(booking_topic(stored.id), "insert", stored.to_record())
        return stored

    async def write_booking_fields(self, booking_id: str, fields: dict[str, Any]) -> Booking:
        async with self.session_factory() as session:
            row = await BookingRepository(session).update_fields(
                booking_id, {**fields, "updated_at": fields.get("updated_at") or utcnow()}
            )
            await session.commit()
            stored = _booking_entity(row)
        await self._publish(booking_topic(booking_id), "update", stored.to_record())
        return stored

    async def append_history(self, entry: StatusHistoryEntry) -> StatusHistoryEntry:
        async with self.session_factory() as session:
            row = await StatusHistoryRepository(session).append(entry)
            await session.commit()
            return _history_entity(row)

    async def read_history(self, booking_id: str) -> list[StatusHistoryEntry]:
        async with self.session_factory() as session:
            rows = await StatusHistoryRepository(session).for_booking(booking_id)
            return [_history_entity(r) for r in rows]

    async def read_preferences(
        self, user_id: str, role: ActorRole
    ) -> Optional[NotificationPreference]:
        try:
            async with self.session_factory() as session:
                row = await PreferenceRepository(session).get(user_id, role)
                if row is None:
                    return None
                stored_channels = dict(row.channels or {})
                stored_categories = dict(row.categories or {})
        except SQLAlchemyError as exc:
            raise PreferenceLoadFailure(str(exc)) from exc

        pref = NotificationPreference(user_id=user_id, role=role)
        channels = {c.value: c for c in Channel}
        categories = {c.value: c for c in Category}
        for name, enabled in stored_channels.items():
            if name in channels:
                pref.channels[channels[name]] = bool(enabled)
        for name, enabled in stored_categories.items():
            if name in categories:
                pref.categories[categories[name]] = bool(enabled)
        return pref

    async def write_preferences(self, pref: NotificationPreference) -> None:
        try:
            async with self.session_factory() as session:
                await PreferenceRepository(session).save(pref)
                await session.commit()
        except SQLAlchemyError as exc:
            raise PreferenceSaveFailure(str(exc)) from exc

    async def record_offer(self, offer: DriverOffer) -> DriverOffer:
        async with self.session_factory() as session:
            row = await DriverOfferRepository(session).create(offer)
            await session.commit()
            stored = _offer_entity(row)
        await self._publish(offers_topic(offer.booking_id), "insert", _offer_record(stored))
        return stored

    async def resolve_offers(self, booking_id: str, status: OfferStatus) -> list[DriverOffer]:
        """Move every pending offer on *booking_id* to *status*."""
        async with self.session_factory() as session:
            rows = await DriverOfferRepository(session).pending_for_booking(booking_id)
            for row in rows:
                row.status = status
            await session.commit()
            resolved = [_offer_entity(r) for r in rows]
        for offer in resolved:
            await self._publish(offers_topic(booking_id), "update", _offer_record(offer))
        return resolved

    async def read_offers(self, booking_id: str) -> list[DriverOffer]:
        async with self.session_factory() as session:
            rows = await DriverOfferRepository(session).for_booking(booking_id)
            return [_offer_entity(r) for r in rows]

    async def find_stale_requests(self, cutoff: datetime) -> list[str]:
        async with self.session_factory() as session:
            rows = await BookingRepository(session).get_stale_requests(cutoff)
            return [r.id for r in rows]


def _offer_record(offer: DriverOffer) -> dict[str, Any]:
    return {
        "id": offer.id,
        "booking_id": offer.booking_id,
        "driver_id": offer.driver_id,
        "offer_price": offer.offer_price,
        "status": offer.status.value,
        "created_at": offer.created_at,
        "expires_at": offer.expires_at,
    }
