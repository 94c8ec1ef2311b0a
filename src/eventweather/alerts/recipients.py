"""Recipient resolution: role flags to concrete, deduplicated users.

Super admins are global. Event admins and staff must be tied to the event.
Attendees come from confirmed or paid bookings and are the only role gated by
the user's own ``weatherAlerts`` preference.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import select

from eventweather.core.rules import RoleFlags
from eventweather.core.types import EventInfo, RecipientRole, RecipientUser
from eventweather.db.models import Booking, User

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

# "admin" is the legacy name for an event admin
_EVENT_ADMIN_ROLES = ("event_admin", "admin")
_STAFF_ROLES = ("staff", "staff_admin")
_ATTENDING_BOOKING_STATUSES = ("confirmed", "paid")


def _to_recipient(user: User, role: RecipientRole) -> RecipientUser:
    prefs = user.notification_preferences or {}
    return RecipientUser(
        user_id=user.id,
        name=user.name,
        email=user.email,
        phone=user.phone,
        role=role,
        preferences={k: bool(v) for k, v in prefs.items() if isinstance(v, bool)},
    )


def _assigned_to(user: User, event_id: str) -> bool:
    return event_id in (user.assigned_events or [])


def _dedup_key(recipient: RecipientUser) -> str:
    if recipient.email:
        return f"email:{recipient.email.strip().lower()}"
    if recipient.phone:
        return f"phone:{recipient.phone.strip()}"
    return f"user:{recipient.user_id}"


def dedupe(recipients: list[RecipientUser]) -> list[RecipientUser]:
    """Keep the first occurrence per contact address, preserving order."""
    seen: set[str] = set()
    unique: list[RecipientUser] = []
    for recipient in recipients:
        key = _dedup_key(recipient)
        if key in seen:
            continue
        seen.add(key)
        unique.append(recipient)
    return unique


class RecipientResolver:
    """Expands per-event role flags into recipient users."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def resolve(self, event: EventInfo, flags: RoleFlags) -> list[RecipientUser]:
        """Resolve recipients in role order: super admin, event admin, staff, attendee.

        The role tag of a user matching several roles is the first one matched.
        """
        found: list[RecipientUser] = []

        async with self._session_factory() as session:
            if flags.super_admin:
                found.extend(await self._super_admins(session))
            if flags.event_admin:
                found.extend(await self._event_admins(session, event))
            if flags.staff:
                found.extend(await self._staff(session, event))
            if flags.attendees:
                found.extend(await self._attendees(session, event))

        unique = dedupe(found)
        logger.info(
            "Resolved %d recipients for event %s (%d before dedup)",
            len(unique),
            event.id,
            len(found),
        )
        return unique

    async def _super_admins(self, session: AsyncSession) -> list[RecipientUser]:
        users = await session.scalars(
            select(User).where(User.role == RecipientRole.SUPER_ADMIN.value, User.active.is_(True))
        )
        return [_to_recipient(u, RecipientRole.SUPER_ADMIN) for u in users.all()]

    async def _event_admins(self, session: AsyncSession, event: EventInfo) -> list[RecipientUser]:
        users = await session.scalars(
            select(User).where(User.role.in_(_EVENT_ADMIN_ROLES), User.active.is_(True))
        )
        return [
            _to_recipient(u, RecipientRole.EVENT_ADMIN)
            for u in users.all()
            if u.role == "admin" or u.id == event.organizer_id or _assigned_to(u, event.id)
        ]

    async def _staff(self, session: AsyncSession, event: EventInfo) -> list[RecipientUser]:
        users = await session.scalars(
            select(User).where(User.role.in_(_STAFF_ROLES), User.active.is_(True))
        )
        return [
            _to_recipient(u, RecipientRole.STAFF)
            for u in users.all()
            if _assigned_to(u, event.id)
        ]

    async def _attendees(self, session: AsyncSession, event: EventInfo) -> list[RecipientUser]:
        users = await session.scalars(
            select(User)
            .join(Booking, Booking.user_id == User.id)
            .where(
                Booking.event_id == event.id,
                Booking.status.in_(_ATTENDING_BOOKING_STATUSES),
            )
            .distinct()
        )
        return [
            _to_recipient(u, RecipientRole.ATTENDEE)
            for u in users.all()
            if (u.notification_preferences or {}).get("weatherAlerts") is not False
        ]
