import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .errors import StoreError
from .models import AdminUser, Attendee, AuditLog, Event, PublicProfile

logger = logging.getLogger(__name__)

UNKNOWN_NAME = "Unknown User"


class CheckInStore:
    """Reservation, operator, event and attendee lookups, plus audit rows.

    Lookups return detached ORM rows (``expire_on_commit=False``) or ``None``.
    Driver and timeout errors surface as ``StoreError``; nothing is retried.
    """

    def __init__(self, session_factory: sessionmaker):
        self.SessionLocal = session_factory

    def _one(self, stmt):
        db = self.SessionLocal()
        try:
            return db.execute(stmt).scalars().first()
        except SQLAlchemyError as e:
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def find_reservation(self, user_id: str, event_id: str) -> Optional[Attendee]:
        return self._one(select(Attendee).where(Attendee.event_id == event_id, Attendee.user_id == user_id))

    def get_operator(self, user_id: str) -> Optional[AdminUser]:
        return self._one(select(AdminUser).where(AdminUser.id == user_id))

    def get_event(self, event_id: str) -> Optional[Event]:
        return self._one(select(Event).where(Event.id == event_id))

    def find_attendee(self, attendee_id: str, event_id: str) -> Optional[Attendee]:
        # Both ids must match the same row; an attendee of another event must not resolve.
        return self._one(select(Attendee).where(Attendee.id == attendee_id, Attendee.event_id == event_id))

    def display_name(self, user_id: str) -> str:
        try:
            profile = self._one(select(PublicProfile).where(PublicProfile.id == user_id))
        except StoreError:
            logger.exception("profile lookup failed user_id=%s", user_id)
            return UNKNOWN_NAME
        if profile is None or not profile.full_name:
            return UNKNOWN_NAME
        return profile.full_name

    def mark_checked_in(self, attendee_id: str, operator_id: str, at: datetime) -> bool:
        """Flip ``checked_in`` from false to true. True only for the winning caller."""
        db = self.SessionLocal()
        try:
            result = db.execute(
                update(Attendee)
                .where(Attendee.id == attendee_id, Attendee.checked_in == False)  # noqa: E712
                .values(checked_in=True, checked_in_at=at, checked_in_by=operator_id)
                .execution_options(synchronize_session=False)
            )
            db.commit()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            db.rollback()
            raise StoreError(str(e)) from e
        finally:
            db.close()

    def record_decision(
        self,
        decision_id: str,
        outcome: str,
        ip: str,
        user_agent: str,
        operator_id: Optional[str] = None,
        event_id: Optional[str] = None,
        attendee_id: Optional[str] = None,
    ) -> None:
        db = self.SessionLocal()
        try:
            db.add(AuditLog(
                decision_id=decision_id,
                operator_id=operator_id,
                event_id=event_id,
                attendee_id=attendee_id,
                outcome=outcome,
                ip=ip,
                user_agent=user_agent,
            ))
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("audit write failed decision_id=%s outcome=%s", decision_id, outcome)
        finally:
            db.close()
