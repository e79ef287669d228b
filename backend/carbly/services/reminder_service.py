"""Daily J-1 return reminders, run by Celery beat on a synchronous session."""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from carbly.models.customer import Customer
from carbly.models.reservation import Reservation, ReservationStatus
from carbly.models.team import Team
from carbly.models.vehicle import Vehicle
from carbly.services import notification_service

logger = logging.getLogger(__name__)

AGENCY_TIMEZONE = ZoneInfo("Europe/Paris")


def day_bounds(day: date):
    """UTC bounds of a calendar day in the agencies' timezone."""
    start = datetime.combine(day, time.min, tzinfo=AGENCY_TIMEZONE)
    end = start + timedelta(days=1)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def find_reservations_ending_on(db: Session, day: date):
    start, end = day_bounds(day)
    stmt = select(Reservation).where(
        Reservation.status == ReservationStatus.IN_PROGRESS.value,
        Reservation.customer_id.isnot(None),
        Reservation.end_date >= start,
        Reservation.end_date < end,
    )
    return db.execute(stmt).scalars().all()


def send_return_reminders(db: Session, today: Optional[date] = None) -> Dict[str, int]:
    today = today or datetime.now(AGENCY_TIMEZONE).date()
    reservations = find_reservations_ending_on(db, today + timedelta(days=1))

    counts = {"total": len(reservations), "sent": 0, "failed": 0}
    for reservation in reservations:
        vehicle = db.get(Vehicle, reservation.vehicle_id)
        customer = db.get(Customer, reservation.customer_id)
        team = db.get(Team, reservation.team_id)
        if notification_service.notify_return_reminder(reservation, vehicle, customer, team):
            counts["sent"] += 1
        else:
            counts["failed"] += 1

    logger.info("Return reminders for %s: %s", today + timedelta(days=1), counts)
    return counts
