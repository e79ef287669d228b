"""
Customer notifications.

Emails are rendered here and delivered by the ``send_email_task`` Celery task.
A notification that cannot be queued is logged and dropped: it must never
fail the reservation or payment change that triggered it.
"""
import logging

from carbly.core.celery_app import celery_app
from carbly.core.config import settings
from carbly.models.customer import Customer
from carbly.models.reservation import Reservation
from carbly.models.team import Team
from carbly.models.vehicle import Vehicle
from carbly.services import email_service

logger = logging.getLogger(__name__)

SEND_EMAIL_TASK = 'carbly.background.tasks.send_email_task'


def payment_link(reservation: Reservation) -> str:
    return f"{settings.PUBLIC_APP_URL}/reservation/{reservation.magic_link_token}"


def balance_link(reservation: Reservation) -> str:
    return f"{settings.PUBLIC_APP_URL}/reservation/{reservation.balance_payment_token}/balance"


def _names(vehicle: Vehicle, customer: Customer):
    return f"{vehicle.brand} {vehicle.model}", customer.full_name or customer.email


def queue_email(to: str, email: email_service.Email) -> bool:
    subject, html = email
    try:
        celery_app.send_task(SEND_EMAIL_TASK, args=[to, subject, html])
    except Exception:
        logger.exception("Could not queue email %r to %s", subject, to)
        return False
    return True


def notify_payment_link(reservation: Reservation, vehicle: Vehicle, customer: Customer) -> bool:
    vehicle_name, customer_name = _names(vehicle, customer)
    return queue_email(customer.email, email_service.build_payment_link_email(
        customer_name=customer_name,
        vehicle_name=vehicle_name,
        start=reservation.start_date,
        end=reservation.end_date,
        amount=reservation.total_amount,
        magic_link=payment_link(reservation),
    ))


def notify_payment_confirmed(reservation: Reservation, vehicle: Vehicle, customer: Customer, amount_paid) -> bool:
    vehicle_name, customer_name = _names(vehicle, customer)
    return queue_email(customer.email, email_service.build_payment_confirmed_email(
        customer_name=customer_name,
        vehicle_name=vehicle_name,
        start=reservation.start_date,
        end=reservation.end_date,
        amount_paid=amount_paid,
        total_amount=reservation.total_amount,
    ))


def notify_contract_signed(reservation: Reservation, vehicle: Vehicle, customer: Customer, contract_url) -> bool:
    vehicle_name, customer_name = _names(vehicle, customer)
    return queue_email(customer.email, email_service.build_contract_signed_email(
        customer_name=customer_name,
        vehicle_name=vehicle_name,
        start=reservation.start_date,
        end=reservation.end_date,
        contract_url=contract_url,
    ))


def notify_balance_payment(reservation: Reservation, vehicle: Vehicle, customer: Customer, balance_amount) -> bool:
    vehicle_name, customer_name = _names(vehicle, customer)
    return queue_email(customer.email, email_service.build_balance_payment_email(
        customer_name=customer_name,
        vehicle_name=vehicle_name,
        start=reservation.start_date,
        end=reservation.end_date,
        balance_amount=balance_amount,
        balance_link=balance_link(reservation),
    ))


def notify_cancellation(reservation: Reservation, vehicle: Vehicle, customer: Customer, refund_amount, reason) -> bool:
    vehicle_name, customer_name = _names(vehicle, customer)
    return queue_email(customer.email, email_service.build_cancellation_email(
        customer_name=customer_name,
        vehicle_name=vehicle_name,
        start=reservation.start_date,
        end=reservation.end_date,
        refund_amount=refund_amount,
        reason=reason,
    ))


def notify_return_reminder(reservation: Reservation, vehicle: Vehicle, customer: Customer, team: Team) -> bool:
    vehicle_name, customer_name = _names(vehicle, customer)
    return queue_email(customer.email, email_service.build_return_reminder_email(
        customer_name=customer_name,
        vehicle_name=vehicle_name,
        end=reservation.end_date,
        agency_name=team.name,
        agency_address=team.address,
    ))
