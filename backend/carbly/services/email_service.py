"""
Transactional emails sent through the Resend REST API.

The ``build_*`` helpers render a (subject, html) pair. They are kept separate
from ``send_email`` so the API can render in-process and hand the delivery to
a Celery worker.
"""
import logging
from datetime import datetime
from decimal import Decimal
from html import escape
from typing import Optional, Tuple

import httpx

from carbly.core.config import settings
from carbly.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

Email = Tuple[str, str]

_LAYOUT = '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">{body}</div>'
_BOX = '<div style="background: #F3F4F6; padding: 20px; border-radius: 8px; margin: 20px 0;">{body}</div>'
_BUTTON = (
    '<a href="{href}" style="display: inline-block; background: #3B82F6; color: white; '
    'padding: 12px 24px; text-decoration: none; border-radius: 6px; margin: 20px 0;">{label}</a>'
)


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=15.0)


async def send_email(to: str, subject: str, html: str) -> Optional[str]:
    """Sends one email and returns the Resend message id."""
    if not settings.RESEND_API_KEY:
        raise ExternalServiceError("Resend API key not configured")

    try:
        async with _client() as client:
            response = await client.post(
                f"{settings.RESEND_API_URL}/emails",
                headers={"Authorization": f"Bearer {settings.RESEND_API_KEY}"},
                json={"from": settings.EMAIL_FROM, "to": [to], "subject": subject, "html": html},
            )
    except httpx.HTTPError as e:
        logger.error("Resend unreachable for email to %s: %r", to, e)
        raise ExternalServiceError("Échec de l'envoi de l'email") from e
    if response.is_error:
        logger.error("Resend rejected email to %s (%s): %s", to, response.status_code, response.text)
        raise ExternalServiceError("Échec de l'envoi de l'email")
    return response.json().get("id")


def format_date(value: datetime) -> str:
    return value.strftime("%d/%m/%Y")


def format_amount(value) -> str:
    return f"{Decimal(value):.2f}€"


def _details(vehicle_name: str, start: datetime, end: datetime, extra: str = "") -> str:
    return _BOX.format(body=(
        '<h2 style="margin-top: 0;">Détails de la réservation</h2>'
        f"<p><strong>Véhicule :</strong> {escape(vehicle_name)}</p>"
        f"<p><strong>Du :</strong> {format_date(start)}</p>"
        f"<p><strong>Au :</strong> {format_date(end)}</p>"
        f"{extra}"
    ))


def build_payment_link_email(*, customer_name: str, vehicle_name: str, start: datetime, end: datetime,
                             amount, magic_link: str) -> Email:
    body = (
        '<h1 style="color: #3B82F6;">Confirmez votre réservation</h1>'
        f"<p>Bonjour {escape(customer_name)},</p>"
        "<p>Votre réservation est presque confirmée !</p>"
        + _details(vehicle_name, start, end, f"<p><strong>Montant total :</strong> {format_amount(amount)}</p>")
        + _BUTTON.format(href=magic_link, label="Payer maintenant")
        + '<p style="color: #6B7280; font-size: 14px;">Ce lien est valable pendant 7 jours.</p>'
    )
    return f"Votre réservation {vehicle_name}", _LAYOUT.format(body=body)


def build_payment_confirmed_email(*, customer_name: str, vehicle_name: str, start: datetime, end: datetime,
                                  amount_paid, total_amount) -> Email:
    body = (
        '<h1 style="color: #10B981;">Paiement confirmé</h1>'
        f"<p>Bonjour {escape(customer_name)},</p>"
        f"<p>Nous avons bien reçu votre paiement de {format_amount(amount_paid)}.</p>"
        + _details(vehicle_name, start, end, f"<p><strong>Montant total :</strong> {format_amount(total_amount)}</p>")
        + "<p>Vous recevrez prochainement votre contrat de location à signer.</p>"
    )
    return f"Paiement confirmé - {vehicle_name}", _LAYOUT.format(body=body)


def build_contract_signed_email(*, customer_name: str, vehicle_name: str, start: datetime, end: datetime,
                                contract_url: Optional[str]) -> Email:
    link = _BUTTON.format(href=contract_url, label="Télécharger le contrat") if contract_url else ""
    body = (
        '<h1 style="color: #10B981;">Contrat signé</h1>'
        f"<p>Bonjour {escape(customer_name)},</p>"
        "<p>Votre contrat de location a bien été signé. Votre réservation est confirmée.</p>"
        + _details(vehicle_name, start, end)
        + link
    )
    return f"Contrat signé - {vehicle_name}", _LAYOUT.format(body=body)


def build_balance_payment_email(*, customer_name: str, vehicle_name: str, start: datetime, end: datetime,
                                balance_amount, balance_link: str) -> Email:
    body = (
        '<h1 style="color: #3B82F6;">Solde de votre réservation</h1>'
        f"<p>Bonjour {escape(customer_name)},</p>"
        f"<p>Il reste {format_amount(balance_amount)} à régler pour votre location.</p>"
        + _details(vehicle_name, start, end)
        + _BUTTON.format(href=balance_link, label="Payer le solde")
    )
    return f"Solde à régler - {vehicle_name}", _LAYOUT.format(body=body)


def build_return_reminder_email(*, customer_name: str, vehicle_name: str, end: datetime,
                                agency_name: str, agency_address: Optional[str]) -> Email:
    where = f" à l'adresse suivante : {escape(agency_address)}" if agency_address else ""
    body = (
        '<h1 style="color: #F59E0B;">Rappel de retour</h1>'
        f"<p>Bonjour {escape(customer_name)},</p>"
        f"<p>Nous vous rappelons que le véhicule {escape(vehicle_name)} doit être restitué "
        f"demain, le {format_date(end)}, chez {escape(agency_name)}{where}.</p>"
        "<p>Merci de penser à faire le plein avant le retour.</p>"
    )
    return f"Rappel : retour de votre {vehicle_name} demain", _LAYOUT.format(body=body)


def build_cancellation_email(*, customer_name: str, vehicle_name: str, start: datetime, end: datetime,
                             refund_amount, reason: Optional[str]) -> Email:
    refund = (
        f"<p>Un remboursement de {format_amount(refund_amount)} a été initié. "
        "Il apparaîtra sur votre compte sous 5 à 10 jours ouvrés.</p>"
        if refund_amount and Decimal(refund_amount) > 0 else ""
    )
    motive = f"<p><strong>Raison :</strong> {escape(reason)}</p>" if reason else ""
    body = (
        '<h1 style="color: #EF4444;">Réservation annulée</h1>'
        f"<p>Bonjour {escape(customer_name)},</p>"
        "<p>Votre réservation a été annulée.</p>"
        + _details(vehicle_name, start, end, motive)
        + refund
    )
    return f"Annulation de votre réservation {vehicle_name}", _LAYOUT.format(body=body)


def build_custom_email(*, subject: str, message: str) -> Email:
    paragraphs = "".join(f"<p>{escape(line)}</p>" for line in message.splitlines() if line.strip())
    return subject, _LAYOUT.format(body=paragraphs)
