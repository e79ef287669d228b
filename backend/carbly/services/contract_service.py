"""
Rental contract workflow.

    (none) -> generated -> pending_signature -> signed
                                  \\-> declined / expired

The PDF is rendered locally, stored in R2 and sent to Yousign. A signed
contract is discovered either by the Yousign webhook or by an explicit status
check; both end in ``mark_contract_signed``.
"""
import asyncio
import hashlib
import hmac
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from carbly.core.celery_app import celery_app
from carbly.core.config import settings
from carbly.core.exceptions import InvalidStateError, NotFoundError
from carbly.models.contract import Contract, ContractStatus
from carbly.models.customer import Customer
from carbly.models.organization import Organization
from carbly.models.reservation import Reservation, ReservationStatus
from carbly.models.team import Team
from carbly.models.vehicle import Vehicle
from carbly.schemas.contract import ContractDownload
from carbly.services import (
    notification_service, pdf_service, plan_limit_service, reservation_service, storage_service, yousign_service,
)

logger = logging.getLogger(__name__)

GENERATE_CONTRACT_TASK = 'carbly.background.tasks.generate_contract_task'

NOT_CONTRACTABLE_STATUSES = (
    ReservationStatus.DRAFT.value,
    ReservationStatus.PENDING_PAYMENT.value,
    ReservationStatus.CANCELLED.value,
)

DOWNLOAD_URL_EXPIRY = 3600


class YousignSignatureError(Exception):
    pass


async def get_contract_by_reservation(db: AsyncSession, reservation_id: uuid.UUID) -> Contract | None:
    result = await db.execute(select(Contract).filter(Contract.reservation_id == reservation_id))
    return result.scalars().first()


async def get_contract_by_signature_request(db: AsyncSession, signature_request_id: str) -> Contract | None:
    result = await db.execute(select(Contract).filter(Contract.signature_request_id == signature_request_id))
    return result.scalars().first()


async def _get_reservation(db: AsyncSession, reservation_id: uuid.UUID, team_id: Optional[uuid.UUID]) -> Reservation:
    reservation = await db.get(Reservation, reservation_id)
    if not reservation or (team_id and reservation.team_id != team_id):
        raise NotFoundError("Réservation non trouvée")
    return reservation


async def _get_contract(db: AsyncSession, reservation: Reservation) -> Contract:
    contract = await get_contract_by_reservation(db, reservation.id)
    if not contract:
        raise NotFoundError("Aucun contrat pour cette réservation")
    return contract


async def generate_contract(
    db: AsyncSession, reservation_id: uuid.UUID, team_id: Optional[uuid.UUID] = None
) -> Contract:
    """
    Renders the contract PDF and stores it. Regenerating replaces an unsigned
    contract; a signed one is never overwritten.
    """
    reservation = await _get_reservation(db, reservation_id, team_id)
    if reservation.status in NOT_CONTRACTABLE_STATUSES:
        raise InvalidStateError("La réservation doit être payée pour générer le contrat")
    if not reservation.customer_id:
        raise InvalidStateError("Aucun client associé à cette réservation")

    team = await db.get(Team, reservation.team_id)
    plan_limit_service.check_feature_access(team, "contracts")

    contract = await get_contract_by_reservation(db, reservation.id)
    if contract and contract.status == ContractStatus.SIGNED.value:
        raise InvalidStateError("Le contrat est déjà signé")

    vehicle = await db.get(Vehicle, reservation.vehicle_id)
    customer = await db.get(Customer, reservation.customer_id)
    organization = await db.get(Organization, team.organization_id)

    pdf_bytes = pdf_service.build_contract_pdf(
        reservation, vehicle, customer, team, organization.name if organization else None
    )
    path = storage_service.contract_path(team.id, reservation.id)
    pdf_url = await asyncio.to_thread(storage_service.upload_file, path, pdf_bytes, "application/pdf")

    if contract:
        contract.pdf_url = pdf_url
        contract.status = ContractStatus.GENERATED.value
        contract.signature_request_id = None
        contract.signature_document_id = None
    else:
        contract = Contract(reservation_id=reservation.id, pdf_url=pdf_url, status=ContractStatus.GENERATED.value)
        db.add(contract)
    await db.commit()
    await db.refresh(contract)
    logger.info("Contract generated for reservation %s at %s", reservation.id, path)
    return contract


async def send_for_signature(
    db: AsyncSession, reservation_id: uuid.UUID, team_id: Optional[uuid.UUID] = None
) -> Contract:
    """Pushes the generated contract to Yousign; the customer receives the signing email from Yousign."""
    reservation = await _get_reservation(db, reservation_id, team_id)
    contract = await _get_contract(db, reservation)
    if contract.status == ContractStatus.SIGNED.value:
        raise InvalidStateError("Le contrat est déjà signé")
    if contract.status == ContractStatus.PENDING_SIGNATURE.value:
        raise InvalidStateError("Le contrat est déjà en attente de signature")
    if not reservation.customer_id:
        raise InvalidStateError("Aucun client associé à cette réservation")

    team = await db.get(Team, reservation.team_id)
    plan_limit_service.check_feature_access(team, "signature")
    customer = await db.get(Customer, reservation.customer_id)

    path = storage_service.contract_path(team.id, reservation.id)
    pdf_bytes = await asyncio.to_thread(storage_service.download_file, path)
    result = await yousign_service.create_signature_request(
        pdf_bytes=pdf_bytes,
        filename=f"contrat-{str(reservation.id)[:8]}.pdf",
        reservation_id=str(reservation.id),
        first_name=customer.first_name or "",
        last_name=customer.last_name or "",
        email=customer.email,
        phone=customer.phone,
    )

    contract.signature_request_id = result["signature_request_id"]
    contract.signature_document_id = result["document_id"]
    contract.status = ContractStatus.PENDING_SIGNATURE.value
    await db.commit()
    await db.refresh(contract)
    return contract


async def generate_and_send(db: AsyncSession, reservation_id: uuid.UUID) -> Contract:
    """Post-payment pipeline run by the background worker."""
    await generate_contract(db, reservation_id)
    return await send_for_signature(db, reservation_id)


def queue_contract_generation(reservation_id: uuid.UUID) -> bool:
    try:
        celery_app.send_task(GENERATE_CONTRACT_TASK, args=[str(reservation_id)])
    except Exception:
        logger.exception("Could not queue contract generation for reservation %s", reservation_id)
        return False
    return True


async def mark_contract_signed(db: AsyncSession, contract: Contract, document_id: Optional[str] = None) -> Contract:
    """
    Stores the signed PDF, marks the contract signed and confirms a paid
    reservation. Calling it on an already signed contract is a no-op.
    """
    if contract.status == ContractStatus.SIGNED.value:
        return contract

    reservation = await db.get(Reservation, contract.reservation_id)
    document_id = document_id or contract.signature_document_id
    if not document_id:
        raise InvalidStateError("Document signé introuvable")

    signed_pdf = await yousign_service.download_signed_document(contract.signature_request_id, document_id)
    path = storage_service.contract_path(reservation.team_id, reservation.id, signed=True)
    signed_pdf_url = await asyncio.to_thread(storage_service.upload_file, path, signed_pdf, "application/pdf")

    contract.status = ContractStatus.SIGNED.value
    contract.signed_at = datetime.now(timezone.utc)
    contract.signed_pdf_url = signed_pdf_url
    contract.signature_document_id = document_id
    if reservation.status == ReservationStatus.PAID.value:
        reservation.status = ReservationStatus.CONFIRMED.value
    await db.commit()
    await db.refresh(contract)
    logger.info("Contract %s signed, reservation %s is %s", contract.id, reservation.id, reservation.status)

    if reservation.customer_id:
        vehicle = await db.get(Vehicle, reservation.vehicle_id)
        customer = await db.get(Customer, reservation.customer_id)
        notification_service.notify_contract_signed(reservation, vehicle, customer, signed_pdf_url)
    return contract


async def mark_contract_unsigned(db: AsyncSession, contract: Contract, status: str) -> Contract:
    """A declined or expired signature cancels the reservation unless the rental already started."""
    if contract.status == ContractStatus.SIGNED.value:
        return contract

    reservation = await db.get(Reservation, contract.reservation_id)
    contract.status = status
    if reservation.status in (ReservationStatus.PAID.value, ReservationStatus.CONFIRMED.value):
        reservation.status = ReservationStatus.CANCELLED.value
        reservation.cancelled_at = datetime.now(timezone.utc)
        reservation.internal_notes = reservation_service.append_note(
            reservation.internal_notes, f"Annulée - Signature du contrat {status}", now=reservation.cancelled_at
        )
    await db.commit()
    await db.refresh(contract)
    logger.info("Contract %s %s, reservation %s is %s", contract.id, status, reservation.id, reservation.status)
    return contract


async def check_signature_status(
    db: AsyncSession, reservation_id: uuid.UUID, team_id: Optional[uuid.UUID] = None
) -> Contract:
    """Re-fetches the signature request once and applies its outcome."""
    reservation = await _get_reservation(db, reservation_id, team_id)
    contract = await _get_contract(db, reservation)
    if contract.status == ContractStatus.SIGNED.value or not contract.signature_request_id:
        return contract

    signature_request = await yousign_service.get_signature_request(contract.signature_request_id)
    status = signature_request.get("status")
    if status == "done":
        documents = signature_request.get("documents") or []
        document_id = documents[0]["id"] if documents else None
        return await mark_contract_signed(db, contract, document_id)
    if status in ("declined", "expired"):
        return await mark_contract_unsigned(db, contract, status)
    return contract


async def get_download_url(db: AsyncSession, reservation_id: uuid.UUID, team_id: uuid.UUID) -> ContractDownload:
    reservation = await _get_reservation(db, reservation_id, team_id)
    contract = await _get_contract(db, reservation)
    path = storage_service.contract_path(
        reservation.team_id, reservation.id, signed=contract.status == ContractStatus.SIGNED.value
    )
    url = await asyncio.to_thread(storage_service.get_presigned_download_url, path, DOWNLOAD_URL_EXPIRY)
    return ContractDownload(url=url, expires_in=DOWNLOAD_URL_EXPIRY)


# --- Yousign webhook ---

def verify_yousign_signature(payload: bytes, signature_header: Optional[str]) -> None:
    """Checks ``X-Yousign-Signature-256`` when a webhook secret is configured."""
    secret = settings.YOUSIGN_WEBHOOK_SECRET
    if not secret:
        return
    if not signature_header:
        raise YousignSignatureError("Missing X-Yousign-Signature-256 header")
    expected = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    received = signature_header.removeprefix("sha256=")
    if not hmac.compare_digest(expected, received):
        raise YousignSignatureError("Invalid Yousign signature")


async def handle_yousign_event(db: AsyncSession, payload: Dict[str, Any]) -> str:
    event_name = payload.get("event_name")
    data = payload.get("data") or {}
    signature_request = data.get("signature_request") or payload.get("signature_request") or {}
    signature_request_id = signature_request.get("id")
    logger.info("Yousign event %s for %s", event_name, signature_request_id)

    if event_name not in ("signature_request.done", "signature_request.declined", "signature_request.expired"):
        return "ignored"
    if not signature_request_id:
        logger.warning("Yousign event %s without signature request id", event_name)
        return "ignored"

    contract = await get_contract_by_signature_request(db, signature_request_id)
    if not contract:
        logger.warning("No contract for Yousign signature request %s", signature_request_id)
        return "ignored"

    if event_name == "signature_request.done":
        documents = signature_request.get("documents") or []
        await mark_contract_signed(db, contract, documents[0]["id"] if documents else None)
        return "signed"

    status = ContractStatus.DECLINED.value if event_name.endswith("declined") else ContractStatus.EXPIRED.value
    await mark_contract_unsigned(db, contract, status)
    return status
