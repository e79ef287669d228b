"""
Messages sent by an agency to one of its customers.

Every attempt is logged as a Communication row, including failed ones, so the
agency can see what reached the customer.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from carbly.core.exceptions import ExternalServiceError, InvalidStateError, NotFoundError
from carbly.models.communication import Communication
from carbly.models.reservation import Reservation
from carbly.models.team import Team
from carbly.schemas.communication import CommunicationCreate
from carbly.services import customer_service, email_service, template_service

logger = logging.getLogger(__name__)


async def send_communication(db: AsyncSession, communication_in: CommunicationCreate, team: Team) -> Communication:
    if communication_in.type == "sms":
        raise InvalidStateError("L'envoi de SMS n'est pas disponible")

    customer = await customer_service.get_customer_by_id(db, communication_in.customer_id, team.organization_id)

    reservation = None
    if communication_in.reservation_id:
        result = await db.execute(
            select(Reservation).filter(
                Reservation.id == communication_in.reservation_id, Reservation.team_id == team.id
            )
        )
        reservation = result.scalars().first()
        if not reservation:
            raise NotFoundError("Réservation non trouvée")

    subject = communication_in.subject
    message = communication_in.message
    if communication_in.template_id:
        template = await template_service.get_template(db, communication_in.template_id, team.id)
        subject = subject or template.subject
        message = message or template.message

    if reservation:
        variables = await template_service.variables_for_reservation(db, reservation)
    else:
        variables = template_service.build_template_variables(customer=customer, team=team)
    message = template_service.replace_template_variables(message, variables)
    subject = template_service.replace_template_variables(subject or f"Message de {team.name}", variables)

    communication = Communication(
        team_id=team.id,
        customer_id=customer.id,
        reservation_id=reservation.id if reservation else None,
        template_id=communication_in.template_id,
        type="email",
        subject=subject,
        message=message,
        status="pending",
    )
    db.add(communication)
    await db.flush()

    email_subject, html = email_service.build_custom_email(subject=subject, message=message)
    try:
        await email_service.send_email(customer.email, email_subject, html)
        communication.status = "sent"
        communication.sent_at = datetime.now(timezone.utc)
    except ExternalServiceError as e:
        logger.error("Communication %s to %s failed: %s", communication.id, customer.email, e.message)
        communication.status = "failed"
        communication.error = e.message

    await db.commit()
    await db.refresh(communication)
    return communication


async def get_communications(
    db: AsyncSession,
    team_id: uuid.UUID,
    customer_id: Optional[uuid.UUID] = None,
    reservation_id: Optional[uuid.UUID] = None,
) -> List[Communication]:
    query = select(Communication).filter(Communication.team_id == team_id)
    if customer_id:
        query = query.filter(Communication.customer_id == customer_id)
    if reservation_id:
        query = query.filter(Communication.reservation_id == reservation_id)
    result = await db.execute(query.order_by(Communication.created_at.desc()))
    return result.scalars().all()
