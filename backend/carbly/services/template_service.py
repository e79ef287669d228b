import re
import uuid
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from carbly.core.exceptions import NotFoundError, PlanLimitError
from carbly.models.customer import Customer
from carbly.models.message_template import MessageTemplate
from carbly.models.reservation import Reservation
from carbly.models.team import Team
from carbly.models.vehicle import Vehicle
from carbly.schemas.message_template import MessageTemplateCreate, MessageTemplateUpdate, TemplatePreview
from carbly.services import pricing

DAYS_FR = ["lundi", "mardi", "mercredi", "jeudi", "vendredi", "samedi", "dimanche"]
MONTHS_FR = [
    "janvier", "février", "mars", "avril", "mai", "juin",
    "juillet", "août", "septembre", "octobre", "novembre", "décembre",
]

VARIABLE_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def format_long_date(value: Optional[datetime]) -> str:
    """``lundi 3 mars 2025``"""
    if not value:
        return ""
    return f"{DAYS_FR[value.weekday()]} {value.day} {MONTHS_FR[value.month - 1]} {value.year}"


def replace_template_variables(message: str, variables: Dict[str, str]) -> str:
    """
    Substitutes ``{{name}}`` placeholders. Known variables without a value are
    blanked; unknown placeholders are left as written.
    """
    def substitute(match):
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        return variables[key] or ""
    return VARIABLE_PATTERN.sub(substitute, message)


def build_template_variables(
    customer: Optional[Customer] = None,
    vehicle: Optional[Vehicle] = None,
    reservation: Optional[Reservation] = None,
    team: Optional[Team] = None,
) -> Dict[str, str]:
    total = reservation.total_amount if reservation else None
    deposit = reservation.deposit_amount if reservation else None
    return {
        "clientPrenom": (customer.first_name if customer else None) or "",
        "clientNom": (customer.last_name if customer else None) or "",
        "clientEmail": customer.email if customer else "",
        "vehiculeMarque": vehicle.brand if vehicle else "",
        "vehiculeModele": vehicle.model if vehicle else "",
        "dateDebut": format_long_date(reservation.start_date) if reservation else "",
        "dateFin": format_long_date(reservation.end_date) if reservation else "",
        "montantTotal": str(pricing.quantize(pricing.to_decimal(total))) if total is not None else "",
        "montantAcompte": str(pricing.quantize(pricing.to_decimal(deposit))) if deposit is not None else "",
        "adresseAgence": (team.address or team.name) if team else "",
        "nomAgence": team.name if team else "Carbly",
    }


async def count_templates(db: AsyncSession, team_id: uuid.UUID) -> int:
    result = await db.execute(select(func.count(MessageTemplate.id)).filter(MessageTemplate.team_id == team_id))
    return result.scalar_one()


async def create_template(db: AsyncSession, template_in: MessageTemplateCreate, team: Team) -> MessageTemplate:
    plan = pricing.resolve_plan(team.plan)
    limit = pricing.get_plan_limits(plan)["email_templates"]
    if limit is not None and await count_templates(db, team.id) >= limit:
        raise PlanLimitError(
            f"Limite de {limit} modèle(s) atteinte. Passez au plan STARTER.",
            limit_type="email_templates",
            current_plan=plan.value,
            suggested_plan=pricing.get_suggested_plan(plan),
        )

    template = MessageTemplate(**template_in.model_dump(), team_id=team.id)
    db.add(template)
    await db.commit()
    await db.refresh(template)
    return template


async def get_templates(db: AsyncSession, team_id: uuid.UUID, type: Optional[str] = None) -> List[MessageTemplate]:
    query = select(MessageTemplate).filter(MessageTemplate.team_id == team_id)
    if type:
        query = query.filter(MessageTemplate.type == type)
    result = await db.execute(query.order_by(MessageTemplate.name))
    return result.scalars().all()


async def get_template(db: AsyncSession, template_id: uuid.UUID, team_id: uuid.UUID) -> MessageTemplate:
    result = await db.execute(
        select(MessageTemplate).filter(MessageTemplate.id == template_id, MessageTemplate.team_id == team_id)
    )
    template = result.scalars().first()
    if not template:
        raise NotFoundError("Modèle non trouvé")
    return template


async def update_template(
    db: AsyncSession, template_id: uuid.UUID, template_in: MessageTemplateUpdate, team_id: uuid.UUID
) -> MessageTemplate:
    template = await get_template(db, template_id, team_id)
    for field, value in template_in.model_dump(exclude_unset=True).items():
        setattr(template, field, value)
    await db.commit()
    await db.refresh(template)
    return template


async def delete_template(db: AsyncSession, template_id: uuid.UUID, team_id: uuid.UUID) -> None:
    template = await get_template(db, template_id, team_id)
    await db.delete(template)
    await db.commit()


async def variables_for_reservation(db: AsyncSession, reservation: Reservation) -> Dict[str, str]:
    vehicle = await db.get(Vehicle, reservation.vehicle_id)
    team = await db.get(Team, reservation.team_id)
    customer = await db.get(Customer, reservation.customer_id) if reservation.customer_id else None
    return build_template_variables(customer, vehicle, reservation, team)


async def preview_template(
    db: AsyncSession, template_id: uuid.UUID, reservation_id: uuid.UUID, team_id: uuid.UUID
) -> TemplatePreview:
    template = await get_template(db, template_id, team_id)
    result = await db.execute(
        select(Reservation).filter(Reservation.id == reservation_id, Reservation.team_id == team_id)
    )
    reservation = result.scalars().first()
    if not reservation:
        raise NotFoundError("Réservation non trouvée")

    variables = await variables_for_reservation(db, reservation)
    return TemplatePreview(
        subject=replace_template_variables(template.subject, variables) if template.subject else None,
        message=replace_template_variables(template.message, variables),
    )
