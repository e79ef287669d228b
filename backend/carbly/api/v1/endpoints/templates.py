from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Literal, Optional
import uuid

from carbly.schemas.message_template import (
    MessageTemplate, MessageTemplateCreate, MessageTemplateUpdate, TemplatePreview, TemplatePreviewRequest,
)
from carbly.models.team import Team
from carbly.core.dependencies import get_current_team
from carbly.database import get_db
from carbly.services import template_service

router = APIRouter()

@router.post("/", response_model=MessageTemplate, status_code=status.HTTP_201_CREATED)
async def create_template(
    template_in: MessageTemplateCreate,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await template_service.create_template(db=db, template_in=template_in, team=team)

@router.get("/", response_model=List[MessageTemplate])
async def list_templates(
    type: Optional[Literal["email", "sms"]] = None,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await template_service.get_templates(db=db, team_id=team.id, type=type)

@router.get("/{template_id}", response_model=MessageTemplate)
async def read_template(
    template_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await template_service.get_template(db=db, template_id=template_id, team_id=team.id)

@router.patch("/{template_id}", response_model=MessageTemplate)
async def update_template(
    template_id: uuid.UUID,
    template_in: MessageTemplateUpdate,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    return await template_service.update_template(db=db, template_id=template_id, template_in=template_in, team_id=team.id)

@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_template(
    template_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    await template_service.delete_template(db=db, template_id=template_id, team_id=team.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)

@router.post("/{template_id}/preview", response_model=TemplatePreview)
async def preview_template(
    template_id: uuid.UUID,
    preview_in: TemplatePreviewRequest,
    db: AsyncSession = Depends(get_db),
    team: Team = Depends(get_current_team)
):
    """
    Render the template's {{variables}} with the data of a reservation.
    """
    return await template_service.preview_template(
        db=db, template_id=template_id, reservation_id=preview_in.reservation_id, team_id=team.id
    )
