import uuid
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from carbly.models.base import Base

class Team(Base):
    """A rental agency. Vehicles, reservations and billing are scoped to a team."""
    __tablename__ = 'teams'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    organization_id = Column(UUID(as_uuid=True), ForeignKey('organizations.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    logo_url = Column(String, nullable=True)

    plan = Column(String, nullable=False, default='free') # free, starter, pro, business
    max_vehicles = Column(Integer, nullable=True)

    stripe_subscription_id = Column(String, unique=True, nullable=True)
    subscription_status = Column(String, nullable=False, default='inactive')

    stripe_connect_account_id = Column(String, unique=True, nullable=True)
    stripe_connect_onboarded = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    organization = relationship("Organization", back_populates="teams")
    members = relationship("TeamMember", back_populates="team", cascade="all, delete-orphan")
    vehicles = relationship("Vehicle", back_populates="team", cascade="all, delete-orphan")
    reservations = relationship("Reservation", back_populates="team", cascade="all, delete-orphan")
    message_templates = relationship("MessageTemplate", back_populates="team", cascade="all, delete-orphan")
