import enum
import uuid
from sqlalchemy import Column, String, Integer, Text, Boolean, Numeric, DateTime, ForeignKey, JSON, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from carbly.models.base import Base

class ReservationStatus(str, enum.Enum):
    DRAFT = 'draft'
    PENDING_PAYMENT = 'pending_payment'
    PAID = 'paid'
    CONFIRMED = 'confirmed'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'

# Statuses that hold the vehicle for their date range
ACTIVE_RESERVATION_STATUSES = (
    ReservationStatus.PAID.value,
    ReservationStatus.CONFIRMED.value,
    ReservationStatus.IN_PROGRESS.value,
)

class Reservation(Base):
    __tablename__ = 'reservations'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    team_id = Column(UUID(as_uuid=True), ForeignKey('teams.id', ondelete='CASCADE'), nullable=False, index=True)
    vehicle_id = Column(UUID(as_uuid=True), ForeignKey('vehicles.id', ondelete='CASCADE'), nullable=False, index=True)
    customer_id = Column(UUID(as_uuid=True), ForeignKey('customers.id', ondelete='SET NULL'), nullable=True)

    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=False)
    status = Column(String, nullable=False, default=ReservationStatus.DRAFT.value, index=True)

    total_amount = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=True)
    caution_amount = Column(Numeric(10, 2), nullable=True)
    collect_caution_online = Column(Boolean, nullable=False, default=False)
    insurance_amount = Column(Numeric(10, 2), nullable=True)
    include_insurance = Column(Boolean, nullable=False, default=False)

    magic_link_token = Column(String, unique=True, nullable=False, index=True)
    balance_payment_token = Column(String, unique=True, nullable=True, index=True)

    checkin_at = Column(DateTime(timezone=True), nullable=True)
    checkin_mileage = Column(Integer, nullable=True)
    checkin_fuel_level = Column(String, nullable=True)
    checkin_notes = Column(Text, nullable=True)
    checkin_photos = Column(JSON, nullable=True)

    checkout_at = Column(DateTime(timezone=True), nullable=True)
    checkout_mileage = Column(Integer, nullable=True)
    checkout_fuel_level = Column(String, nullable=True)
    checkout_notes = Column(Text, nullable=True)
    checkout_photos = Column(JSON, nullable=True)

    # Free-form audit log, one line per event
    internal_notes = Column(Text, nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    team = relationship("Team", back_populates="reservations")
    vehicle = relationship("Vehicle", back_populates="reservations")
    customer = relationship("Customer", back_populates="reservations")
    payments = relationship("Payment", back_populates="reservation", cascade="all, delete-orphan")
    contract = relationship("Contract", back_populates="reservation", uselist=False, cascade="all, delete-orphan")
