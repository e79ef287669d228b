import enum
import uuid
from sqlalchemy import Column, String, Numeric, DateTime, ForeignKey, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from carbly.models.base import Base

class PaymentType(str, enum.Enum):
    DEPOSIT = 'deposit'
    TOTAL = 'total'
    BALANCE = 'balance'
    CAUTION = 'caution'
    INSURANCE = 'insurance'

class PaymentStatus(str, enum.Enum):
    PENDING = 'pending'
    SUCCEEDED = 'succeeded'
    FAILED = 'failed'
    REFUNDED = 'refunded'

class Payment(Base):
    __tablename__ = 'payments'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reservation_id = Column(UUID(as_uuid=True), ForeignKey('reservations.id', ondelete='CASCADE'), nullable=False, index=True)

    amount = Column(Numeric(10, 2), nullable=False)
    fee = Column(Numeric(10, 2), nullable=False, default=0) # platform fee taken on this payment
    type = Column(String, nullable=False)
    status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)

    # Unique so that a replayed webhook cannot record the same checkout twice
    stripe_checkout_session_id = Column(String, unique=True, nullable=True)
    stripe_payment_intent_id = Column(String, unique=True, nullable=True)

    refunded_amount = Column(Numeric(10, 2), nullable=True)
    paid_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    reservation = relationship("Reservation", back_populates="payments")
