import enum
import uuid
from sqlalchemy import Column, String, DateTime, ForeignKey, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from carbly.models.base import Base

class ContractStatus(str, enum.Enum):
    GENERATED = 'generated'
    PENDING_SIGNATURE = 'pending_signature'
    SIGNED = 'signed'
    DECLINED = 'declined'
    EXPIRED = 'expired'

class Contract(Base):
    __tablename__ = 'contracts'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    reservation_id = Column(UUID(as_uuid=True), ForeignKey('reservations.id', ondelete='CASCADE'), unique=True, nullable=False)

    status = Column(String, nullable=False, default=ContractStatus.GENERATED.value)
    pdf_url = Column(String, nullable=False)
    signature_request_id = Column(String, unique=True, nullable=True, index=True)
    signature_document_id = Column(String, nullable=True)
    signed_at = Column(DateTime(timezone=True), nullable=True)
    signed_pdf_url = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    reservation = relationship("Reservation", back_populates="contract")
