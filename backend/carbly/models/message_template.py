import uuid
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from carbly.models.base import Base

class MessageTemplate(Base):
    __tablename__ = 'message_templates'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    team_id = Column(UUID(as_uuid=True), ForeignKey('teams.id', ondelete='CASCADE'), nullable=False, index=True)
    name = Column(String, nullable=False)
    type = Column(String, nullable=False, default='email') # email, sms
    subject = Column(String, nullable=True) # required for email templates
    message = Column(Text, nullable=False) # may contain {{variables}}

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    team = relationship("Team", back_populates="message_templates")
