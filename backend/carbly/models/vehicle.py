import enum
import uuid
from sqlalchemy import Column, String, Integer, Numeric, DateTime, ForeignKey, JSON, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship
from carbly.models.base import Base

class VehicleStatus(str, enum.Enum):
    AVAILABLE = 'available'
    RENTED = 'rented'
    MAINTENANCE = 'maintenance'
    OUT_OF_SERVICE = 'out_of_service'

class Vehicle(Base):
    __tablename__ = 'vehicles'

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    team_id = Column(UUID(as_uuid=True), ForeignKey('teams.id', ondelete='CASCADE'), nullable=False, index=True)

    brand = Column(String, nullable=False)
    model = Column(String, nullable=False)
    year = Column(Integer, nullable=True)
    plate = Column(String, unique=True, nullable=False) # globally unique, not per team
    vin = Column(String, nullable=True)
    status = Column(String, nullable=False, default=VehicleStatus.AVAILABLE.value, index=True)

    daily_rate = Column(Numeric(10, 2), nullable=False)
    deposit_amount = Column(Numeric(10, 2), nullable=True)

    fuel_type = Column(String, nullable=True)
    transmission = Column(String, nullable=True)
    seats = Column(Integer, nullable=True)
    mileage = Column(Integer, nullable=True)
    images = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    team = relationship("Team", back_populates="vehicles")
    reservations = relationship("Reservation", back_populates="vehicle", cascade="all, delete-orphan")
