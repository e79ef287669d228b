# This file serves as the central point for all our models.
# By importing them here, we ensure that SQLAlchemy's metadata
# is aware of all tables when the application starts.

from .base import Base
from .organization import Organization
from .team import Team
from .team_member import TeamMember
from .user import User
from .vehicle import Vehicle, VehicleStatus
from .customer import Customer
from .reservation import Reservation, ReservationStatus, ACTIVE_RESERVATION_STATUSES
from .payment import Payment, PaymentType, PaymentStatus
from .contract import Contract, ContractStatus
from .message_template import MessageTemplate
from .communication import Communication
