from .organization import Organization, OrganizationCreate
from .team import Team, TeamCreate, TeamUpdate
from .user import User, UserCreate
from .vehicle import Vehicle, VehicleCreate, VehicleUpdate
from .customer import Customer, CustomerCreate, CustomerUpdate
from .reservation import (
    Reservation, ReservationCreate, ReservationDetail, ReservationStatusUpdate,
    ReservationCancel, CancellationResult, CheckinData, PublicReservation,
)
from .payment import Payment, CheckoutSession, BalanceInfo
from .contract import Contract
from .message_template import MessageTemplate, MessageTemplateCreate, MessageTemplateUpdate
from .communication import Communication, CommunicationCreate
from .pricing import PlatformFeeBreakdown, PlanUsage, PlanFeatures
