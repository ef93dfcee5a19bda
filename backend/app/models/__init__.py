from app.models.tenant import Tenant
from app.models.branch import Branch, Staff
from app.models.policy import VerticalBookingPolicy
from app.models.trust import CustomerTrustScore, CustomerBlock, TrustScoreEvent
from app.models.hold import BookingHold
from app.models.booking import Booking
from app.models.tool_execution import ToolExecutionLog

__all__ = [
    "Tenant",
    "Branch",
    "Staff",
    "VerticalBookingPolicy",
    "CustomerTrustScore",
    "CustomerBlock",
    "TrustScoreEvent",
    "BookingHold",
    "Booking",
    "ToolExecutionLog",
]
