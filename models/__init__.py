from .db import db
from .user import User, Role, user_roles
from .audit_log import AuditLog
from .session import StaffSession
from .guest import Guest
from .room import Branch, RoomType, Room
from .booking import Booking
from .final_bill import FinalBill
from .payment import Payment
from .service_usage import ChargeableService, ServiceUsage
