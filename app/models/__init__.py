from app.models.audit_log import AuditLog
from app.models.code import ReferralCode
from app.models.payout import PayoutRequest
from app.models.redemption import Redemption
from app.models.referrer import Referrer
from app.models.user import User

__all__ = ["AuditLog", "PayoutRequest", "Redemption", "ReferralCode", "Referrer", "User"]
