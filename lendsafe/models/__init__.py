from lendsafe.models.audit_log import AuditLog
from lendsafe.models.bank import Bank
from lendsafe.models.pending_action import PendingAction
from lendsafe.models.role_assignment import RoleAssignment
from lendsafe.models.user_profile import UserProfile

__all__ = [
    "AuditLog",
    "Bank",
    "PendingAction",
    "RoleAssignment",
    "UserProfile",
]
