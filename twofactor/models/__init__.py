from .account import Account
from .challenge import Challenge
from .issued_token import IssuedToken
from .audit import AuditLog

__all__ = ["Account", "Challenge", "IssuedToken", "AuditLog"]
