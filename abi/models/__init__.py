"""Database models — re-exported for `from abi.models import User, ...`."""

from .base import Base  # noqa: F401

# Auth
from .auth import Invite, User, UserSession  # noqa: F401

# Credits
from .credits import CreditAccount, CreditHold, LedgerEntry  # noqa: F401

# Approvals
from .approvals import ApprovalEvent, ApprovalRule, UpgradeRequest  # noqa: F401

# Interests
from .interests import Interest  # noqa: F401
