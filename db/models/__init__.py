"""Plantwatch — ORM models.

Importing this package registers every mapper on ``Base.metadata``.
"""

from db.models.alert import Alert
from db.models.audit_log import Log
from db.models.machine import Machine
from db.models.user import User

__all__ = ["Alert", "Log", "Machine", "User"]
