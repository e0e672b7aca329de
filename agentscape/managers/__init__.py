"""Workspace operations: plan state machine and virtual file store.

Managers are bound to a ``Workspace`` handle, route every remote call through
its retry wrapper, and raise domain exceptions from ``agentscape.errors``
(``LookupError`` / ``ValueError`` subclasses), never backend-specific ones
except for failures they do not classify.
"""

from agentscape.managers.files import FileStore
from agentscape.managers.plan import PlanLocation, PlanManager

__all__ = ["FileStore", "PlanLocation", "PlanManager"]
