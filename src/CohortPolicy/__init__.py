"""CohortPolicy package exports."""

from .cohorts import *  # noqa: F401,F403
from .cohorts import __all__ as _cohorts_all
from .exceptions import *  # noqa: F401,F403
from .exceptions import __all__ as _exceptions_all
from .notifications import *  # noqa: F401,F403
from .notifications import __all__ as _notifications_all
from .persistence import *  # noqa: F401,F403
from .persistence import __all__ as _persistence_all
from .policy import *  # noqa: F401,F403
from .policy import __all__ as _policy_all
from .scopes import *  # noqa: F401,F403
from .scopes import __all__ as _scopes_all

__all__ = [
    *_cohorts_all,
    *_exceptions_all,
    *_notifications_all,
    *_persistence_all,
    *_policy_all,
    *_scopes_all,
]
