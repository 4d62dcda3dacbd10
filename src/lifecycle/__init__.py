"""
Lifecycle subsystem
-------------------

Exports the public API for:
- the listener handle (bind, serve, drain-and-close)
- the lifecycle supervisor and its shutdown policy

External code should import from:
    from lifecycle import LifecycleSupervisor, ListenHandle
"""

from .errors import ServerError, StartupError, BindError
from .listen_handle import ListenHandle, local_url
from .port_manager import PortManager
from .shutdown_policy import ShutdownPolicy, POLICIES, policy_for
from .supervisor import LifecycleSupervisor

__all__ = [
    "ServerError",
    "StartupError",
    "BindError",
    "ListenHandle",
    "local_url",
    "PortManager",
    "ShutdownPolicy",
    "POLICIES",
    "policy_for",
    "LifecycleSupervisor",
]
