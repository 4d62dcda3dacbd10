"""
Shutdown policy: what the supervisor does for each trigger.

    SIGNAL               drain, exit 0
    UNHANDLED_REJECTION  drain, exit 1
    UNCAUGHT_EXCEPTION   no drain, exit 1 immediately

A rejected future leaves the event loop intact, so in-flight requests may
finish. After a synchronous fault the process state is unknown and nothing
more is served from it.
"""

from dataclasses import dataclass
from typing import Dict

from models.enums import ShutdownTrigger

EXIT_OK = 0
EXIT_FAILURE = 1


@dataclass(frozen=True)
class ShutdownPolicy:
    """How one trigger ends the process."""
    drain: bool
    exit_code: int


POLICIES: Dict[ShutdownTrigger, ShutdownPolicy] = {
    ShutdownTrigger.SIGNAL: ShutdownPolicy(drain=True, exit_code=EXIT_OK),
    ShutdownTrigger.UNHANDLED_REJECTION: ShutdownPolicy(drain=True, exit_code=EXIT_FAILURE),
    ShutdownTrigger.UNCAUGHT_EXCEPTION: ShutdownPolicy(drain=False, exit_code=EXIT_FAILURE),
}


def policy_for(trigger: ShutdownTrigger) -> ShutdownPolicy:
    return POLICIES[trigger]
