"""Permission gate: per-capability ask/allow decisions with "always allow" grants."""

from dataclasses import dataclass
from typing import Callable, Protocol

from .conversation import ActionResult, ErrorKind

ASK = "ask"
ALLOW = "allow"
MODES = (ASK, ALLOW)

DENIED_MESSAGE = "Permission denied by user"


@dataclass(frozen=True)
class Decision:
    granted: bool
    always_allow: bool = False


class PermissionStore(Protocol):
    def is_allowed(self, capability: str) -> bool: ...

    def set_permission(self, capability: str, mode: str) -> None: ...


DecideFn = Callable[[str, dict, str], Decision]


def denied_result() -> ActionResult:
    return ActionResult.failure(ErrorKind.PERMISSION_DENIED, DENIED_MESSAGE)


class PermissionGate:
    """Decides whether an action of a given capability class may run.

    The store is the only source of truth: a capability with no record is
    treated as "ask". `decide` stands for a human at a prompt, so it gets no
    timeout.
    """

    def __init__(self, store: PermissionStore, decide: DecideFn):
        self.store = store
        self.decide = decide

    def authorize(self, capability: str, args: dict, description: str) -> bool:
        if self.store.is_allowed(capability):
            return True
        decision = self.decide(capability, args, description)
        if decision.granted and decision.always_allow:
            self.store.set_permission(capability, ALLOW)
        return decision.granted
