"""
Typed outcome shared by the input guards.
"""

from dataclasses import dataclass
from typing import Optional

from ..errors import RejectedInput


@dataclass(frozen=True)
class GuardResult:
    """
    Outcome of a guard check.

    Attributes:
        ok: Whether the input passed
        reason: Human-readable rule that was violated (None when ok)
        value: Normalized input to hand to the collaborator (None when rejected)
    """
    ok: bool
    reason: Optional[str] = None
    value: Optional[str] = None

    @classmethod
    def accept(cls, value: str) -> "GuardResult":
        return cls(ok=True, value=value)

    @classmethod
    def reject(cls, reason: str) -> "GuardResult":
        return cls(ok=False, reason=reason)

    def unwrap(self) -> str:
        """Return the normalized value or raise RejectedInput."""
        if not self.ok:
            raise RejectedInput(self.reason or "Rejected input")
        return self.value
