"""
External Collaborator Interfaces

DESIGN DECISION: Everything the reliability layer does NOT own is behind
an abstract interface:
1. The generation backends (untrusted black boxes)
2. The FactPack provider (raw numbers come from the app's data layer)
3. Health probes
4. The escalation path (safe templates or human review)

This keeps the core testable with in-process fakes and makes the
boundaries explicit: the gate never generates or rewrites answer text.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

from finguard.models.fact_pack import FactPack
from finguard.models.resilience import HealthProbeResult
from finguard.models.turn import ChatTurn, FactWindow
from finguard.models.validation import ValidationResult


class BackendInvoker(ABC):
    """
    Calls a generation backend.

    Every call made through the gate is wrapped by that service's
    circuit breaker. Implementations must not bypass it.
    """

    @abstractmethod
    async def invoke(self, service_name: str, request: dict[str, Any]) -> str:
        """
        Send a request to a backend and return the candidate answer text.

        Raises:
            Any exception on failure; the breaker records it.
        """
        pass


class FactPackProvider(ABC):
    """Builds the ground-truth snapshot for a chat turn."""

    @abstractmethod
    async def build_fact_pack(
        self,
        user_id: str,
        window: Optional[FactWindow] = None,
    ) -> FactPack:
        """
        Build one immutable FactPack for the user and window.

        Raises:
            FactPackError: If the snapshot cannot be built
        """
        pass


class HealthProbe(ABC):
    """Checks whether a backend is reachable."""

    @abstractmethod
    async def check(self, service_name: str) -> HealthProbeResult:
        """
        Probe a service.

        May raise; the monitoring service turns exceptions into an
        unhealthy result.
        """
        pass


class EscalationHandler(ABC):
    """
    Secondary path for answers that cannot be delivered as-is.

    Chooses a safe template or routes to human review.
    """

    @abstractmethod
    async def escalate(
        self,
        turn: ChatTurn,
        candidate: str,
        validation: ValidationResult,
    ) -> Optional[str]:
        """
        Produce replacement content for the turn.

        Returns:
            Text to show the user, or None if nothing safe is available
        """
        pass


class FactPackError(Exception):
    """The FactPack for a turn could not be built."""
    pass
