"""
Behavior Registry - Source type to polling behavior dispatch.

Behaviors are consulted in registration order; the first whose
`can_handle(source_type)` is true wins. The mandatory fallback (normally the
generic behavior) is used when none match.
"""

import logging
from typing import Iterable, Optional

import httpx

from apps.poller.api_client import ApiClient
from apps.poller.behaviors.base import SourceBehavior
from apps.poller.behaviors.discourse import DiscourseBehavior
from apps.poller.behaviors.generic import GenericBehavior
from apps.poller.state_store import PollingStateStore
from utils.schemas import SourceType

logger = logging.getLogger(__name__)


class BehaviorRegistry:
    def __init__(
        self,
        default_behavior: SourceBehavior,
        behaviors: Optional[Iterable[SourceBehavior]] = None,
    ) -> None:
        self.default_behavior = default_behavior
        self._behaviors: list[SourceBehavior] = []
        for behavior in behaviors or ():
            self.register(behavior)

    def register(self, behavior: SourceBehavior) -> None:
        """Append a behavior; earlier registrations take precedence."""
        self._behaviors.append(behavior)
        logger.info("Registered polling behavior", extra={"behavior": behavior.display_name()})

    def get_behavior(self, source_type: str) -> SourceBehavior:
        for behavior in self._behaviors:
            if behavior.can_handle(source_type):
                logger.debug(
                    "Using specific behavior",
                    extra={"source_type": source_type, "behavior": behavior.display_name()},
                )
                return behavior

        logger.debug("No specific behavior found, using default", extra={"source_type": source_type})
        return self.default_behavior

    def all_behaviors(self) -> list[SourceBehavior]:
        return [*self._behaviors, self.default_behavior]

    def behavior_info(self, known_source_types: Optional[Iterable[str]] = None) -> list[dict]:
        """Display name and handled source types of every behavior (fallback as '*')."""
        known = list(known_source_types or [source_type.value for source_type in SourceType])
        info = [
            {
                "display_name": behavior.display_name(),
                "source_types": [source_type for source_type in known if behavior.can_handle(source_type)],
            }
            for behavior in self._behaviors
        ]
        info.append({"display_name": self.default_behavior.display_name(), "source_types": ["*"]})
        return info

    async def initialize(self) -> None:
        for behavior in self.all_behaviors():
            try:
                await behavior.initialize()
            except Exception as e:
                logger.error(
                    "Failed to initialize behavior",
                    extra={"behavior": behavior.display_name(), "error": str(e)},
                )

    async def cleanup(self) -> None:
        for behavior in self.all_behaviors():
            try:
                await behavior.cleanup()
            except Exception as e:
                logger.error(
                    "Failed to cleanup behavior",
                    extra={"behavior": behavior.display_name(), "error": str(e)},
                )


def build_default_registry(
    state_store: PollingStateStore,
    http_client: Optional[httpx.AsyncClient] = None,
) -> BehaviorRegistry:
    """Registry with every specialized behavior plus the generic fallback."""
    return BehaviorRegistry(
        default_behavior=GenericBehavior(ApiClient(http_client), state_store),
        behaviors=[DiscourseBehavior(state_store, http_client)],
    )
