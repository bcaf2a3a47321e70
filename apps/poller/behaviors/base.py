"""Base interface for per-source-type polling behaviors."""

from abc import ABC, abstractmethod

from utils.schemas import FetchResult, JobConfig


class SourceBehavior(ABC):
    """Produces every record for one polling cycle of one job."""

    @abstractmethod
    def can_handle(self, source_type: str) -> bool:
        """True if this behavior polls the given source type."""

    @abstractmethod
    async def fetch(self, config: JobConfig, correlation_id: str) -> FetchResult:
        """Run one polling cycle and return the fetched records."""

    @abstractmethod
    def display_name(self) -> str:
        ...

    async def initialize(self) -> None:
        """Optional setup hook, called once when the scheduler starts."""

    async def cleanup(self) -> None:
        """Optional teardown hook, called once when the scheduler stops."""
