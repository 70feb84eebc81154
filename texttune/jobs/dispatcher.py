"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import Optional

from texttune.db.tables import GenerationJob


class JobDispatcher(ABC):
    """Abstract interface for generation job dispatching."""

    @abstractmethod
    async def submit(self, job: GenerationJob) -> GenerationJob:
        """Persist a job as queued and schedule it. Returns the stored job."""
        ...

    @abstractmethod
    async def get_status(self, job_id: str, user_id: str) -> Optional[GenerationJob]:
        """Current state of a job owned by ``user_id``; None when not found."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Settle jobs left by a previous process and start rendering."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop taking work from the queue."""
        ...
