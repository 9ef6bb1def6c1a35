import asyncio
import logging
import uuid
from typing import Dict, Protocol, runtime_checkable

from compass_engine.payloads import ResultPayload, SubmissionPayload

logger = logging.getLogger(__name__)


@runtime_checkable
class ResultStore(Protocol):
    """Persistence collaborator for finished sessions."""

    async def save(self, payload: SubmissionPayload) -> str:
        ...

    async def load(self, result_id: str) -> ResultPayload:
        ...

    async def counters(self) -> Dict[str, int]:
        ...


class InMemoryResultStore:
    """
    Process-local result store.

    Keeps results in a dict and aggregate counters per macro cell and
    category. Nothing is persisted; intended for local runs and tests.
    """

    def __init__(self) -> None:
        self._results: Dict[str, ResultPayload] = {}
        self._counters: Dict[str, int] = {"total": 0}
        self._lock = asyncio.Lock()

    async def save(self, payload: SubmissionPayload) -> str:
        result_id = uuid.uuid4().hex
        logger.info(f"Storing result {result_id} for session '{payload.session_id}' ({payload.macro_code.value})")
        async with self._lock:
            self._results[result_id] = ResultPayload.from_submission(result_id, payload)
            self._counters["total"] += 1
            for key in (f"macro:{payload.macro_code.value}", f"category:{payload.category}", f"variant:{payload.variant}"):
                self._counters[key] = self._counters.get(key, 0) + 1
        return result_id

    async def load(self, result_id: str) -> ResultPayload:
        """
        Raises:
            KeyError: If no result with that id exists.
        """
        try:
            return self._results[result_id]
        except KeyError:
            logger.warning(f"Result '{result_id}' not found")
            raise

    async def counters(self) -> Dict[str, int]:
        return dict(self._counters)
