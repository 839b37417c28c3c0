"""
Best-effort side effects.

Notification fan-out and similar follow-up work must never fail the action
that triggered it. Instead of sprinkling ``try/except`` around detached tasks,
callers hand that work to a ``BestEffort`` runner: the result is discarded and
any exception is reported to an observer (the module logger by default).
"""
import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

logger = logging.getLogger(__name__)

Observer = Callable[[str, BaseException], None]


def log_failure(label: str, exc: BaseException) -> None:
    logger.error(f"Best-effort task '{label}' failed: {type(exc).__name__}: {exc}", exc_info=exc)


class BestEffort:
    def __init__(self, observer: Optional[Observer] = None):
        self.observer = observer or log_failure

    async def run(self, label: str, work: Awaitable) -> bool:
        """Await ``work``; report a failure instead of raising. Returns success."""
        try:
            await work
            return True
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._report(label, e)
            return False

    async def run_all(self, label: str, works: Iterable[Awaitable]) -> int:
        """Run every awaitable concurrently, isolating failures. Returns the success count."""
        results = await asyncio.gather(
            *(self.run(f"{label}[{i}]", work) for i, work in enumerate(works))
        )
        return sum(1 for ok in results if ok)

    def _report(self, label: str, exc: BaseException) -> None:
        try:
            self.observer(label, exc)
        except Exception:
            logger.exception(f"Observer failed while reporting '{label}'")


best_effort = BestEffort()
