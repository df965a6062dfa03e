"""Timing helpers to log duration and row throughput of queries and exports."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from time import perf_counter
from typing import Iterator, Optional


@dataclass
class _Timer:
    label: str
    logger: logging.Logger
    level: int
    unit: str
    count: Optional[int] = None
    start: float = field(default_factory=perf_counter)

    def add(self, amount: int = 1) -> None:
        self.count = (self.count or 0) + amount

    def set_total(self, total: int) -> None:
        self.count = total

    @property
    def elapsed(self) -> float:
        return perf_counter() - self.start

    def finish(self, success: bool = True) -> None:
        elapsed = self.elapsed

        if success:
            message = f"{self.label} completed in {elapsed:.2f}s"
            if self.count is not None:
                message += f" ({self.count:,} {self.unit}"
                if elapsed > 0 and self.count:
                    message += f" @ {self.count / elapsed:,.0f} {self.unit}/s"
                message += ")"
            self.logger.log(self.level, message)
        else:
            fail_message = f"{self.label} failed after {elapsed:.2f}s"
            if self.count is not None:
                fail_message += f" ({self.count:,} {self.unit})"
            self.logger.error(fail_message)


@contextmanager
def timeit(
    label: str,
    *,
    logger: Optional[logging.Logger] = None,
    level: int = logging.INFO,
    unit: str = "rows",
) -> Iterator[_Timer]:
    """Time a block and log its duration.

    Args:
        label: Description of the operation being timed
        logger: Logger instance to use (defaults to "spending_analyst.timer")
        level: Logging level for the success message
        unit: Unit for throughput calculation (e.g., "rows")

    Call ``timer.set_total(n)`` inside the block to include throughput.
    """
    log = logger or logging.getLogger("spending_analyst.timer")
    timer = _Timer(label=label, logger=log, level=level, unit=unit)

    try:
        yield timer
    except Exception:
        timer.finish(success=False)
        raise
    else:
        timer.finish(success=True)
