"""Per-item fault isolation for batch operations."""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Any, Callable, Hashable, Sequence, TypeVar

from ..config import settings

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)


@dataclass(slots=True)
class BatchResult:
    processed: int = 0
    errors: list[str] = field(default_factory=list)
    results: dict[Any, Any] = field(default_factory=dict)


def run_parallel(
    keys: Sequence[K],
    worker: Callable[[K], Any],
    *,
    label: str,
    max_workers: int | None = None,
) -> BatchResult:
    """Run ``worker`` for every key in a thread pool; a failing key never aborts the batch."""

    result = BatchResult()
    if not keys:
        return result

    with ThreadPoolExecutor(max_workers=max_workers or settings.batch_max_workers) as executor:
        future_to_key = {executor.submit(worker, key): key for key in keys}
        for future in as_completed(future_to_key):
            key = future_to_key[future]
            try:
                result.results[key] = future.result()
                result.processed += 1
            except Exception as exc:
                logger.warning("%s failed for %s: %s", label, key, exc)
                result.errors.append(f"{key}: {exc}")

    logger.info("%s: %s processed, %s failed", label, result.processed, len(result.errors))
    return result
