from __future__ import annotations

import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Iterator, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def run_bounded(
    items: Sequence[T],
    task: Callable[[T], R],
    concurrency: int,
    item_timeout: float | None = None,
    thread_name_prefix: str = "fieldbrief-pool",
) -> Iterator[tuple[T, R | None, Exception | None]]:
    """Run task over items with at most `concurrency` tasks in flight.

    Yields (item, result, error) in the submitting thread as tasks finish.
    Each task is timed from its own start. A task still running after
    item_timeout seconds is yielded with a TimeoutError and abandoned; its
    slot goes to the next queued item, so a hung task never fails items
    that have not started yet. Abandoned threads are never joined.
    """
    if not items:
        return
    slots = max(1, min(int(concurrency), len(items)))
    executor = ThreadPoolExecutor(max_workers=len(items), thread_name_prefix=thread_name_prefix)
    running: dict[Future, tuple[int, float]] = {}
    next_index = 0
    try:
        while next_index < len(items) or running:
            while next_index < len(items) and len(running) < slots:
                future = executor.submit(task, items[next_index])
                running[future] = (next_index, time.monotonic())
                next_index += 1

            timeout = None
            if item_timeout is not None:
                oldest = min(started for _, started in running.values())
                timeout = max(0.0, oldest + item_timeout - time.monotonic())
            done, _ = wait(list(running), timeout=timeout, return_when=FIRST_COMPLETED)

            for future in sorted(done, key=lambda f: running[f][0]):
                index, _ = running.pop(future)
                try:
                    result = future.result()
                except Exception as exc:  # noqa: BLE001
                    yield items[index], None, exc
                    continue
                yield items[index], result, None

            if item_timeout is None:
                continue
            now = time.monotonic()
            expired = sorted(
                (future for future, (_, started) in running.items() if now - started >= item_timeout),
                key=lambda f: running[f][0],
            )
            for future in expired:
                index, _ = running.pop(future)
                future.cancel()
                yield items[index], None, TimeoutError(f"task exceeded {item_timeout:g}s")
    finally:
        executor.shutdown(wait=False, cancel_futures=True)
