# -*- coding: utf-8 -*-
"""
Per-record worker pool

Runs one task per texture record, in parallel when more than one worker is
allowed, and hands results back in task order.
"""
import logging
from concurrent.futures import ProcessPoolExecutor, as_completed
from multiprocessing import cpu_count
from typing import Any, Callable, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_WORKERS = max(1, cpu_count() - 1)


def run_ordered(worker: Callable[[Any], Any], tasks: Iterable[Any],
                workers: int = DEFAULT_WORKERS,
                progress_callback: Optional[Callable[[int, int], None]] = None) -> List[Any]:
    """Apply worker to every task; results keep the order of tasks.

    worker must be a module-level function and tasks must be picklable.
    An exception raised by worker cancels every task not yet started and
    is re-raised here.
    """
    tasks = list(tasks)
    if workers <= 1 or len(tasks) <= 1:
        return _run_sequential(worker, tasks, progress_callback)
    return _run_parallel(worker, tasks, workers, progress_callback)


def _run_sequential(worker, tasks, progress_callback) -> List[Any]:
    results = []
    for i, task in enumerate(tasks, 1):
        results.append(worker(task))
        if progress_callback:
            progress_callback(i, len(tasks))
    return results


def _run_parallel(worker, tasks, workers, progress_callback) -> List[Any]:
    results = [None] * len(tasks)
    logger.debug(f"Using parallel processing: {workers} workers, {len(tasks)} tasks")

    with ProcessPoolExecutor(max_workers=workers) as executor:
        future_to_index = {}
        for i, task in enumerate(tasks):
            future_to_index[executor.submit(worker, task)] = i

        current = 0
        try:
            for future in as_completed(future_to_index):
                current += 1
                results[future_to_index[future]] = future.result()
                if progress_callback:
                    progress_callback(current, len(tasks))
        except BaseException:
            for future in future_to_index:
                future.cancel()
            raise

    return results
