# src/gpinstall/remote/parallel.py

from __future__ import annotations

import concurrent.futures
import logging
from typing import Callable, Dict, Optional, Sequence, TypeVar

from gpinstall.errors import ParallelExecutionError

log = logging.getLogger("gpinstall")

T = TypeVar("T")


def run_parallel(
    hosts: Sequence[str],
    work: Callable[[str], T],
    *,
    max_workers: Optional[int] = None,
) -> Dict[str, T]:
    """
    Run ``work(host)`` for every host in a thread pool and wait for all of
    them. Failures do not stop the other hosts; they are collected and
    raised together as ParallelExecutionError once every unit has finished.
    No ordering between hosts is guaranteed.
    """
    if not hosts:
        return {}

    results: Dict[str, T] = {}
    failures: Dict[str, BaseException] = {}

    # Thread pool for BLOCKING per-host work (SSH, SFTP)
    with concurrent.futures.ThreadPoolExecutor(
        max_workers=max_workers or min(len(hosts), 16),
        thread_name_prefix="gpinstall-host",
    ) as pool:
        futures = {pool.submit(work, host): host for host in hosts}
        for fut in concurrent.futures.as_completed(futures):
            host = futures[fut]
            try:
                results[host] = fut.result()
                log.info("[%s] done", host)
            except Exception as exc:
                failures[host] = exc
                log.error("[%s] failed: %s", host, exc)

    if failures:
        raise ParallelExecutionError(failures)
    return results
