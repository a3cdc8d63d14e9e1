# src/gpinstall/topology/placement.py

from __future__ import annotations

from typing import List, Optional, Sequence

from gpinstall.errors import ConfigurationError


def place_mirrors(machines: Sequence[str]) -> List[Optional[str]]:
    """
    Choose the machine that holds the mirror of each segment.

    ``machines[i]`` is the machine of segment i's primary. The mirror of
    segment i goes to ``machines[(i + 1) % N]``. When that entry names the
    same machine (a host listed several times), the search continues with
    ``(i + 2) % N``, ``(i + 3) % N`` ... and takes the first different
    machine, so the result depends on list order only.

    N == 1 yields ``[None]``: a single segment has no mirror.
    """
    n = len(machines)
    if n == 0:
        raise ConfigurationError("segment host list is empty")
    if n == 1:
        return [None]

    placement: List[Optional[str]] = []
    for i, primary in enumerate(machines):
        for step in range(1, n):
            candidate = machines[(i + step) % n]
            if candidate != primary:
                placement.append(candidate)
                break
        else:
            raise ConfigurationError(
                f"cannot place mirror for segment {i}: every segment is on {primary}"
            )
    return placement
