# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

import logging
from dataclasses import dataclass

log = logging.getLogger("gpinstall")


@dataclass(frozen=True)
class ExecutionContext:
    """
    controls how commands are executed
    """

    dry_run: bool = False

    def intercept(self, intent: str) -> bool:
        """Log ``intent`` and return True when the action must not really happen."""
        if self.dry_run:
            log.info("[DRY-RUN] %s", intent)
            return True
        return False
