# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/gpinstall/remote/commands.py

from __future__ import annotations

import shlex
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

# $0 for ``bash -c SCRIPT $0 $1 ...``
_SCRIPT_NAME = "gpinstall"


@dataclass(frozen=True)
class RemoteCommand:
    """
    A remote invocation described by explicit fields.

    Every argument is quoted exactly once by :meth:`render`; nothing from
    configuration is ever spliced into a shell string. Scripts that need
    pipes or conditionals are constant text and receive their inputs as
    positional parameters (see :meth:`script`). Secrets travel on stdin.
    """

    argv: Tuple[str, ...]
    description: str = ""
    sudo: bool = False
    run_as: Optional[str] = None
    env: Tuple[Tuple[str, str], ...] = ()
    stdin: Optional[str] = field(default=None, repr=False)
    mutating: bool = True
    timeout: Optional[float] = None

    @classmethod
    def of(cls, *argv: str, **kwargs) -> "RemoteCommand":
        return cls(argv=tuple(str(a) for a in argv), **kwargs)

    @classmethod
    def script(cls, body: str, *args: str, **kwargs) -> "RemoteCommand":
        """``bash -c BODY`` with ``args`` bound to ``$1``, ``$2``, ..."""
        return cls(argv=("bash", "-c", body, _SCRIPT_NAME, *(str(a) for a in args)), **kwargs)

    def with_sudo(self) -> "RemoteCommand":
        return replace(self, sudo=True)

    def as_user(self, user: str) -> "RemoteCommand":
        return replace(self, run_as=user)

    def render(self, *, sudo_password: bool = False) -> str:
        """
        Build the single string handed to the SSH channel.

        sudo_password: use ``sudo -S`` (password expected as the first stdin
        line) instead of non-interactive ``sudo -n``.
        """
        cmd = " ".join(shlex.quote(a) for a in self.argv)
        if self.env:
            assigns = " ".join(shlex.quote(f"{k}={v}") for k, v in self.env)
            cmd = f"env {assigns} {cmd}"

        if not (self.sudo or self.run_as):
            return cmd

        sudo = "sudo -S -p ''" if sudo_password else "sudo -n"
        if self.run_as:
            return f"{sudo} -H -u {shlex.quote(self.run_as)} -- {cmd}"
        return f"{sudo} -- {cmd}"

    def __str__(self) -> str:
        return self.description or self.render()
