# src/gpinstall/config/credentials.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Callable, Mapping, Optional

from gpinstall.errors import ConfigurationError
from gpinstall.remote.session import Endpoint, SshAuth

log = logging.getLogger("gpinstall")

ENV_SSH_PASSWORD = "GPINSTALL_SSH_PASSWORD"
ENV_SERVICE_PASSWORD = "GPINSTALL_SERVICE_PASSWORD"
ENV_SUDO_PASSWORD = "GPINSTALL_SUDO_PASSWORD"

Prompt = Callable[[str], Optional[str]]


@dataclass
class Credentials:
    """
    Secrets scoped to this process. Never written to the configuration
    snapshot, the state directory, the generated artifact or any log.
    """

    ssh_password: Optional[str] = field(default=None, repr=False)
    service_password: Optional[str] = field(default=None, repr=False)
    sudo_password: Optional[str] = field(default=None, repr=False)
    prompt: Optional[Prompt] = field(default=None, repr=False)

    @classmethod
    def collect(
        cls,
        environ: Mapping[str, str] = os.environ,
        prompt: Optional[Prompt] = None,
    ) -> "Credentials":
        creds = cls(
            ssh_password=environ.get(ENV_SSH_PASSWORD) or None,
            service_password=environ.get(ENV_SERVICE_PASSWORD) or None,
            sudo_password=environ.get(ENV_SUDO_PASSWORD) or None,
            prompt=prompt,
        )
        if creds.ssh_password:
            log.info("Using shared SSH credential from the environment")
        return creds

    def require_service_password(self, account: str) -> str:
        if not self.service_password and self.prompt is not None:
            self.service_password = self.prompt(f"Password for service account '{account}'")
        if not self.service_password:
            raise ConfigurationError(
                f"no password for service account '{account}' (set {ENV_SERVICE_PASSWORD})"
            )
        return self.service_password

    def ssh_auth(self, pkey_path: Optional[str] = None) -> SshAuth:
        per_host: Optional[Callable[[Endpoint], Optional[str]]] = None
        if self.prompt is not None and not self.ssh_password:
            prompt = self.prompt
            per_host = lambda ep: prompt(f"SSH password for {ep}")  # noqa: E731
        return SshAuth(
            password=self.ssh_password,
            pkey_path=pkey_path,
            sudo_password=self.sudo_password,
            prompt=per_host,
        )
