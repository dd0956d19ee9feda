"""Credential verification collaborators consulted through the status cache."""

from __future__ import annotations

import os
import shlex
import shutil
from collections.abc import Mapping
from typing import Protocol

from layer_bridge.cache.auth_cache import AuthStatus
from layer_bridge.errors import remediation_for_auth
from layer_bridge.models import LayerType

CLAUDE_BINARY_CANDIDATES: tuple[str, ...] = (
    "claude",
    "/usr/local/bin/claude",
    "/opt/homebrew/bin/claude",
)
AISTUDIO_KEY_VARIABLES: tuple[str, ...] = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "AI_STUDIO_API_KEY")

_INSTALL_HINTS: dict[LayerType, str] = {
    LayerType.CLAUDE: "Install: npm install -g @anthropic-ai/claude-code, then run: claude login",
    LayerType.GEMINI: "Install: npm install -g @google/gemini-cli, then run: gemini auth",
}


class AuthVerifier(Protocol):
    """Supplies a fresh authentication outcome for one backend."""

    async def verify(self, service: LayerType) -> AuthStatus: ...


class EnvironmentAuthVerifier:
    """Checks local prerequisites: CLI binaries on PATH or API key variables."""

    def __init__(
        self,
        *,
        commands: Mapping[LayerType, str] | None = None,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._commands = dict(commands or {})
        self._env = env if env is not None else os.environ

    async def verify(self, service: LayerType) -> AuthStatus:
        match service:
            case LayerType.CLAUDE:
                return self._verify_binary(service, self._binary_candidates(service))
            case LayerType.GEMINI:
                status = self._verify_binary(service, self._binary_candidates(service))
                if status.success and self._api_key() is not None:
                    return AuthStatus(service=service, success=True, method="api_key")
                return status
            case LayerType.AISTUDIO:
                variable = self._api_key()
                if variable is None:
                    return AuthStatus(
                        service=service,
                        success=False,
                        method="api_key",
                        error="No AI Studio API key found in the environment.",
                        action_instructions=remediation_for_auth(service),
                    )
                return AuthStatus(
                    service=service,
                    success=True,
                    method="api_key",
                    user_info={"variable": variable},
                )

    def _binary_candidates(self, service: LayerType) -> tuple[str, ...]:
        configured = self._commands.get(service)
        head = shlex.split(configured)[0] if configured and configured.strip() else service.value
        if service is LayerType.CLAUDE:
            return (head, *[c for c in CLAUDE_BINARY_CANDIDATES if c != head])
        return (head,)

    def _verify_binary(self, service: LayerType, candidates: tuple[str, ...]) -> AuthStatus:
        for candidate in candidates:
            path = shutil.which(candidate)
            if path is not None:
                return AuthStatus(
                    service=service,
                    success=True,
                    method="cli",
                    user_info={"binary": path},
                )
        return AuthStatus(
            service=service,
            success=False,
            method="cli",
            error=f"{candidates[0]} CLI not found on PATH.",
            action_instructions=_INSTALL_HINTS[service],
        )

    def _api_key(self) -> str | None:
        for variable in AISTUDIO_KEY_VARIABLES:
            if self._env.get(variable):
                return variable
        return None
