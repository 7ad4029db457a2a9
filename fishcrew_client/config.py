# =============================================================================
# FishCrew Client -- Client Configuration
# =============================================================================

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .constants import (
    DEFAULT_API_URL,
    DEFAULT_TRANSPORTS,
    HANDSHAKE_TIMEOUT,
    REQUEST_TIMEOUT,
    TRANSPORT_POLLING,
    TRANSPORT_WEBSOCKET,
)
from .types import ReconnectConfig, SupervisorConfig

ENV_API_URL = "FISHCREW_API_URL"
ENV_REQUEST_TIMEOUT = "FISHCREW_REQUEST_TIMEOUT"
ENV_CREDENTIALS_PATH = "FISHCREW_CREDENTIALS_PATH"
ENV_TRANSPORTS = "FISHCREW_TRANSPORTS"


@dataclass
class ClientConfig:
    """Settings for :class:`~fishcrew_client.client.FishCrewClient`.

    Attributes:
        api_url: Backend base URL; REST and the socket share it.
        request_timeout: REST timeout in seconds.
        handshake_timeout: Per-attempt transport handshake timeout.
        credentials_path: JSON file for persisted credentials. ``None``
            keeps them in memory only.
        auto_reconnect: Start a reconnect cycle after an unexpected drop.
        transports: Realtime transport order, ``"websocket"`` and/or
            ``"polling"``.
        reconnect: Transport retry policy inside one ``connect()``.
        supervisor: Outer retry policy before going offline.
    """

    api_url: str = DEFAULT_API_URL
    request_timeout: float = REQUEST_TIMEOUT
    handshake_timeout: float = HANDSHAKE_TIMEOUT
    credentials_path: Path | None = None
    auto_reconnect: bool = True
    transports: tuple[str, ...] = DEFAULT_TRANSPORTS
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    supervisor: SupervisorConfig = field(default_factory=SupervisorConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ClientConfig:
        """Build a config from ``FISHCREW_*`` environment variables.

        Raises:
            ValueError: ``FISHCREW_REQUEST_TIMEOUT`` is not a positive number,
                or ``FISHCREW_TRANSPORTS`` names an unknown transport.
        """
        env = os.environ if environ is None else environ
        config = cls()
        if env.get(ENV_API_URL):
            config.api_url = env[ENV_API_URL].rstrip("/")
        if env.get(ENV_REQUEST_TIMEOUT):
            timeout = float(env[ENV_REQUEST_TIMEOUT])
            if timeout <= 0:
                raise ValueError(f"{ENV_REQUEST_TIMEOUT} must be positive, got {timeout}")
            config.request_timeout = timeout
        if env.get(ENV_CREDENTIALS_PATH):
            config.credentials_path = Path(env[ENV_CREDENTIALS_PATH]).expanduser()
        if env.get(ENV_TRANSPORTS):
            names = tuple(n.strip() for n in env[ENV_TRANSPORTS].split(",") if n.strip())
            unknown = set(names) - {TRANSPORT_WEBSOCKET, TRANSPORT_POLLING}
            if not names or unknown:
                raise ValueError(f"{ENV_TRANSPORTS} has unknown transports: {sorted(unknown)}")
            config.transports = names
        return config
