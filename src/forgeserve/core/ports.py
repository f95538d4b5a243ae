"""
Port conflict resolution

Runs before the real server exists: probes the desired port with a
throwaway listener and walks the (port, companion port) pair upwards until a
free port is found or the retry ceiling is reached.
"""

import asyncio
from dataclasses import dataclass
from typing import Optional

import structlog
from tenacity import AsyncRetrying, RetryError, retry_if_exception_type, stop_after_attempt

from .config import DEFAULT_PORT_RETRIES, HmrUserOptions, UserConfig, normalize_dev_server_options
from ..exceptions.base import BindError, BindErrorKind, PortUnavailable, classify_os_error

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PortProbeResult:
    """Usable port pair chosen by the resolver"""
    chosen_port: int
    chosen_companion_port: int
    attempts: int = 1


class _PortInUse(Exception):
    def __init__(self, port: int):
        super().__init__(f"Port {port} is in use")
        self.port = port


class PortConflictResolver:
    """
    Resolve a usable (port, companion port) pair

    Only "address in use" failures are retried. Any other bind failure is
    fatal and surfaces as ``BindError``.
    """

    def __init__(self, max_attempts: int = DEFAULT_PORT_RETRIES, log=None):
        if max_attempts <= 0:
            raise ValueError("max_attempts must be positive")
        self.max_attempts = max_attempts
        self.logger = log or logger

    async def is_port_available(self, port: int, host: str) -> bool:
        """Bind a throwaway listener to (host, port) and release it immediately"""
        loop = asyncio.get_running_loop()
        try:
            probe = await loop.create_server(asyncio.Protocol, host=host, port=port)
        except OSError as e:
            if classify_os_error(e) is BindErrorKind.ADDRESS_IN_USE:
                return False
            raise BindError.from_os_error(e, port, host) from e

        probe.close()
        await probe.wait_closed()
        return True

    async def resolve(
        self,
        desired_port: int,
        desired_companion_port: int,
        strict_port: bool,
        host: str
    ) -> PortProbeResult:
        """
        Find a free port starting at ``desired_port``.

        Both ports advance together so the companion stays at the same
        offset from the main port.

        Raises:
            PortUnavailable: In strict mode, or once the retry ceiling is hit
            BindError: For any bind failure other than "address in use"
        """
        result: Optional[PortProbeResult] = None

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                retry=retry_if_exception_type(_PortInUse),
            ):
                with attempt:
                    offset = attempt.retry_state.attempt_number - 1
                    port = desired_port + offset
                    if port > 65535:
                        raise PortUnavailable(
                            desired_port, offset,
                            f"No free port between {desired_port} and 65535"
                        )

                    if not await self.is_port_available(port, host):
                        if strict_port:
                            raise PortUnavailable(port)
                        self.logger.warning(f"Port {port} is in use, trying another one...")
                        raise _PortInUse(port)

                    result = PortProbeResult(
                        chosen_port=port,
                        chosen_companion_port=desired_companion_port + offset,
                        attempts=offset + 1,
                    )
        except RetryError as e:
            last_port = desired_port + self.max_attempts - 1
            raise PortUnavailable(
                desired_port,
                self.max_attempts,
                f"No free port between {desired_port} and {last_port} after {self.max_attempts} attempts"
            ) from e

        return result


async def resolve_port_conflict(user_config: UserConfig, log=None) -> PortProbeResult:
    """
    Resolve ports for a user configuration and write the chosen pair back.

    The configuration is only modified when resolution succeeds.
    """
    normalized = normalize_dev_server_options(user_config.server)
    companion_port = normalized.hmr.port if normalized.hmr_enabled else normalized.port

    resolver = PortConflictResolver(normalized.port_retries, log)
    result = await resolver.resolve(
        normalized.port,
        companion_port,
        normalized.strict_port,
        normalized.host,
    )

    server = user_config.server
    server.port = result.chosen_port
    if normalized.hmr_enabled:
        if isinstance(server.hmr, HmrUserOptions):
            server.hmr.port = result.chosen_companion_port
        else:
            server.hmr = HmrUserOptions(port=result.chosen_companion_port)
    return result
