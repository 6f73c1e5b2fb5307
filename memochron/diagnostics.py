"""Platform and connectivity snapshot attached to remote fetch failures."""

import asyncio
import platform
import sys
from dataclasses import asdict, dataclass
from typing import Any, Optional
from urllib.parse import urlparse


@dataclass
class SystemDiagnostics:
    """System diagnostics information."""

    platform: str
    python_version: str
    event_loop_running: bool
    host: Optional[str] = None
    error_type: Optional[str] = None

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def get_system_diagnostics(
    url: Optional[str] = None, error: Optional[BaseException] = None
) -> SystemDiagnostics:
    """Get system diagnostics information.

    Args:
        url: Feed URL that failed
        error: Exception raised by the transport, if any

    Returns:
        SystemDiagnostics with platform, runtime and connectivity information
    """
    event_loop_running = False
    try:
        asyncio.get_running_loop()
        event_loop_running = True
    except RuntimeError:
        pass

    host = None
    if url:
        try:
            host = urlparse(url).hostname
        except ValueError:
            # Malformed netloc such as an unclosed IPv6 bracket
            host = None

    return SystemDiagnostics(
        platform=platform.platform(),
        python_version=sys.version.split()[0],
        event_loop_running=event_loop_running,
        host=host,
        error_type=type(error).__name__ if error is not None else None,
    )
