"""
Port allocation service for application deployments.

Picks host ports from a configurable range (default 3000-9999). A port is
only handed out when nothing on the host is bound to it, verified with a
short bind-and-release probe, and when the caller's exclusion set (ports
held by live applications or reserved by in-flight creations) does not
contain it.
"""
import errno
import logging
import random
import socket
from typing import Collection, Optional

from shipyard.core.config import settings
from shipyard.core.exceptions import NoFreePortError

logger = logging.getLogger(__name__)


class PortAllocator:
    """
    Random-probe port allocation.

    Stateless: reservation of the returned port is the registry's job
    (see AppRegistry.allocate_port), so two concurrent callers may both be
    offered the same candidate but only one can reserve it.
    """

    def __init__(
        self,
        port_range_start: int = None,
        port_range_end: int = None,
        max_attempts: int = None,
        probe_host: str = None,
        rng: Optional[random.Random] = None,
    ):
        """
        Initialize the port allocator.

        Args:
            port_range_start: Start of port range (default from settings)
            port_range_end: End of port range, inclusive (default from settings)
            max_attempts: Random candidates tried before giving up
            probe_host: Address the bind probe binds to
            rng: Random source, injectable for tests
        """
        self.port_range_start = port_range_start or settings.PORT_RANGE_START
        self.port_range_end = port_range_end or settings.PORT_RANGE_END
        self.max_attempts = max_attempts or settings.PORT_ALLOCATION_ATTEMPTS
        self.probe_host = probe_host or settings.PORT_PROBE_HOST
        self._rng = rng or random.SystemRandom()

        if self.port_range_start > self.port_range_end:
            raise ValueError(
                f"Invalid port range {self.port_range_start}-{self.port_range_end}"
            )

    def is_port_free(self, port: int) -> bool:
        """
        Probe whether a TCP port can be bound on the host right now.

        The socket is closed immediately, so a free result is only a snapshot.

        Args:
            port: Port number to probe

        Returns:
            True if the bind succeeded, False otherwise
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            sock.bind((self.probe_host, port))
            return True
        except OSError as e:
            if e.errno not in (errno.EADDRINUSE, errno.EACCES):
                logger.warning(f"Unexpected error probing port {port}: {e}")
            return False
        finally:
            sock.close()

    def allocate(self, exclude: Collection[int] = ()) -> int:
        """
        Pick a free port from the range.

        Args:
            exclude: Ports that must not be returned even if the host reports
                     them free (held or reserved by other applications)

        Returns:
            Available port number

        Raises:
            NoFreePortError: If no candidate passed within max_attempts
        """
        for attempt in range(1, self.max_attempts + 1):
            port = self._rng.randint(self.port_range_start, self.port_range_end)
            if port in exclude:
                logger.debug(f"Port {port} is held by another application (attempt {attempt})")
                continue
            if not self.is_port_free(port):
                logger.debug(f"Port {port} is bound on the host (attempt {attempt})")
                continue
            logger.info(f"Allocated port {port} after {attempt} attempt(s)")
            return port

        logger.error(
            f"No free port in {self.port_range_start}-{self.port_range_end} "
            f"after {self.max_attempts} attempts"
        )
        raise NoFreePortError(self.port_range_start, self.port_range_end, self.max_attempts)


# Singleton instance
port_allocator = PortAllocator()
