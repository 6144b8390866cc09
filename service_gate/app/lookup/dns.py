"""
Forward and reverse DNS lookups with a bounded timeout.
"""

import socket
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from ipaddress import ip_address
from typing import List, Optional

from shared.logging import get_logger
from ..rules.models import IPAddress, normalize_address


class DNSResolver:
    """Blocking resolver calls run on a worker pool so each call can time out."""

    def __init__(self, timeout: float = 2.0, max_workers: int = 8):
        self.timeout = timeout
        self.logger = get_logger("gate.lookup.dns")
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="dns")

    def _run(self, func, *args, timeout: Optional[float] = None):
        future = self._executor.submit(func, *args)
        return future.result(timeout=self.timeout if timeout is None else min(self.timeout, timeout))

    def lookup_ip(self, hostname: str, timeout: Optional[float] = None) -> List[IPAddress]:
        """Addresses the hostname resolves to. Empty on failure."""
        try:
            infos = self._run(socket.getaddrinfo, hostname, None, timeout=timeout)
        except (OSError, UnicodeError, ValueError, FutureTimeoutError) as e:
            self.logger.debug("Forward lookup failed", hostname=hostname, error=str(e) or type(e).__name__)
            return []

        addresses: List[IPAddress] = []
        for _family, _type, _proto, _canonname, sockaddr in infos:
            # Drop IPv6 scope ids ("fe80::1%eth0")
            host = str(sockaddr[0]).split("%", 1)[0]
            try:
                address = normalize_address(ip_address(host))
            except ValueError:
                continue
            if address not in addresses:
                addresses.append(address)
        return addresses

    def lookup_addr(self, ip: IPAddress, timeout: Optional[float] = None) -> List[str]:
        """Lower-cased reverse DNS names of the address. Empty on failure."""
        try:
            hostname, aliases, _addresses = self._run(socket.gethostbyaddr, str(ip), timeout=timeout)
        except (OSError, UnicodeError, ValueError, FutureTimeoutError) as e:
            self.logger.debug("Reverse lookup failed", ip=str(ip), error=str(e) or type(e).__name__)
            return []

        names: List[str] = []
        for name in [hostname, *aliases]:
            name = name.lower().rstrip(".")
            if name and name not in names:
                names.append(name)
        return names

    def close(self):
        self._executor.shutdown(wait=False)
