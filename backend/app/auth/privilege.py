"""Origin-based privilege oracle.

Answers one question per request: does the caller at this network origin
hold moderator privilege? The chat engine only ever sees the boolean.

Origins are matched against the ``moderation.privileged_origins`` setting,
which accepts single addresses ("203.0.113.7") and networks ("10.0.0.0/8").
"""
import ipaddress
import logging
from typing import Iterable, List, Optional, Union

from starlette.requests import HTTPConnection

logger = logging.getLogger(__name__)

_Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class OriginPrivilegeOracle:
    """Grants privilege to callers whose address falls in a configured network.

    Args:
        privileged_origins: Addresses or CIDR networks granted moderator rights.
        trust_forwarded_for: Take the first ``X-Forwarded-For`` hop as the
            caller's origin (only behind a trusted reverse proxy).
    """

    def __init__(self, privileged_origins: Iterable[str] = (), trust_forwarded_for: bool = False) -> None:
        self._networks: List[_Network] = []
        for entry in privileged_origins:
            try:
                self._networks.append(ipaddress.ip_network(entry.strip(), strict=False))
            except ValueError:
                logger.warning("Ignoring invalid privileged origin %r", entry)
        self.trust_forwarded_for = trust_forwarded_for

    def is_privileged(self, origin: Optional[str]) -> bool:
        """Return True if *origin* is inside a privileged network.

        Missing or unparsable origins are never privileged.
        """
        if not origin:
            return False
        try:
            address = ipaddress.ip_address(origin.strip())
        except ValueError:
            return False
        return any(
            address.version == network.version and address in network
            for network in self._networks
        )

    def origin_of(self, conn: HTTPConnection) -> Optional[str]:
        """Resolve the caller's origin for a request or WebSocket."""
        if self.trust_forwarded_for:
            forwarded = conn.headers.get("x-forwarded-for", "")
            first_hop = forwarded.split(",")[0].strip()
            if first_hop:
                return first_hop
        return conn.client.host if conn.client else None

    def check(self, conn: HTTPConnection) -> bool:
        """Evaluate privilege for *conn* (never cached)."""
        return self.is_privileged(self.origin_of(conn))
