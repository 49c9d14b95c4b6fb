"""IP address families (IPv4 and IPv6) and normalization of detected addresses."""

from __future__ import annotations

import ipaddress
from enum import Enum

from ddnskit.pp import ISSUE_REPORTING_URL, Emoji, PrettyPrinter

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


class IPFamily(Enum):
    """An IP network family."""

    IP4 = 4
    IP6 = 6

    def describe(self) -> str:
        """A human-readable name of the family."""
        return "IPv4" if self is IPFamily.IP4 else "IPv6"

    def record_type(self) -> str:
        """The DNS record type holding addresses of this family."""
        return "A" if self is IPFamily.IP4 else "AAAA"

    def matches(self, ip: IPAddress | None) -> bool:
        """Whether the address belongs to this family."""
        return ip is not None and ip.version == self.value

    def normalize_detected_ip(self, ppfmt: PrettyPrinter, ip: IPAddress | None) -> IPAddress | None:
        """Check a detected address; return it (normalized) or None after reporting."""
        if ip is None:
            ppfmt.notice(
                Emoji.IMPOSSIBLE,
                "Detected IP address is not valid; this should not happen and please report it at "
                f"{ISSUE_REPORTING_URL}",
            )
            return None

        if self is IPFamily.IP4 and isinstance(ip, ipaddress.IPv6Address):
            if ip.ipv4_mapped is not None and ip.scope_id is None:
                ip = ip.ipv4_mapped

        if ip.version != self.value:
            ppfmt.notice(Emoji.ERROR, f"Detected IP address {ip} is not a valid {self.describe()} address")
            return None

        if ip.is_loopback:
            ppfmt.notice(Emoji.ERROR, f"Detected {self.describe()} address {ip} is a loopback address")
            return None

        return ip