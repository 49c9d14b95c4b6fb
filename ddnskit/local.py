"""Detecting the address of the local machine without contacting any server."""

from __future__ import annotations

import ipaddress
import json
import socket
from dataclasses import dataclass
from typing import Any

import psutil

from ddnskit.family import IPAddress, IPFamily
from ddnskit.pp import Emoji, PrettyPrinter

_SOCKET_FAMILY = {IPFamily.IP4: socket.AF_INET, IPFamily.IP6: socket.AF_INET6}
_IP_FAMILIES = (socket.AF_INET, socket.AF_INET6)


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _unmap(ip: IPAddress) -> IPAddress:
    if isinstance(ip, ipaddress.IPv6Address) and ip.ipv4_mapped is not None:
        return ip.ipv4_mapped
    return ip


def _parse_host_port(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise ValueError(f"address {address}: missing port in address")
    if host.startswith("["):
        if not host.endswith("]"):
            raise ValueError(f"address {address}: missing ']' in address")
        host = host[1:-1]
    elif ":" in host:
        raise ValueError(f"address {address}: too many colons in address")
    if not port.isdigit():
        raise ValueError(f"address {address}: invalid port")
    return host, int(port)


def extract_udp_addr(ppfmt: PrettyPrinter, sockname: Any) -> IPAddress | None:
    """Turn a socket name as given by getsockname into an (unmapped) address."""
    match sockname:
        case (str() as host, int(), *rest) if len(rest) in (0, 2):
            text = host
            if rest and "%" not in host and rest[1]:
                text = f"{host}%{rest[1]}"
            try:
                ip = ipaddress.ip_address(text)
            except ValueError:
                ppfmt.notice(Emoji.IMPOSSIBLE, f"Failed to parse UDP source address {_quote(host)}")
                return None
            return _unmap(ip)
        case _:
            ppfmt.notice(
                Emoji.IMPOSSIBLE,
                f"Unexpected UDP source address data {_quote(str(sockname))} "
                f"of type {type(sockname).__qualname__}",
            )
            return None


@dataclass(frozen=True)
class LocalAuto:
    """Uses the source address the system would pick for a UDP packet (none is sent)."""

    name: str
    remote_udp_addr: str

    def get_ip(self, ppfmt: PrettyPrinter, family: IPFamily) -> IPAddress | None:
        """Connect a UDP socket to the remote address and report its local address."""
        try:
            host, port = _parse_host_port(self.remote_udp_addr)
            af, kind, proto, _, address = socket.getaddrinfo(
                host, port, _SOCKET_FAMILY[family], socket.SOCK_DGRAM
            )[0]
            with socket.socket(af, kind, proto) as sock:
                sock.connect(address)
                sockname = sock.getsockname()
        except (OSError, ValueError, IndexError) as err:
            ppfmt.notice(Emoji.ERROR, f"Failed to detect a local {family.describe()} address: {err}")
            return None

        ip = extract_udp_addr(ppfmt, sockname)
        if ip is None:
            return None
        return family.normalize_detected_ip(ppfmt, ip)


def extract_interface_addr(ppfmt: PrettyPrinter, iface: str, addr: Any) -> IPAddress | None:
    """Turn an interface address (text, address or interface object) into an unmapped address."""
    if isinstance(addr, (ipaddress.IPv4Interface, ipaddress.IPv6Interface)):
        return _unmap(addr.ip)
    if isinstance(addr, (ipaddress.IPv4Address, ipaddress.IPv6Address)):
        return _unmap(addr)
    if isinstance(addr, str):
        try:
            return _unmap(ipaddress.ip_address(addr))
        except ValueError:
            ppfmt.notice(
                Emoji.IMPOSSIBLE,
                f"Failed to parse address {_quote(addr)} assigned to interface {iface}",
            )
            return None
    ppfmt.notice(
        Emoji.IMPOSSIBLE,
        f"Unexpected address data {_quote(str(addr))} of type {type(addr).__qualname__} "
        f"found in interface {iface}",
    )
    return None


def _is_multicast_scope(ip: IPAddress, scope: int) -> bool:
    packed = ip.packed
    return isinstance(ip, ipaddress.IPv6Address) and packed[0] == 0xFF and packed[1] & 0x0F == scope


def _is_link_local_multicast(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv4Address):
        return ip in ipaddress.IPv4Network("224.0.0.0/24")
    return _is_multicast_scope(ip, 0x02)


def _is_global_unicast(ip: IPAddress) -> bool:
    if isinstance(ip, ipaddress.IPv4Address) and ip == ipaddress.IPv4Address("255.255.255.255"):
        return False
    return not (ip.is_unspecified or ip.is_loopback or ip.is_multicast or ip.is_link_local)


def _is_above_link_local(ip: IPAddress) -> bool:
    return not (
        ip.is_unspecified
        or ip.is_loopback
        or _is_multicast_scope(ip, 0x01)
        or ip.is_link_local
        or _is_link_local_multicast(ip)
    )


def select_interface_ip(
    ppfmt: PrettyPrinter, iface: str, family: IPFamily, addrs: list[Any]
) -> IPAddress | None:
    """Choose the first global unicast address of the family, else one above link-local scope."""
    ips: list[IPAddress] = []
    for addr in addrs:
        ip = extract_interface_addr(ppfmt, iface, addr)
        if ip is None:
            return None
        ips.append(ip)

    chosen = next((ip for ip in ips if family.matches(ip) and _is_global_unicast(ip)), None)
    if chosen is not None:
        return chosen

    chosen = next((ip for ip in ips if family.matches(ip) and _is_above_link_local(ip)), None)
    if chosen is not None:
        ppfmt.notice(
            Emoji.WARNING,
            f"Failed to find any global unicast {family.describe()} address assigned to interface "
            f"{iface}, but found an address {chosen} with a scope larger than the link-local scope",
        )
        return chosen

    ppfmt.notice(
        Emoji.ERROR,
        f"Failed to find any global unicast {family.describe()} address assigned to interface {iface}",
    )
    return None


@dataclass(frozen=True)
class LocalWithInterface:
    """Uses the first suitable address assigned to a network interface."""

    name: str
    interface_name: str

    def get_ip(self, ppfmt: PrettyPrinter, family: IPFamily) -> IPAddress | None:
        """Pick an address of the family from the interface's assigned addresses."""
        try:
            table = psutil.net_if_addrs()
        except (OSError, psutil.Error) as err:
            ppfmt.notice(
                Emoji.IMPOSSIBLE,
                f"Failed to list addresses of interface {self.interface_name}: {err}",
            )
            return None

        entries = table.get(self.interface_name)
        if entries is None:
            ppfmt.notice(
                Emoji.USER_ERROR,
                f"Failed to find an interface named {_quote(self.interface_name)}: no such network interface",
            )
            return None

        addrs = [entry.address for entry in entries if entry.family in _IP_FAMILIES]
        return select_interface_ip(ppfmt, self.interface_name, family, addrs)