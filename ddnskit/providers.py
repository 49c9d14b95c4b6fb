"""Ready-made providers that detect public IP addresses."""

from __future__ import annotations

import io
import ipaddress
import json
import re
import string
from typing import Protocol, runtime_checkable
from urllib.parse import urlsplit

import dns.rdataclass

from ddnskit import httpclient
from ddnskit.doh import DNSOverHTTPS, DNSOverHTTPSParam
from ddnskit.family import IPAddress, IPFamily
from ddnskit.local import LocalAuto, LocalWithInterface
from ddnskit.pp import Emoji, PrettyPrinter, new_default
from ddnskit.protocols import HTTP, Const, Regexp, RegexpParam

_FIELD_IP = re.compile(r"(?m)^ip=(.*)$")
_HEX_DIGITS = frozenset(string.hexdigits)


@runtime_checkable
class Provider(Protocol):
    """A protocol to detect public IP addresses."""

    name: str

    def get_ip(self, ppfmt: PrettyPrinter, family: IPFamily) -> IPAddress | None:
        """Detect the address of the family, or return None after reporting."""
        ...


def provider_name(provider: Provider | None) -> str:
    """The provider's name, or "none" for no provider."""
    return "none" if provider is None else provider.name


def close_idle_connections() -> None:
    """Close idle kept-alive connections so they do not disturb later detection."""
    httpclient.close_idle_connections()


def new_cloudflare_doh() -> Provider:
    """Query whoami.cloudflare. over Cloudflare's DNS over HTTPS."""
    param = DNSOverHTTPSParam(
        "https://cloudflare-dns.com/dns-query", "whoami.cloudflare.", dns.rdataclass.CH
    )
    return DNSOverHTTPS("cloudflare.doh", {IPFamily.IP4: param, IPFamily.IP6: param})


def new_cloudflare_trace() -> Provider:
    """Parse Cloudflare's trace page."""
    return new_cloudflare_trace_custom("https://api.cloudflare.com/cdn-cgi/trace")


def new_cloudflare_trace_custom(url: str) -> Provider:
    """Parse a trace page at a specific URL."""
    param = RegexpParam(url, _FIELD_IP)
    return Regexp("cloudflare.trace", {IPFamily.IP4: param, IPFamily.IP6: param})


def new_debug_const(ppfmt: PrettyPrinter, raw: str) -> Provider | None:
    """A provider that always gives the given address; None after reporting if unparsable."""
    try:
        ip = ipaddress.ip_address(raw)
    except ValueError:
        ppfmt.notice(
            Emoji.USER_ERROR,
            f'Failed to parse the IP address {json.dumps(raw, ensure_ascii=False)} following "const:"',
        )
        return None
    return Const(f"debug.const:{ip}", ip)


def must_new_debug_const(raw: str) -> Provider:
    """Like new_debug_const, but raise ValueError on failure."""
    buf = io.StringIO()
    provider = new_debug_const(new_default(buf), raw)
    if provider is None:
        raise ValueError(buf.getvalue())
    return provider


def _check_escapes(text: str) -> None:
    pos = text.find("%")
    while pos != -1:
        if len(text) < pos + 3 or not set(text[pos + 1 : pos + 3]) <= _HEX_DIGITS:
            raise ValueError(f"invalid URL escape {text[pos : pos + 3]!r}")
        pos = text.find("%", pos + 3)


def _parse_url(raw: str):
    if any(ord(ch) < 0x20 or ord(ch) == 0x7F for ch in raw):
        raise ValueError("invalid control character in URL")
    if raw.startswith(":"):
        raise ValueError("missing protocol scheme")
    _check_escapes(raw.partition("#")[0])
    parts = urlsplit(raw)
    _ = parts.port
    return parts


def new_custom_url(ppfmt: PrettyPrinter, raw_url: str) -> Provider | None:
    """A provider using the whole body of the page at the URL; None after reporting if invalid."""
    try:
        parts = _parse_url(raw_url)
    except ValueError:
        ppfmt.notice(Emoji.USER_ERROR, "Failed to parse the provider url:(redacted)")
        return None

    opaque = bool(parts.scheme) and not raw_url[len(parts.scheme) + 1 :].startswith("/")
    host = parts.netloc.rpartition("@")[2]
    if not parts.scheme or opaque or not host:
        ppfmt.notice(Emoji.USER_ERROR, "The provider url:(redacted) does not contain a valid URL")
        return None

    match parts.scheme:
        case "http":
            ppfmt.notice(
                Emoji.USER_WARNING,
                "The provider url:(redacted) uses HTTP; consider using HTTPS instead",
            )
        case "https":
            pass
        case _:
            ppfmt.notice(Emoji.USER_ERROR, "The provider url:(redacted) only supports HTTP and HTTPS")
            return None

    return HTTP("url:(redacted)", {IPFamily.IP4: raw_url, IPFamily.IP6: raw_url})


def must_new_custom_url(raw_url: str) -> Provider:
    """Like new_custom_url, but raise ValueError on failure."""
    buf = io.StringIO()
    provider = new_custom_url(new_default(buf), raw_url)
    if provider is None:
        raise ValueError(buf.getvalue())
    return provider


def new_ipify() -> Provider:
    """Use the ipify service."""
    return HTTP(
        "ipify",
        {IPFamily.IP4: "https://api4.ipify.org", IPFamily.IP6: "https://api6.ipify.org"},
    )


def new_local() -> Provider:
    """Use the local address towards Cloudflare (no packets are sent)."""
    return LocalAuto("local", "api.cloudflare.com:443")


def new_local_with_interface(iface: str) -> Provider:
    """Use an address assigned to the named network interface."""
    return LocalWithInterface(f"local.iface:{iface}", iface)