"""Generic detection protocols: a constant, a plain HTTP response, or a regex over a response."""

from __future__ import annotations

import ipaddress
import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, field

from ddnskit.family import IPAddress, IPFamily
from ddnskit.httpclient import fetch_ip
from ddnskit.pp import Emoji, PrettyPrinter


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def _unhandled(ppfmt: PrettyPrinter, family: IPFamily) -> None:
    ppfmt.notice(Emoji.IMPOSSIBLE, f"Unhandled IP network: {family.describe()}")


@dataclass(frozen=True)
class Const:
    """Always gives the same address."""

    name: str
    ip: IPAddress | None

    def get_ip(self, ppfmt: PrettyPrinter, family: IPFamily) -> IPAddress | None:
        """Return the stored address, normalized for the family."""
        return family.normalize_detected_ip(ppfmt, self.ip)


@dataclass(frozen=True)
class HTTP:
    """Uses the whole body of an HTTP response as the address."""

    name: str
    urls: Mapping[IPFamily, str] = field(default_factory=dict)

    def get_ip(self, ppfmt: PrettyPrinter, family: IPFamily) -> IPAddress | None:
        """Fetch the family's URL and parse its body as an address."""
        url = self.urls.get(family)
        if url is None:
            _unhandled(ppfmt, family)
            return None

        def extract(_pp: PrettyPrinter, body: bytes) -> IPAddress | None:
            text = body.decode("utf-8", errors="replace").strip()
            try:
                return ipaddress.ip_address(text)
            except ValueError:
                ppfmt.notice(
                    Emoji.ERROR,
                    f"Failed to parse the IP address in the response of {_quote(url)} ({_quote(text)})",
                )
                return None

        ip = fetch_ip(ppfmt, family, url, extract)
        if ip is None:
            return None
        return family.normalize_detected_ip(ppfmt, ip)


@dataclass(frozen=True)
class RegexpParam:
    """The page to fetch and the pattern whose first group holds the address."""

    url: str
    regexp: re.Pattern[str]


@dataclass(frozen=True)
class Regexp:
    """Extracts the address from an HTTP response with a regular expression."""

    name: str
    params: Mapping[IPFamily, RegexpParam] = field(default_factory=dict)

    def get_ip(self, ppfmt: PrettyPrinter, family: IPFamily) -> IPAddress | None:
        """Fetch the family's page and extract the address with its pattern."""
        param = self.params.get(family)
        if param is None:
            _unhandled(ppfmt, family)
            return None
        url = param.url

        def extract(pp_: PrettyPrinter, body: bytes) -> IPAddress | None:
            text = body.decode("utf-8", errors="replace")
            match = param.regexp.search(text)
            if match is None or param.regexp.groups < 1:
                pp_.notice(
                    Emoji.ERROR,
                    f"Failed to find the IP address in the response of {_quote(url)} ({_quote(text)})",
                )
                return None
            ip_string = match.group(1) or ""
            try:
                return ipaddress.ip_address(ip_string)
            except ValueError:
                pp_.notice(
                    Emoji.ERROR,
                    f"Failed to parse the IP address in the response of {_quote(url)} ({_quote(ip_string)})",
                )
                return None

        ip = fetch_ip(ppfmt, family, url, extract)
        if ip is None:
            return None
        return family.normalize_detected_ip(ppfmt, ip)