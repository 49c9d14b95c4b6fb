"""Detecting the public address by a TXT query over DNS over HTTPS."""

from __future__ import annotations

import ipaddress
import secrets
from collections.abc import Mapping
from dataclasses import dataclass, field

import dns.exception
import dns.flags
import dns.message
import dns.name
import dns.rcode
import dns.rdataclass
import dns.rdatatype

from ddnskit.family import IPAddress, IPFamily
from ddnskit.httpclient import fetch_ip
from ddnskit.pp import Emoji, PrettyPrinter


def build_dns_query(
    ppfmt: PrettyPrinter, query_id: int, name: str, rdclass: dns.rdataclass.RdataClass
) -> bytes | None:
    """Build a non-recursive TXT query; return its wire form or None after reporting."""
    try:
        if not name.endswith("."):
            raise ValueError(f"name {name!r} is not fully qualified")
        query = dns.message.make_query(
            dns.name.from_text(name), dns.rdatatype.TXT, rdclass, id=query_id, flags=0
        )
        return query.to_wire()
    except (ValueError, dns.exception.DNSException) as err:
        ppfmt.notice(Emoji.ERROR, f"Failed to prepare the DNS query: {err}")
        return None


def _parse_answers(
    ppfmt: PrettyPrinter, message: dns.message.Message, name: str, rdclass: dns.rdataclass.RdataClass
) -> IPAddress | None:
    wanted = dns.name.from_text(name)
    ip_string = ""
    for rrset in message.answer:
        if rrset.name != wanted or rrset.rdtype != dns.rdatatype.TXT or rrset.rdclass != rdclass:
            continue
        for rdata in rrset:
            for raw in rdata.strings:
                text = raw.decode("utf-8", errors="replace").strip()
                if not text:
                    continue
                if ip_string:
                    ppfmt.notice(Emoji.IMPOSSIBLE, "Invalid DNS response: more than one string in TXT records")
                    return None
                ip_string = text

    if not ip_string:
        ppfmt.notice(Emoji.IMPOSSIBLE, "Invalid DNS response: no TXT records or all TXT records are empty")
        return None

    try:
        return ipaddress.ip_address(ip_string)
    except ValueError:
        ppfmt.notice(
            Emoji.IMPOSSIBLE,
            f"Invalid DNS response: failed to parse the IP address in the TXT record: {ip_string}",
        )
        return None


def parse_dns_response(
    ppfmt: PrettyPrinter, data: bytes, query_id: int, name: str, rdclass: dns.rdataclass.RdataClass
) -> IPAddress | None:
    """Check a DNS response and extract the single address from its TXT answers."""
    try:
        message = dns.message.from_wire(data, one_rr_per_rrset=True)
    except dns.exception.DNSException as err:
        ppfmt.notice(Emoji.IMPOSSIBLE, f"Invalid DNS response: {err}")
        return None

    if message.id != query_id:
        ppfmt.notice(Emoji.IMPOSSIBLE, "Invalid DNS response: mismatched transaction ID")
        return None
    if not message.flags & dns.flags.QR:
        ppfmt.notice(Emoji.IMPOSSIBLE, "Invalid DNS response: QR was not set")
        return None
    if message.flags & dns.flags.TC:
        ppfmt.notice(Emoji.IMPOSSIBLE, "Invalid DNS response: TC was set")
        return None
    if message.rcode() != dns.rcode.NOERROR:
        ppfmt.notice(
            Emoji.IMPOSSIBLE,
            f"Invalid DNS response: response code is {dns.rcode.to_text(message.rcode())}",
        )
        return None

    return _parse_answers(ppfmt, message, name, rdclass)


@dataclass(frozen=True)
class DNSOverHTTPSParam:
    """The DoH server, the name to query and the DNS class to query."""

    url: str
    name: str
    rdclass: dns.rdataclass.RdataClass


@dataclass(frozen=True)
class DNSOverHTTPS:
    """A detection protocol using DNS over HTTPS."""

    name: str
    params: Mapping[IPFamily, DNSOverHTTPSParam] = field(default_factory=dict)

    def get_ip(self, ppfmt: PrettyPrinter, family: IPFamily) -> IPAddress | None:
        """Query the family's DoH server and normalize the address it reports."""
        param = self.params.get(family)
        if param is None:
            ppfmt.notice(Emoji.IMPOSSIBLE, f"Unhandled IP network: {family.describe()}")
            return None

        query_id = secrets.randbits(16)
        query = build_dns_query(ppfmt, query_id, param.name, param.rdclass)
        if query is None:
            return None

        ip = fetch_ip(
            ppfmt,
            family,
            param.url,
            lambda pp_, body: parse_dns_response(pp_, body, query_id, param.name, param.rdclass),
            method="POST",
            headers={"Content-Type": "application/dns-message", "Accept": "application/dns-message"},
            body=query,
        )
        if ip is None:
            return None
        return family.normalize_detected_ip(ppfmt, ip)