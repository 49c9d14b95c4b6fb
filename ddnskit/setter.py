"""Updating DNS records and WAF lists through an API handle, reusing existing records when possible."""

from __future__ import annotations

import ipaddress
import threading
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Any, Protocol

from ddnskit.family import IPAddress, IPFamily
from ddnskit.pp import Emoji, PrettyPrinter

IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network

WAF_LIST_MAX_PREFIX_LEN: Mapping[IPFamily, int] = {IPFamily.IP4: 32, IPFamily.IP6: 64}
"""The prefix length used when adding a detected address to a WAF list."""


class ResponseCode(IntEnum):
    """The minimum information needed to report an update to monitors and notifiers."""

    NOOP = 0
    """Nothing needed changing."""
    UPDATED = 1
    """The records (or list) were updated or deleted."""
    UPDATING = 2
    """An update or deletion was started asynchronously."""
    FAILED = 3
    """The update or deletion could not be finished."""


class DeletionMode(Enum):
    """Why a DNS record is being deleted."""

    REGULAR = "regular"
    FINAL = "final"


@dataclass(frozen=True)
class Record:
    """A DNS record as listed by the API handle."""

    id: str
    ip: IPAddress | None
    params: Any = None


class _Describable(Protocol):
    def describe(self) -> str: ...


class _WAFListItem(Protocol):
    prefix: IPNetwork
    id: str


class _Handle(Protocol):
    def list_records(
        self, ppfmt: PrettyPrinter, family: IPFamily, domain: Any, expected_params: Any
    ) -> tuple[Sequence[Record], bool] | None: ...

    def update_record(
        self,
        ppfmt: PrettyPrinter,
        family: IPFamily,
        domain: Any,
        record_id: str,
        ip: IPAddress,
        current_params: Any,
        expected_params: Any,
    ) -> bool: ...

    def create_record(
        self, ppfmt: PrettyPrinter, family: IPFamily, domain: Any, ip: IPAddress, expected_params: Any
    ) -> str | None: ...

    def delete_record(
        self, ppfmt: PrettyPrinter, family: IPFamily, domain: Any, record_id: str, mode: DeletionMode
    ) -> bool: ...

    def list_waf_list_items(
        self, ppfmt: PrettyPrinter, waf_list: Any, list_description: str
    ) -> tuple[Sequence[_WAFListItem], bool, bool] | None: ...

    def create_waf_list_items(
        self,
        ppfmt: PrettyPrinter,
        waf_list: Any,
        list_description: str,
        prefixes: list[IPNetwork],
        item_comment: str,
    ) -> bool: ...

    def delete_waf_list_items(
        self, ppfmt: PrettyPrinter, waf_list: Any, list_description: str, ids: list[str]
    ) -> bool: ...

    def final_clear_waf_list_async(
        self, ppfmt: PrettyPrinter, waf_list: Any, list_description: str
    ) -> bool | None: ...


def _cancelled(cancel: threading.Event | None) -> bool:
    return cancel is not None and cancel.is_set()


def _without_scope(ip: IPAddress) -> IPAddress:
    return ipaddress.ip_address(ip.packed)


def _describe_prefix(prefix: IPNetwork) -> str:
    if prefix.prefixlen == prefix.max_prefixlen:
        return str(prefix.network_address)
    return str(prefix)


class Setter:
    """Uses an API handle to bring DNS records and WAF lists up to date.

    The handle's list_records returns (records, cached) or None on failure;
    create_record returns the new ID or None; list_waf_list_items returns
    (items, already_existing, cached) or None; final_clear_waf_list_async
    returns True if the list was deleted, False if clearing was started, or
    None on failure. The other methods return whether they succeeded.
    """

    def __init__(self, handle: _Handle) -> None:
        self.handle = handle

    def set(
        self,
        ppfmt: PrettyPrinter,
        family: IPFamily,
        domain: _Describable,
        ip: IPAddress,
        expected_params: Any,
        cancel: threading.Event | None = None,
    ) -> ResponseCode:
        """Make the domain's records of the family point to ip, and to nothing else."""
        record_type = family.record_type()
        domain_description = domain.describe()
        failure = (
            f"Failed to properly update {record_type} records of {domain_description}; "
            "records might be inconsistent"
        )

        listed = self.handle.list_records(ppfmt, family, domain, expected_params)
        if listed is None:
            return ResponseCode.FAILED
        records, cached = listed

        matched = [r for r in records if r.ip == ip]
        stale = [r for r in records if r.ip != ip]
        duplicates: list[Record] = []

        if matched:
            duplicates = matched[1:]
            if not duplicates and not stale:
                suffix = " (cached)" if cached else ""
                ppfmt.info(
                    Emoji.ALREADY_DONE,
                    f"The {record_type} records of {domain_description} are already up to date{suffix}",
                )
                return ResponseCode.NOOP
        elif stale:
            # Recycling a stale record keeps its other attributes.
            first = stale.pop(0)
            if not self.handle.update_record(
                ppfmt, family, domain, first.id, ip, first.params, expected_params
            ):
                ppfmt.notice(Emoji.ERROR, failure)
                return ResponseCode.FAILED
            ppfmt.notice(
                Emoji.UPDATE,
                f"Updated a stale {record_type} record of {domain_description} (ID: {first.id})",
            )
        else:
            new_id = self.handle.create_record(ppfmt, family, domain, ip, expected_params)
            if new_id is None:
                ppfmt.notice(Emoji.ERROR, failure)
                return ResponseCode.FAILED
            ppfmt.notice(
                Emoji.CREATION,
                f"Added a new {record_type} record of {domain_description} (ID: {new_id})",
            )

        for record in stale:
            if not self.handle.delete_record(ppfmt, family, domain, record.id, DeletionMode.REGULAR):
                ppfmt.notice(Emoji.ERROR, failure)
                return ResponseCode.FAILED
            ppfmt.notice(
                Emoji.DELETION,
                f"Deleted a stale {record_type} record of {domain_description} (ID: {record.id})",
            )

        # Duplicates are harmless, so failing to delete them is not an error.
        for record in duplicates:
            if self.handle.delete_record(ppfmt, family, domain, record.id, DeletionMode.REGULAR):
                ppfmt.notice(
                    Emoji.DELETION,
                    f"Deleted a duplicate {record_type} record of {domain_description} (ID: {record.id})",
                )
            if _cancelled(cancel):
                return ResponseCode.UPDATED

        return ResponseCode.UPDATED

    def final_delete(
        self,
        ppfmt: PrettyPrinter,
        family: IPFamily,
        domain: _Describable,
        expected_params: Any,
        cancel: threading.Event | None = None,
    ) -> ResponseCode:
        """Delete all managed records of the family for the domain."""
        record_type = family.record_type()
        domain_description = domain.describe()

        listed = self.handle.list_records(ppfmt, family, domain, expected_params)
        if listed is None:
            return ResponseCode.FAILED
        records, cached = listed

        ids = [record.id for record in records]
        if not ids:
            suffix = " (cached)" if cached else ""
            ppfmt.info(
                Emoji.ALREADY_DONE,
                f"The {record_type} records of {domain_description} were already deleted{suffix}",
            )
            return ResponseCode.NOOP

        all_ok = True
        for record_id in ids:
            if not self.handle.delete_record(ppfmt, family, domain, record_id, DeletionMode.FINAL):
                all_ok = False
                if _cancelled(cancel):
                    ppfmt.info(
                        Emoji.TIMEOUT,
                        f"Deletion of {record_type} records of {domain_description} aborted by "
                        "timeout or signals; records might be inconsistent",
                    )
                    return ResponseCode.FAILED
                continue
            ppfmt.notice(
                Emoji.DELETION,
                f"Deleted a stale {record_type} record of {domain_description} (ID: {record_id})",
            )

        if not all_ok:
            ppfmt.notice(
                Emoji.ERROR,
                f"Failed to properly delete {record_type} records of {domain_description}; "
                "records might be inconsistent",
            )
            return ResponseCode.FAILED

        return ResponseCode.UPDATED

    def set_waf_list(
        self,
        ppfmt: PrettyPrinter,
        waf_list: _Describable,
        list_description: str,
        detected: Mapping[IPFamily, IPAddress | None],
        item_comment: str,
    ) -> ResponseCode:
        """Keep only items covering detected addresses and make sure each one is covered.

        A family mapped to None means detection was attempted but failed, so its
        existing items are preserved.
        """
        listed = self.handle.list_waf_list_items(ppfmt, waf_list, list_description)
        if listed is None:
            return ResponseCode.FAILED
        items, already_existing, cached = listed
        described = waf_list.describe()
        if not already_existing:
            ppfmt.notice(Emoji.CREATION, f"Created a new list {described}")

        to_delete: list[_WAFListItem] = []
        to_create: list[IPNetwork] = []
        for family in IPFamily:
            managed = family in detected
            ip = detected.get(family)
            if ip is not None:
                ip = _without_scope(ip)
            covered = False
            for item in items:
                if not family.matches(item.prefix.network_address):
                    continue
                if ip is not None and ip in item.prefix:
                    covered = True
                elif managed and ip is None:
                    pass  # detection failed; keep what is there
                else:
                    to_delete.append(item)
            if not covered and ip is not None:
                to_create.append(
                    ipaddress.ip_network(f"{ip}/{WAF_LIST_MAX_PREFIX_LEN[family]}", strict=False)
                )

        if not to_create and not to_delete:
            suffix = " (cached)" if cached else ""
            ppfmt.info(Emoji.ALREADY_DONE, f"The list {described} is already up to date{suffix}")
            return ResponseCode.NOOP

        failure = f"Failed to properly update the list {described}; its content may be inconsistent"

        if not self.handle.create_waf_list_items(ppfmt, waf_list, list_description, to_create, item_comment):
            ppfmt.notice(Emoji.ERROR, failure)
            return ResponseCode.FAILED
        for prefix in to_create:
            ppfmt.notice(Emoji.CREATION, f"Added {_describe_prefix(prefix)} to the list {described}")

        ids = [item.id for item in to_delete]
        if not self.handle.delete_waf_list_items(ppfmt, waf_list, list_description, ids):
            ppfmt.notice(Emoji.ERROR, failure)
            return ResponseCode.FAILED
        for item in to_delete:
            ppfmt.notice(Emoji.DELETION, f"Deleted {_describe_prefix(item.prefix)} from the list {described}")

        return ResponseCode.UPDATED

    def final_clear_waf_list(
        self, ppfmt: PrettyPrinter, waf_list: _Describable, list_description: str
    ) -> ResponseCode:
        """Delete the list, or start clearing it if it cannot be deleted."""
        deleted = self.handle.final_clear_waf_list_async(ppfmt, waf_list, list_description)
        if deleted is None:
            return ResponseCode.FAILED
        described = waf_list.describe()
        if deleted:
            ppfmt.notice(Emoji.DELETION, f"The list {described} was deleted")
            return ResponseCode.UPDATED
        ppfmt.notice(Emoji.CLEAR, f"The list {described} is being cleared (asynchronously)")
        return ResponseCode.UPDATING