import io
import ipaddress
import threading
from dataclasses import dataclass

import pytest

from ddnskit.family import IPFamily
from ddnskit.pp import PrettyPrinter, Verbosity
from ddnskit.setter import DeletionMode, Record, ResponseCode, Setter

FAMILY = IPFamily.IP6
IP1 = ipaddress.ip_address("::1")
IP2 = ipaddress.ip_address("::2")
PARAMS = {"ttl": 1, "proxied": False, "comment": "hello"}
LIST_DESCRIPTION = "My List"


class Domain:
    def describe(self):
        return "sub.test.org"


class WAFList:
    def describe(self):
        return "account/list"


@dataclass(frozen=True)
class Item:
    prefix: ipaddress.IPv4Network | ipaddress.IPv6Network
    id: str


def item(prefix, item_id):
    return Item(ipaddress.ip_network(prefix), item_id)


PREFIX4 = item("10.0.0.1/32", "pre4")
PREFIX6 = item("2001:db8::/64", "pre6")
RANGE4_1 = item("10.0.0.0/16", "ip4-16")
RANGE4_2 = item("10.0.0.0/20", "ip4-20")
RANGE4_3 = item("10.0.0.0/24", "ip4-24")
WRONG4_1 = item("20.0.0.0/16", "ip4-16")
WRONG4_2 = item("20.0.0.0/20", "ip4-20")
WRONG4_3 = item("20.0.0.0/24", "ip4-24")
RANGE6_1 = item("2001:db8::/32", "ip6-32")
RANGE6_2 = item("2001:db8::/40", "ip6-40")
RANGE6_3 = item("2001:db8::/48", "ip6-48")
WRONG6_1 = item("4001:db8::/32", "ip6-32")
WRONG6_2 = item("4001:db8::/40", "ip6-40")
WRONG6_3 = item("4001:db8::/48", "ip6-48")

IP4 = ipaddress.ip_address("10.0.0.1")
IP6 = ipaddress.ip_address("2001:db8::1111")


class FakeHandle:
    def __init__(
        self,
        *,
        listed=None,
        update_ok=True,
        created=None,
        deletes=None,
        cancel=None,
        waf_listed=None,
        waf_create_ok=True,
        waf_delete_ok=True,
        cleared=None,
    ):
        self.listed = listed
        self.update_ok = update_ok
        self.created = created
        self.deletes = deletes or {}
        self.cancel = cancel
        self.waf_listed = waf_listed
        self.waf_create_ok = waf_create_ok
        self.waf_delete_ok = waf_delete_ok
        self.cleared = cleared
        self.calls = []

    def list_records(self, ppfmt, family, domain, expected_params):
        self.calls.append(("list", family, expected_params))
        return self.listed

    def update_record(self, ppfmt, family, domain, record_id, ip, current_params, expected_params):
        self.calls.append(("update", record_id, ip))
        return self.update_ok

    def create_record(self, ppfmt, family, domain, ip, expected_params):
        self.calls.append(("create", ip))
        return self.created

    def delete_record(self, ppfmt, family, domain, record_id, mode):
        self.calls.append(("delete", record_id, mode))
        result = self.deletes.get(record_id, True)
        if result == "cancel":
            self.cancel.set()
            return False
        return result

    def list_waf_list_items(self, ppfmt, waf_list, list_description):
        self.calls.append(("waf_list", list_description))
        return self.waf_listed

    def create_waf_list_items(self, ppfmt, waf_list, list_description, prefixes, item_comment):
        self.calls.append(("waf_create", list(prefixes), item_comment))
        return self.waf_create_ok

    def delete_waf_list_items(self, ppfmt, waf_list, list_description, ids):
        self.calls.append(("waf_delete", sorted(ids)))
        return self.waf_delete_ok

    def final_clear_waf_list_async(self, ppfmt, waf_list, list_description):
        self.calls.append(("waf_clear", list_description))
        return self.cleared


def printer():
    buf = io.StringIO()
    return buf, PrettyPrinter(buf, True, Verbosity.INFO)


def lines(buf):
    return buf.getvalue().splitlines()


def rec(record_id, ip):
    return Record(record_id, ip, PARAMS)


FAILED_UPDATE = "😞 Failed to properly update AAAA records of sub.test.org; records might be inconsistent"


def run_set(handle, cancel):
    buf, pp = printer()
    resp = Setter(handle).set(pp, FAMILY, Domain(), IP1, PARAMS, cancel)
    return resp, lines(buf)


def test_set_creates_when_empty():
    handle = FakeHandle(listed=([], True), created="record1")
    resp, out = run_set(handle, threading.Event())
    assert resp is ResponseCode.UPDATED
    assert out == ["🐣 Added a new AAAA record of sub.test.org (ID: record1)"]
    assert handle.calls == [("list", FAMILY, PARAMS), ("create", IP1)]


def test_set_create_fail():
    handle = FakeHandle(listed=([], True), created=None)
    resp, out = run_set(handle, threading.Event())
    assert resp is ResponseCode.FAILED
    assert out == [FAILED_UPDATE]


def test_set_updates_one_unmatched():
    handle = FakeHandle(listed=([rec("record1", IP2)], True))
    resp, out = run_set(handle, threading.Event())
    assert resp is ResponseCode.UPDATED
    assert out == ["📡 Updated a stale AAAA record of sub.test.org (ID: record1)"]
    assert handle.calls[1:] == [("update", "record1", IP1)]


def test_set_update_fail():
    handle = FakeHandle(listed=([rec("record1", IP2)], True), update_ok=False)
    resp, out = run_set(handle, threading.Event())
    assert resp is ResponseCode.FAILED
    assert out == [FAILED_UPDATE]


@pytest.mark.parametrize(
    ("cached", "expected"),
    [
        (True, "🤷 The AAAA records of sub.test.org are already up to date (cached)"),
        (False, "🤷 The AAAA records of sub.test.org are already up to date"),
    ],
)
def test_set_one_matched_is_noop(cached, expected):
    handle = FakeHandle(listed=([rec("record1", IP1)], cached))
    resp, out = run_set(handle, threading.Event())
    assert resp is ResponseCode.NOOP
    assert out == [expected]
    assert len(handle.calls) == 1


@pytest.mark.parametrize(
    ("deletes", "expected"),
    [
        ({}, ["record2", "record3"]),
        ({"record2": False}, ["record3"]),
        ({"record3": False}, ["record2"]),
    ],
)
def test_set_deletes_duplicates(deletes, expected):
    records = [rec("record1", IP1), rec("record2", IP1), rec("record3", IP1)]
    handle = FakeHandle(listed=(records, True), deletes=deletes)
    resp, out = run_set(handle, threading.Event())
    assert resp is ResponseCode.UPDATED
    assert out == [f"💀 Deleted a duplicate AAAA record of sub.test.org (ID: {r})" for r in expected]
    assert [c[1] for c in handle.calls if c[0] == "delete"] == ["record2", "record3"]
    assert all(c[2] is DeletionMode.REGULAR for c in handle.calls if c[0] == "delete")


def test_set_duplicate_delete_timeout():
    cancel = threading.Event()
    records = [rec("record1", IP1), rec("record2", IP1)]
    handle = FakeHandle(listed=(records, True), deletes={"record2": "cancel"}, cancel=cancel)
    resp, out = run_set(handle, cancel)
    assert resp is ResponseCode.UPDATED
    assert out == []


def test_set_two_unmatched():
    records = [rec("record1", IP2), rec("record2", IP2)]
    handle = FakeHandle(listed=(records, True))
    resp, out = run_set(handle, threading.Event())
    assert resp is ResponseCode.UPDATED
    assert out == [
        "📡 Updated a stale AAAA record of sub.test.org (ID: record1)",
        "💀 Deleted a stale AAAA record of sub.test.org (ID: record2)",
    ]


def test_set_two_unmatched_delete_timeout():
    cancel = threading.Event()
    records = [rec("record1", IP2), rec("record2", IP2)]
    handle = FakeHandle(listed=(records, True), deletes={"record2": "cancel"}, cancel=cancel)
    resp, out = run_set(handle, cancel)
    assert resp is ResponseCode.FAILED
    assert out == ["📡 Updated a stale AAAA record of sub.test.org (ID: record1)", FAILED_UPDATE]


def test_set_two_unmatched_update_fail():
    records = [rec("record1", IP2), rec("record2", IP2)]
    handle = FakeHandle(listed=(records, True), update_ok=False)
    resp, out = run_set(handle, threading.Event())
    assert resp is ResponseCode.FAILED
    assert out == [FAILED_UPDATE]
    assert not any(c[0] == "delete" for c in handle.calls)


def test_set_list_fail():
    handle = FakeHandle(listed=None)
    resp, out = run_set(handle, threading.Event())
    assert resp is ResponseCode.FAILED
    assert out == []


def run_final_delete(handle, cancel):
    buf, pp = printer()
    resp = Setter(handle).final_delete(pp, FAMILY, Domain(), PARAMS, cancel)
    return resp, lines(buf)


@pytest.mark.parametrize(
    ("cached", "expected"),
    [
        (True, "🤷 The AAAA records of sub.test.org were already deleted (cached)"),
        (False, "🤷 The AAAA records of sub.test.org were already deleted"),
    ],
)
def test_final_delete_nothing(cached, expected):
    resp, out = run_final_delete(FakeHandle(listed=([], cached)), threading.Event())
    assert resp is ResponseCode.NOOP
    assert out == [expected]


def test_final_delete_one():
    handle = FakeHandle(listed=([rec("record1", IP1)], True))
    resp, out = run_final_delete(handle, threading.Event())
    assert resp is ResponseCode.UPDATED
    assert out == ["💀 Deleted a stale AAAA record of sub.test.org (ID: record1)"]
    assert handle.calls[1] == ("delete", "record1", DeletionMode.FINAL)


def test_final_delete_fail():
    handle = FakeHandle(listed=([rec("record1", IP1)], True), deletes={"record1": False})
    resp, out = run_final_delete(handle, threading.Event())
    assert resp is ResponseCode.FAILED
    assert out == [
        "😞 Failed to properly delete AAAA records of sub.test.org; records might be inconsistent"
    ]


def test_final_delete_timeout():
    cancel = threading.Event()
    handle = FakeHandle(listed=([rec("record1", IP1)], True), deletes={"record1": "cancel"}, cancel=cancel)
    resp, out = run_final_delete(handle, cancel)
    assert resp is ResponseCode.FAILED
    assert out == [
        "⌛ Deletion of AAAA records of sub.test.org aborted by timeout or signals; "
        "records might be inconsistent"
    ]


def test_final_delete_impossible_records():
    handle = FakeHandle(listed=([rec("record1", IP1), rec("record2", None)], True))
    resp, out = run_final_delete(handle, threading.Event())
    assert resp is ResponseCode.UPDATED
    assert out == [
        "💀 Deleted a stale AAAA record of sub.test.org (ID: record1)",
        "💀 Deleted a stale AAAA record of sub.test.org (ID: record2)",
    ]


def test_final_delete_list_fail():
    resp, out = run_final_delete(FakeHandle(listed=None), threading.Event())
    assert resp is ResponseCode.FAILED
    assert out == []


def run_waf(handle, detected):
    buf, pp = printer()
    resp = Setter(handle).set_waf_list(pp, WAFList(), LIST_DESCRIPTION, detected, "")
    return resp, lines(buf)


BOTH = {IPFamily.IP4: IP4, IPFamily.IP6: IP6}
WRONG_IDS = sorted(
    [WRONG4_2.id, WRONG6_2.id, WRONG6_3.id, WRONG4_3.id, WRONG4_1.id, WRONG6_1.id]
)
DELETION_LINES = [
    f"💀 Deleted {p} from the list account/list"
    for p in ["20.0.0.0/20", "20.0.0.0/24", "20.0.0.0/16", "4001:db8::/40", "4001:db8::/48", "4001:db8::/32"]
]
MIXED = [
    RANGE6_1, WRONG4_2, RANGE6_2, RANGE6_3, RANGE4_2, RANGE4_3,
    WRONG6_2, WRONG6_3, WRONG4_3, RANGE4_1, WRONG4_1, WRONG6_1,
]
WRONG_ONLY = [WRONG4_2, WRONG6_2, WRONG6_3, WRONG4_3, WRONG4_1, WRONG6_1]


def test_waf_created():
    handle = FakeHandle(waf_listed=([], False, False))
    resp, out = run_waf(handle, BOTH)
    assert resp is ResponseCode.UPDATED
    assert out == [
        "🐣 Created a new list account/list",
        "🐣 Added 10.0.0.1 to the list account/list",
        "🐣 Added 2001:db8::/64 to the list account/list",
    ]
    assert handle.calls[1] == ("waf_create", [PREFIX4.prefix, PREFIX6.prefix], "")
    assert handle.calls[2] == ("waf_delete", [])


def test_waf_list_fail():
    resp, out = run_waf(FakeHandle(waf_listed=None), BOTH)
    assert resp is ResponseCode.FAILED
    assert out == []


def test_waf_skip_unknown():
    items = [WRONG4_2, RANGE6_1, WRONG4_1, WRONG4_3]
    handle = FakeHandle(waf_listed=(items, True, True))
    resp, out = run_waf(handle, {IPFamily.IP4: None, IPFamily.IP6: IP6})
    assert resp is ResponseCode.NOOP
    assert out == ["🤷 The list account/list is already up to date (cached)"]


@pytest.mark.parametrize(
    ("cached", "expected"),
    [
        (False, "🤷 The list account/list is already up to date"),
        (True, "🤷 The list account/list is already up to date (cached)"),
    ],
)
def test_waf_noop(cached, expected):
    handle = FakeHandle(waf_listed=([PREFIX4, PREFIX6], True, cached))
    resp, out = run_waf(handle, BOTH)
    assert resp is ResponseCode.NOOP
    assert out == [expected]


def test_waf_deletes_wrong_items():
    handle = FakeHandle(waf_listed=(MIXED, True, False))
    resp, out = run_waf(handle, BOTH)
    assert resp is ResponseCode.UPDATED
    assert handle.calls[1] == ("waf_create", [], "")
    assert handle.calls[2] == ("waf_delete", WRONG_IDS)
    assert out == DELETION_LINES


def test_waf_creates_and_deletes():
    handle = FakeHandle(waf_listed=(WRONG_ONLY, True, False))
    resp, out = run_waf(handle, BOTH)
    assert resp is ResponseCode.UPDATED
    assert handle.calls[1] == ("waf_create", [PREFIX4.prefix, PREFIX6.prefix], "")
    assert handle.calls[2] == ("waf_delete", WRONG_IDS)
    assert out == [
        "🐣 Added 10.0.0.1 to the list account/list",
        "🐣 Added 2001:db8::/64 to the list account/list",
        *DELETION_LINES,
    ]


WAF_FAILURE = "😞 Failed to properly update the list account/list; its content may be inconsistent"


def test_waf_create_fail():
    handle = FakeHandle(waf_listed=([], True, False), waf_create_ok=False)
    resp, out = run_waf(handle, BOTH)
    assert resp is ResponseCode.FAILED
    assert out == [WAF_FAILURE]
    assert not any(c[0] == "waf_delete" for c in handle.calls)


def test_waf_delete_fail():
    handle = FakeHandle(waf_listed=(MIXED, True, False), waf_delete_ok=False)
    resp, out = run_waf(handle, BOTH)
    assert resp is ResponseCode.FAILED
    assert out == [WAF_FAILURE]


@pytest.mark.parametrize(
    ("cleared", "code", "expected"),
    [
        (True, ResponseCode.UPDATED, ["💀 The list account/list was deleted"]),
        (False, ResponseCode.UPDATING, ["🧹 The list account/list is being cleared (asynchronously)"]),
        (None, ResponseCode.FAILED, []),
    ],
)
def test_final_clear_waf_list(cleared, code, expected):
    buf, pp = printer()
    handle = FakeHandle(cleared=cleared)
    resp = Setter(handle).final_clear_waf_list(pp, WAFList(), LIST_DESCRIPTION)
    assert resp is code
    assert lines(buf) == expected
    assert handle.calls == [("waf_clear", LIST_DESCRIPTION)]