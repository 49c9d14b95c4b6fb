import io
import itertools

import pytest

from ddnskit.notifier import (
    Composed,
    Message,
    Notifier,
    describe_shoutrrr_service,
    merge_messages,
)
from ddnskit.pp import ISSUE_REPORTING_URL, PrettyPrinter, Verbosity


class FakeNotifier(Notifier):
    def __init__(self, result=True):
        self.result = result
        self.describe_calls = 0
        self.sent = []

    def describe(self):
        self.describe_calls += 1
        yield ("name", "params")

    def send(self, ppfmt, message):
        self.sent.append((ppfmt, message))
        return self.result


def make_pp():
    buf = io.StringIO()
    return buf, PrettyPrinter(buf, True, Verbosity.INFO)


def test_composed_describe_stops_early():
    first = [FakeNotifier() for _ in range(3)]
    second = [FakeNotifier() for _ in range(2)]
    composed = Composed(Composed(*first), Composed(*second))

    taken = list(itertools.islice(composed.describe(), 3))

    assert taken == [("name", "params")] * 3
    assert [n.describe_calls for n in first] == [1, 1, 1]
    assert [n.describe_calls for n in second] == [0, 0]


def test_composed_flattens_and_skips_none():
    a, b, c = FakeNotifier(), FakeNotifier(), FakeNotifier()
    composed = Composed(a, None, Composed(b, Composed(c)))
    assert list(composed) == [a, b, c]


@pytest.mark.parametrize("lines", [(), ("hi",), ("hi", "hey")])
def test_composed_send(lines):
    _, ppfmt = make_pp()
    notifiers = [FakeNotifier() for _ in range(5)]
    message = Message(lines)

    assert Composed(*notifiers).send(ppfmt, message) is True
    for n in notifiers:
        assert n.sent == [(ppfmt, message)]


def test_composed_send_stops_on_failure():
    _, ppfmt = make_pp()
    failing = FakeNotifier(result=False)
    later = FakeNotifier()
    message = Message(("hi",))

    assert Composed(failing, later).send(ppfmt, message) is False
    assert later.sent == []


def test_message_format_and_empty():
    assert Message(("a", "b")).format() == "a b"
    assert Message().is_empty() is True
    assert Message(["x"]).is_empty() is False
    assert Message(["x"]) == Message(("x",))


def test_merge_messages():
    merged = merge_messages(Message(("a",)), Message(), Message(("b", "c")))
    assert merged == Message(("a", "b", "c"))
    assert merge_messages().is_empty() is True


@pytest.mark.parametrize(
    ("proto", "output"),
    [("ifttt", "IFTTT"), ("zulip", "Zulip Chat"), ("generic", "Generic")],
)
def test_describe_known_service(proto, output):
    buf, ppfmt = make_pp()
    assert describe_shoutrrr_service(ppfmt, proto) == output
    assert buf.getvalue() == ""


def test_describe_empty_service():
    buf, ppfmt = make_pp()
    assert describe_shoutrrr_service(ppfmt, "") == ""
    assert buf.getvalue() == (
        f'🤯 Unknown shoutrrr service name ""; please report it at {ISSUE_REPORTING_URL}\n'
    )


def test_describe_unknown_service_is_titled():
    buf, ppfmt = make_pp()
    assert describe_shoutrrr_service(ppfmt, "foo") == "Foo"
    assert '"foo"' in buf.getvalue()