# ddnskit

Building blocks for a dynamic DNS updater. The package detects the IP
address of the machine, decides which DNS records and WAF list items to
create, update or delete so that they point at it, and reports outcomes to
monitors such as Healthchecks and Uptime Kuma.

## Installation

```
pip install ddnskit
```

For running the test suite:

```
pip install "ddnskit[test]"
pytest
```

## Modules

- `ddnskit.pp`: `PrettyPrinter`, which writes messages to a text stream
  with an emoji prefix, indentation (`indent()`), two verbosity levels
  (`Verbosity.NOTICE`, `Verbosity.INFO`) and once-only messages
  (`info_once`, `notice_once`, `suppress`, keyed by `MessageID`).
  `new_default(writer)` makes one with emojis at the default verbosity.
  Also `Emoji`, and the helpers `join`, `english_join`, `join_map` and
  `english_join_map` (`english_join(["a", "b", "c"])` gives `"a, b, and c"`;
  an empty list gives `"(none)"`).
- `ddnskit.family`: `IPFamily.IP4` and `IPFamily.IP6`, with `describe()`,
  `record_type()` (`"A"` or `"AAAA"`), `matches(ip)` and
  `normalize_detected_ip(ppfmt, ip)`, which rejects missing addresses,
  addresses of the other family and loopback addresses (and unmaps
  IPv4-mapped IPv6 addresses for IPv4).
- `ddnskit.providers`: ready-made detection providers:
  `new_cloudflare_doh()`, `new_cloudflare_trace()`,
  `new_cloudflare_trace_custom(url)`, `new_ipify()`, `new_local()`,
  `new_local_with_interface(iface)`, `new_custom_url(ppfmt, raw_url)` and
  `new_debug_const(ppfmt, raw)`. The last two return `None` after printing
  why the input was rejected; `must_new_custom_url` and
  `must_new_debug_const` raise `ValueError` instead. `provider_name(p)`
  gives a provider's name (`"none"` for `None`), and
  `close_idle_connections()` drops kept-alive connections.
- `ddnskit.protocols` (`Const`, `HTTP`, `Regexp`, `RegexpParam`),
  `ddnskit.doh` (`DNSOverHTTPS`, `DNSOverHTTPSParam`, `build_dns_query`,
  `parse_dns_response`) and `ddnskit.local` (`LocalAuto`,
  `LocalWithInterface`, `select_interface_ip` and friends): the detection
  protocols underneath the providers. Every provider has a `name` and a
  `get_ip(ppfmt, family)` that returns an address or `None`.
- `ddnskit.httpclient`: `FamilyClient`, an HTTP client that connects over
  only one IP family and keeps idle connections; `shared_client(family)`;
  and `fetch_ip`, which requests a URL with retries and hands the body
  (at most 100 KiB) to an extraction function.
- `ddnskit.setter`: `Setter`, which brings the records of one domain in
  line with a detected address (`set`), deletes them (`final_delete`),
  keeps a WAF list covering the detected addresses (`set_waf_list`) or
  deletes/clears it (`final_clear_waf_list`). Each returns a
  `ResponseCode`: `NOOP`, `UPDATED`, `UPDATING` or `FAILED`.
- `ddnskit.monitor`: `Healthchecks` and `UptimeKuma`, created with
  `from_url(ppfmt, raw_url)` (which returns `None` for an invalid URL), and
  `Composed` to drive several monitors at once. Pings carry a `Message`
  (`ok` plus lines); `merge_messages` keeps the lines of the highest
  severity.
- `ddnskit.notifier`: the abstract `Notifier`, its `Message`,
  `merge_messages`, `Composed`, and `describe_shoutrrr_service`, which
  names a notification service from its URL scheme.
- `ddnskit.signals`: `SignalHandle`, a context manager that catches SIGINT
  and SIGTERM; `wait_for_signals_until(ppfmt, deadline)` returns `True` if
  a signal arrived before the deadline (a `datetime`).

## Example

```python
import sys

from ddnskit.family import IPFamily
from ddnskit.pp import Emoji, new_default
from ddnskit.providers import new_cloudflare_trace, provider_name

ppfmt = new_default(sys.stdout)
provider = new_cloudflare_trace()
ip = provider.get_ip(ppfmt, IPFamily.IP4)
if ip is not None:
    ppfmt.notice(Emoji.INTERNET, f"{provider_name(provider)} detected {ip}")
```

Reporting to a Healthchecks check:

```python
from ddnskit.monitor import Healthchecks, Message

monitor = Healthchecks.from_url(ppfmt, "https://hc-ping.example.com/your-check-uuid")
if monitor is not None:
    monitor.start(ppfmt, "starting")
    monitor.ping(ppfmt, Message(ok=True, lines=["updated"]))
```

Monitor URLs are never printed; messages only say "(URL redacted)".

## Using `Setter`

`Setter(handle)` does not talk to any DNS service itself. The handle you
pass supplies the calls it needs:

- `list_records(ppfmt, family, domain, expected_params)` returns
  `(records, cached)` with `records` a sequence of `ddnskit.setter.Record`,
  or `None` on failure;
- `update_record(...)`, `delete_record(...)`, `create_waf_list_items(...)`
  and `delete_waf_list_items(...)` return whether they succeeded;
- `create_record(...)` returns the new record's ID or `None`;
- `list_waf_list_items(...)` returns `(items, already_existing, cached)`
  or `None`, each item having a `prefix` and an `id`;
- `final_clear_waf_list_async(...)` returns `True` if the list was deleted,
  `False` if clearing was started, or `None` on failure.

Domains and WAF lists only need a `describe()` method. `set` and
`final_delete` accept an optional `threading.Event` that, once set, stops
the remaining deletions.

## What this package does not do

- It has no client for a DNS provider's API; the `Setter` handle must be
  supplied by the caller.
- It has no command-line program, configuration reading or update loop;
  it provides the parts such a program is built from.
- `ddnskit.notifier` defines the notifier interface and composition but
  contains no notifier that actually delivers messages to a chat or
  push service.