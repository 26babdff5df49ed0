# telemetrykit

A small toolkit for application telemetry that depends only on the standard library:

- **Metrics** (`telemetrykit.metrics`, `telemetrykit.units`,
  `telemetrykit.normalization`): counters, distributions, sets and gauges,
  with units and tags, encoded in an extended StatsD line format.
- **Aggregation** (`telemetrykit.aggregator`): metrics are grouped into
  10-second buckets and flushed to a transport from a background thread.
- **Tracing** (`telemetrykit.tracecontext`, `telemetrykit.spans`): trace and
  span identifiers, parsing and formatting of the `sentry-trace` header,
  transaction contexts, sampling decisions, transactions and spans.
- **Sessions** (`telemetrykit.session`): release-health sessions, which a
  background flusher either sends one by one or aggregates per minute.
- **Transports** (`telemetrykit.transport`): envelopes, a minimal transport
  interface, and `CapturingTransport`, which keeps envelopes in memory.

## Installation

```
pip install telemetrykit
```

For running the tests, install the `test` extra (`pip install telemetrykit[test]`).

## Metrics

```python
from telemetrykit.metrics import count, distribution, timing, parse_statsd
from telemetrykit.units import InformationUnit

metric = count("requests").with_tag("method", "GET").with_time(1700000000).finish()
print(metric.to_statsd())
# requests@none:1|c|#method:GET|T1700000000

size = distribution("request.size", 47.2).with_unit(InformationUnit.BYTE).finish()
latency = timing("request.duration", 0.017).with_tag("status_code", "200").finish()

parsed = parse_statsd("cache.size@byte:42|g|#region:eu")
```

The builders are `build(name, value)`, `incr`, `count`, `timing` (which takes
seconds or a `timedelta` and sets the unit to `second`), `distribution`,
`set_metric` and `gauge`. Set members are stored as the CRC32 hash of their
string (`hash_set_value`). `MetricBuilder` has `with_unit`, `with_tag`,
`with_tags`, `with_time` (which takes a `datetime` or seconds since the epoch)
and `finish`. If no time is set, the current time is used when the metric
is rendered.

`parse_statsd` reads `name[@unit]:value|type[|#key:value,...]`. It accepts
the type aliases `m`, `h` and `ms`, and it keeps only the first field of a
gauge written as `last:min:max:sum:count`. It raises `ParseMetricError`, a
`ValueError`, for input it cannot read. `Metric.to_envelope()` wraps the
line in an `Envelope` as a single `"statsd"` item of bytes.

Names, units and tags are normalized before they are written out. Names keep
only `[a-zA-Z0-9_.-]`, with any other character replaced by `_`, and are cut
to 150 characters. Units keep only `[a-zA-Z0-9_]` and are cut to 15
characters; if nothing is left, the unit is written as `none`. Tag keys keep
only `[a-zA-Z0-9_./-]` and are cut to 32 characters. Tag values are cut to 200
characters: tabs, newlines, carriage returns, backslashes, `|` and `,` are
escaped, and other control characters are dropped. A tag whose key or value
ends up empty is left out. Tags are written sorted by key.

### Aggregating

`MetricAggregator` groups metrics into 10-second windows. Metrics of the same
type, name, unit and tags are merged: counters are added up, distributions
collect their values, sets keep the unique values, and gauges keep
last/min/max/sum/count (`GaugeSummary`). A background thread sends the closed
windows about every five seconds. Everything pending is also sent early once
the buffered weight grows past 100,000 values, when `flush()` is called, and
when the aggregator is closed. Calling `add` after `close` raises `RuntimeError`.

```python
from telemetrykit.aggregator import MetricAggregator
from telemetrykit.metrics import gauge
from telemetrykit.transport import CapturingTransport

transport = CapturingTransport()
with MetricAggregator(transport, release="myapp@1.0.0") as aggregator:
    aggregator.add(gauge("cache.size", 42.0).finish())

for envelope in transport.fetch_and_clear_envelopes():
    for kind, payload in envelope.items():
        print(kind, payload.decode())
# statsd cache.size@none:42:42:42:42:1|g|#environment:production,release:myapp@1.0.0|T...
```

The default tags, built by `get_default_tags(release, environment)`, are
`release` (when one is given) and `environment`, which is `production` when
none or an empty one is given. They are added to every line unless the
metric sets that tag itself.

## Tracing

```python
from telemetrykit.tracecontext import continue_from_headers
from telemetrykit.spans import start_transaction

ctx = continue_from_headers(
    "checkout", "http.server",
    [("sentry-trace", "09e04486820349518ac7b5d2adbf6ba5-9cf635fa5b870b3a-1")],
)
transaction = start_transaction(ctx)
span = transaction.start_child("db.query", "SELECT 1")
outgoing = dict(span.iter_headers())
span.finish()
transaction.finish()
```

`continue_from_headers` accepts a mapping or a sequence of pairs. Header names
are matched case-insensitively, and the last `sentry-trace` header wins. A
malformed header starts a new trace. `parse_sentry_trace` returns `None` for
malformed input, and `TraceId.parse` and `SpanId.parse` raise `ValueError`.
`TransactionContext.custom_insert` stores data for a traces sampler to inspect.
`continue_from_span` builds a context that continues the trace of a running
transaction or span.

`start_transaction(ctx, transport=None, traces_sample_rate=0.0,
traces_sampler=None)` decides on sampling in one of two ways. Without a
transport, the context's own decision is used and nothing is ever sent. With
a transport, the rate comes from `transaction_sample_rate`: the sampler if
one is given, otherwise 1.0 or 0.0 from the context's explicit decision,
otherwise `traces_sample_rate`.

A sampled transaction sends itself, together with its finished child spans,
as a `"transaction"` envelope item when `finish()` is called. After it holds
more than 1,000 spans, further finished spans are not recorded. A span counts
only its first `finish()`. `Span.set_request` copies the method, URL, body
(decoded as JSON when possible), query string, cookies, headers and
environment of a request mapping into the span's data. `data()` on a
transaction or span is a context manager that holds the lock and yields the
data mapping.

## Sessions

```python
from telemetrykit.session import Session, SessionFlusher, SessionMode
from telemetrykit.transport import CapturingTransport

transport = CapturingTransport()
with SessionFlusher(transport, SessionMode.REQUEST) as flusher:
    session = Session(flusher, release="myapp@1.0.0")
    session.record_event(is_error=True, is_crash=False)
    session.end()
```

Once a session has left the `OK` status it accepts no more updates. A crash
moves it to `CRASHED`, and `end()` closes it as `EXITED` and enqueues its
final update. In application mode, every update is sent as its own
`"session"` item, with at most 100 items per envelope; a full batch of 100 is
sent right away. In request mode, the first update of a session is counted
instead in per-minute aggregates, keyed by start minute and distinct id, and
sent as a `"sessions"` item. The flusher sends its queue every
`flush_interval` seconds (60 by default) and on `flush()` and `close()`.
Calling `enqueue` after `close` raises `RuntimeError`.

## Transports

Subclass `telemetrykit.transport.Transport` and implement
`send_envelope(envelope)`. By default, `flush(timeout)` reports success, and
`shutdown(timeout)` calls `flush`. An `Envelope` is an ordered list of
`(kind, payload)` pairs, which `items()` returns.

## What it does not do

telemetrykit does not deliver anything over the network. It has no HTTP
transport, no DSN handling and no retry or rate limiting, so you supply a
`Transport` that sends envelopes where they need to go. It has no global
client, hub or scope: metrics, transactions and sessions are handed their
aggregator, transport or flusher explicitly. It does not capture events,
breadcrumbs, logs or crashes, and envelopes are not serialized to a wire
format.