# vise

Building blocks for exporting application metrics to Prometheus:

- histogram bucket configurations;
- definitions of label values, label sets and metric groups, with their validation rules;
- metric descriptors;
- translation of OpenMetrics text into the Prometheus dialects;
- an asynchronous exporter that serves metrics over HTTP or pushes them to a
  Prometheus push gateway.

## Installation

```
pip install vise
```

## Histogram buckets (`vise.buckets`)

`Buckets` describes the upper bounds of histogram buckets. Iterating over it yields those bounds:

```python
from vise.buckets import Buckets

list(Buckets.linear(0.0, 10.0, 1.0))       # [0.0, 1.0, ..., 10.0]
list(Buckets.exponential(1.0, 10.0, 2.0))  # [1.0, 2.0, 4.0, 8.0]
Buckets.values([0.1, 0.5, 1.0])            # values must be strictly increasing
```

`Buckets.LATENCIES` and `Buckets.ZERO_TO_ONE` are ready-made configurations.
Configurations that are not valid raise `ValueError`. These include empty values, values that
do not increase, an empty range, a step that is not positive, a non-positive start for
exponential buckets, or a factor of 1 or less.

`compare_f64(lhs, rhs)` compares floats by their bit patterns. It returns -1, 0 or 1, or `None`
for NaN and subnormal values. `is_f64_greater(lhs, rhs)` is the strict "greater than" built on it.

## Descriptors (`vise.descriptors`)

- `Unit` holds the measurement units, for example `Unit.BYTES` or `Unit.SECONDS`.
- `MetricType` holds the metric types: counter, gauge, histogram, info and unknown.
- `MetricDescriptor` describes one metric. `full_name()` appends the unit suffix, for example
  `test_gauge_bytes`.
- `MetricGroupDescriptor` describes a group of metrics.
- `FullMetricDescriptor` pairs a metric with its group.

## Label values and label sets (`vise.labels`)

`RenameRule` supports `lowercase`, `UPPERCASE`, `camelCase`, `snake_case`,
`SCREAMING_SNAKE_CASE`, `kebab-case` and `SCREAMING-KEBAB-CASE`:

```python
from vise.labels import RenameRule

RenameRule.parse("snake_case").transform("TestIdent")  # "test_ident"
```

`EncodeLabelValue.new(name, attrs, variants)` defines how values become label values. With
`{"metrics": {"rename_all": ...}}`, each enum variant gets its own label value, and a single
variant can be given a different value with a `name` attribute. Without it, values are rendered
with a `format` template (`"{}"` by default).

`EncodeLabelSet.new(name, attrs, fields)` defines how objects become lists of `(key, value)`
label pairs. There are two kinds:

- A label set with a `label` attribute encodes the whole object as one label.
- Any other label set encodes one label per field. Fields that are `None` and marked optional
  are skipped, and so are fields whose `skip` predicate returns true.

Definitions that are not valid raise `DefinitionError`, and unsupported attributes raise
`AttributeError_`. Both come from `vise.attributes`. Examples are duplicate label values,
non-ASCII variant names, `rename_all` used together with `format`, label names that are not
valid, and generic parameters.

## Metric groups (`vise.groups`)

`MetricsGroup.new(name, fields, attrs, ...)` validates a group of named metric fields under an
optional `prefix`, and `descriptor()` returns its `MetricGroupDescriptor`.

Each field has its own attributes: `buckets`, `unit` and `labels`. Histograms must have
`buckets`, and no other metric type may have them. `collect_docs(lines)` joins doc lines into a
help string and drops one trailing `.`, `!` or `?`.

## Output formats (`vise.format`)

`Format` selects the exposition format:

| Format | `_total` on counters | `_info` on info | `# EOF` |
|:-------|:---------------------|:----------------|:--------|
| `Format.OPEN_METRICS` | yes | yes | yes |
| `Format.OPEN_METRICS_FOR_PROMETHEUS` | no | no | yes |
| `Format.PROMETHEUS` | no | no | no |

In `Format.PROMETHEUS`, info types are also reported as gauges.

`translate(text, format)` converts OpenMetrics text into the requested format.
`PrometheusWrapper` does the same conversion as a stream: it accepts text written in arbitrary
chunks and must be flushed at the end, or used as a context manager.
`OPEN_METRICS_CONTENT_TYPE` and `PROMETHEUS_CONTENT_TYPE` are the matching HTTP content types.

## Exporting (`vise.exporter`)

`MetricsExporter` takes a callable that returns the current metrics as OpenMetrics text. The
callable runs in a worker thread, so it may block. The exporter can also take metric group
descriptors, which it uses only for logging.

```python
import asyncio
from vise.exporter import MetricsExporter

def scrape() -> str:
    return "# TYPE app_requests counter\napp_requests_total 1\n# EOF\n"

async def main():
    stop = asyncio.Event()
    exporter = MetricsExporter(scrape).with_graceful_shutdown(stop.wait())
    server = await exporter.bind(("127.0.0.1", 3312))
    print("serving on", server.local_addr())
    await server.start()  # returns once `stop` is set

asyncio.run(main())
```

Any request on any path returns the metrics in the configured format. The default format is
`Format.OPEN_METRICS_FOR_PROMETHEUS`; change it with `with_format(...)`. `start(bind_address)`
binds a server and runs it in one step.

To push metrics to a gateway at a fixed interval instead, run
`exporter.push_to_gateway(endpoint, interval)`. The interval is given in seconds or as a
`timedelta`. Metrics are sent with `PUT` in the OpenMetrics content type. If the gateway
answers with an error status, or cannot be reached, the error is logged at most once a minute
and pushing continues. Once the shutdown signal completes, one final push is made and the loop
ends.

## What this package does not do

The package has no metric registry and no counter, gauge or histogram objects for recording
values in an application. Metric groups and label sets are validated and described, but their
values are not encoded here. The exporter relies on the callable you give it to produce
OpenMetrics text. There is no command-line program.