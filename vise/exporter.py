"""Prometheus exporter: serves metrics over HTTP or pushes them to a push gateway."""

from __future__ import annotations

import asyncio
import enum
import logging
import socket
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple, Union

import aiohttp
from aiohttp import hdrs, web

from vise.buckets import Buckets
from vise.descriptors import MetricGroupDescriptor
from vise.format import OPEN_METRICS_CONTENT_TYPE, Format, translate

logger = logging.getLogger(__name__)

Address = Tuple[str, int]
MetricsSource = Callable[[], str]

_ERROR_LOG_INTERVAL = 60.0
_SAMPLED_CRATE_COUNT = 5


class Facade(enum.Enum):
    """Metrics façade whose output is scraped by the exporter."""

    VISE = "vise"

    def __str__(self) -> str:
        return self.value


@dataclass
class _Histogram:
    buckets: Tuple[float, ...]
    counts: List[int] = field(default_factory=list)
    sum: float = 0.0
    count: int = 0

    def __post_init__(self) -> None:
        self.counts = [0] * len(self.buckets)

    def observe(self, value: float) -> None:
        self.sum += value
        self.count += 1
        for index, bound in enumerate(self.buckets):
            if value <= bound:
                self.counts[index] += 1


class _HistogramFamily(Dict[Facade, _Histogram]):
    def __init__(self, buckets: Buckets) -> None:
        super().__init__()
        self._buckets = tuple(buckets)

    def __missing__(self, key: Facade) -> _Histogram:
        histogram = _Histogram(self._buckets)
        self[key] = histogram
        return histogram


_BYTE_BUCKETS = Buckets.exponential(1_024.0, 1_024.0 * 1_024.0, 4.0)


@dataclass
class _ExporterMetrics:
    scrape_latency: _HistogramFamily = field(
        default_factory=lambda: _HistogramFamily(Buckets.LATENCIES)
    )
    scraped_size: _HistogramFamily = field(
        default_factory=lambda: _HistogramFamily(_BYTE_BUCKETS)
    )


_EXPORTER_METRICS = _ExporterMetrics()


def _interval_seconds(interval: Union[float, timedelta]) -> float:
    if isinstance(interval, timedelta):
        return interval.total_seconds()
    return float(interval)


def _create_listener(bind_address: Address) -> socket.socket:
    host, port = bind_address
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    return socket.create_server((host, port), family=family)


class MetricsExporter:
    """Metrics exporter to Prometheus.

    ``source`` is a callable returning metrics in the OpenMetrics text format; it
    may block, so it is called in a worker thread. ``descriptors`` describe the
    exported metric groups and are only used for logging.
    """

    def __init__(
        self,
        source: MetricsSource,
        descriptors: Iterable[MetricGroupDescriptor] = (),
    ) -> None:
        self._source = source
        self._format = Format.OPEN_METRICS_FOR_PROMETHEUS
        self._shutdown: Optional[Awaitable[object]] = None
        self._log_metrics_stats(tuple(descriptors))

    def __repr__(self) -> str:
        return f"MetricsExporter(format={self._format!r})"

    @staticmethod
    def _log_metrics_stats(groups: Tuple[MetricGroupDescriptor, ...]) -> None:
        metric_count = sum(len(group.metrics) for group in groups)
        unique_crates: Dict[Tuple[str, str], None] = {}
        for group in groups:
            unique_crates.setdefault((group.crate_name, group.crate_version))
            if len(unique_crates) >= _SAMPLED_CRATE_COUNT:
                break
        crates = "".join(f"{name} {version}, " for name, version in unique_crates) + "..."
        logger.info(
            "Created metrics exporter with %d metrics in %d groups from crates %s",
            metric_count,
            len(groups),
            crates,
        )

    def with_format(self, format: Format) -> MetricsExporter:
        """Set the export format (``OPEN_METRICS_FOR_PROMETHEUS`` by default)."""
        self._format = format
        return self

    def with_graceful_shutdown(self, shutdown: Awaitable[object]) -> MetricsExporter:
        """Shut the exporter down once ``shutdown`` completes."""
        self._shutdown = shutdown
        return self

    @property
    def content_type(self) -> str:
        """Content type of rendered metrics."""
        return self._format.content_type

    def _encode(self) -> str:
        return translate(self._source(), self._format)

    async def render_body(self) -> str:
        """Scrape metrics and render them in the configured format."""
        started = time.perf_counter()
        body = await asyncio.to_thread(self._encode)
        latency = time.perf_counter() - started
        scraped_size = len(body.encode("utf-8"))

        _EXPORTER_METRICS.scrape_latency[Facade.VISE].observe(latency)
        _EXPORTER_METRICS.scraped_size[Facade.VISE].observe(scraped_size)
        logger.debug(
            "Scraped metrics using `vise` façade in %.6fs (scraped size: %dB)",
            latency,
            scraped_size,
        )
        return body

    async def _handle(self, request: web.Request) -> web.Response:
        body = await self.render_body()
        return web.Response(
            body=body.encode("utf-8"),
            headers={hdrs.CONTENT_TYPE: self.content_type},
        )

    async def start(self, bind_address: Address) -> None:
        """Serve metrics on ``bind_address`` until shut down."""
        host, port = bind_address
        logger.info("Starting Prometheus exporter web server on %s:%s", host, port)
        server = await self.bind(bind_address)
        await server.start()
        logger.info("Prometheus metrics exporter server shut down")

    async def bind(self, bind_address: Address) -> MetricsServer:
        """Bind an HTTP server to ``bind_address``; raises ``OSError`` on failure.

        The server answers any request on any path with the rendered metrics.
        """
        listener = _create_listener(bind_address)
        try:
            app = web.Application()
            app.router.add_route("*", "/{tail:.*}", self._handle)
            runner = web.AppRunner(app, access_log=None)
            await runner.setup()
        except BaseException:
            listener.close()
            raise
        site = web.SockSite(runner, listener)
        return MetricsServer(
            runner=runner,
            site=site,
            shutdown=self._shutdown,
            address=listener.getsockname()[:2],
        )

    async def push_to_gateway(
        self, endpoint: str, interval: Union[float, timedelta]
    ) -> None:
        """Push metrics to ``endpoint`` every ``interval`` until shut down."""
        seconds = _interval_seconds(interval)
        logger.info(
            "Starting push-based Prometheus exporter to `%s` with push interval %ss",
            endpoint,
            seconds,
        )
        shutdown_task = (
            asyncio.ensure_future(self._shutdown) if self._shutdown is not None else None
        )
        last_error_log: Optional[float] = None

        def should_log_error() -> bool:
            return (
                last_error_log is None
                or time.monotonic() - last_error_log >= _ERROR_LOG_INTERVAL
            )

        try:
            async with aiohttp.ClientSession() as session:
                while True:
                    shutdown_requested = False
                    if shutdown_task is None:
                        await asyncio.sleep(seconds)
                    else:
                        done, _ = await asyncio.wait({shutdown_task}, timeout=seconds)
                        if done:
                            logger.info(
                                "Stop signal received, Prometheus metrics exporter is "
                                "shutting down"
                            )
                            shutdown_requested = True

                    body = await self.render_body()
                    try:
                        async with session.put(
                            endpoint,
                            data=body.encode("utf-8"),
                            headers={hdrs.CONTENT_TYPE: OPEN_METRICS_CONTENT_TYPE},
                        ) as response:
                            if not 200 <= response.status < 300 and should_log_error():
                                await _report_erroneous_response(endpoint, response)
                                last_error_log = time.monotonic()
                    except (aiohttp.ClientError, asyncio.TimeoutError) as err:
                        if should_log_error():
                            logger.error(
                                "Error submitting metrics to Prometheus push gateway "
                                "(error: %s, endpoint: %s)",
                                err,
                                endpoint,
                            )
                            last_error_log = time.monotonic()

                    if shutdown_requested:
                        break
        finally:
            if shutdown_task is not None and not shutdown_task.done():
                shutdown_task.cancel()


async def _report_erroneous_response(
    endpoint: str, response: aiohttp.ClientResponse
) -> None:
    status = f"{response.status} {response.reason or ''}".rstrip()
    try:
        raw = await response.read()
    except (aiohttp.ClientError, asyncio.TimeoutError) as err:
        logger.error(
            "Failed reading erroneous response from Prometheus push gateway "
            "(error: %s, status: %s, endpoint: %s)",
            err,
            status,
            endpoint,
        )
        return
    try:
        body = raw.decode("utf-8")
    except UnicodeDecodeError as err:
        body = f"(Non UTF-8 body with length {len(raw)}B: {err})"
    logger.warning(
        "Error pushing metrics to Prometheus push gateway "
        "(status: %s, body: %s, endpoint: %s)",
        status,
        body,
        endpoint,
    )


class MetricsServer:
    """Metrics server bound to a local address, returned by :meth:`MetricsExporter.bind`."""

    def __init__(
        self,
        *,
        runner: web.AppRunner,
        site: web.SockSite,
        shutdown: Optional[Awaitable[object]],
        address: Address,
    ) -> None:
        self._runner = runner
        self._site = site
        self._shutdown = shutdown
        self._address = (address[0], address[1])

    def __repr__(self) -> str:
        return f"MetricsServer(local_addr={self._address!r})"

    def local_addr(self) -> Address:
        """The ``(host, port)`` this server is bound to."""
        return self._address

    async def start(self) -> None:
        """Serve requests; return once the shutdown signal completes."""
        try:
            await self._site.start()
            if self._shutdown is None:
                await asyncio.get_running_loop().create_future()
            else:
                await self._shutdown
            logger.info(
                "Stop signal received, Prometheus metrics exporter is shutting down"
            )
        finally:
            await self._runner.cleanup()