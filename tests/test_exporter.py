import asyncio
import contextlib
import logging
import socket

import aiohttp
import pytest
from aiohttp import web

from vise.descriptors import MetricDescriptor, MetricGroupDescriptor, MetricType
from vise.exporter import MetricsExporter, MetricsServer
from vise.format import OPEN_METRICS_CONTENT_TYPE, PROMETHEUS_CONTENT_TYPE, Format

TEST_TIMEOUT = 3.0

OPEN_METRICS_TEXT = (
    "# HELP modern_counter Counter.\n"
    "# TYPE modern_counter counter\n"
    "modern_counter_total 1\n"
    "# HELP modern_gauge Gauge with a label defined using the modern approach.\n"
    "# TYPE modern_gauge gauge\n"
    'modern_gauge{label="value"} 42.0\n'
    "# EOF\n"
)

DESCRIPTORS = (
    MetricGroupDescriptor(
        crate_name="vise_exporter",
        crate_version="0.2.0",
        module_path="vise_exporter::tests",
        name="TestMetrics",
        line=1,
        metrics=(
            MetricDescriptor("modern_counter", "counter", MetricType.COUNTER, None, "Counter"),
            MetricDescriptor("modern_gauge", "gauge", MetricType.GAUGE, None, "Gauge"),
        ),
    ),
)


def source():
    return OPEN_METRICS_TEXT


def make_exporter():
    return MetricsExporter(source, DESCRIPTORS)


def assert_scraped_payload_is_valid(payload):
    lines = payload.splitlines()
    assert all(line for line in lines)
    for expected in (
        "# TYPE modern_counter counter",
        "# TYPE modern_gauge gauge",
        'modern_gauge{label="value"} 42.0',
    ):
        assert expected in lines, lines
    assert any(line.startswith("modern_counter ") for line in lines), lines
    assert lines[-1] == "# EOF"
    assert "# EOF" not in lines[:-1]


@pytest.mark.asyncio
async def test_basic_exporter_workflow():
    body = await make_exporter().render_body()
    assert_scraped_payload_is_valid(body)


@pytest.mark.asyncio
async def test_prometheus_format_drops_eof():
    body = await make_exporter().with_format(Format.PROMETHEUS).render_body()
    lines = body.splitlines()
    assert "# EOF" not in lines
    assert "modern_counter 1" in lines


@pytest.mark.asyncio
async def test_open_metrics_format_keeps_total_suffix():
    body = await make_exporter().with_format(Format.OPEN_METRICS).render_body()
    assert body == OPEN_METRICS_TEXT


@pytest.mark.asyncio
async def test_source_errors_propagate():
    def failing():
        raise RuntimeError("broken source")

    with pytest.raises(RuntimeError, match="broken source"):
        await MetricsExporter(failing).render_body()


@pytest.mark.asyncio
async def test_graceful_shutdown_works_as_expected():
    shutdown = asyncio.Event()
    exporter = make_exporter().with_graceful_shutdown(shutdown.wait())
    server = await exporter.bind(("127.0.0.1", 0))
    host, port = server.local_addr()
    assert host == "127.0.0.1"
    assert port > 0
    server_task = asyncio.create_task(server.start())

    url = f"http://{host}:{port}/metrics"
    connector = aiohttp.TCPConnector(force_close=True)
    async with aiohttp.ClientSession(connector=connector) as session:
        async with session.get(url) as response:
            assert response.status == 200
            assert response.headers["Content-Type"] == OPEN_METRICS_CONTENT_TYPE
            payload = await response.text()
        assert_scraped_payload_is_valid(payload)

        shutdown.set()
        await asyncio.wait_for(server_task, TEST_TIMEOUT)
        assert server_task.exception() is None

        with pytest.raises(aiohttp.ClientConnectorError):
            async with session.get(url):
                pass


@pytest.mark.asyncio
async def test_server_uses_prometheus_content_type():
    shutdown = asyncio.Event()
    exporter = (
        make_exporter()
        .with_format(Format.PROMETHEUS)
        .with_graceful_shutdown(shutdown.wait())
    )
    server = await exporter.bind(("127.0.0.1", 0))
    assert isinstance(server, MetricsServer)
    host, port = server.local_addr()
    server_task = asyncio.create_task(server.start())
    try:
        connector = aiohttp.TCPConnector(force_close=True)
        async with aiohttp.ClientSession(connector=connector) as session:
            async with session.post(f"http://{host}:{port}/any/path") as response:
                assert response.status == 200
                assert response.headers["Content-Type"] == PROMETHEUS_CONTENT_TYPE
                body = await response.text()
        assert "# EOF" not in body.splitlines()
    finally:
        shutdown.set()
        await asyncio.wait_for(server_task, TEST_TIMEOUT)


@pytest.mark.asyncio
async def test_binding_to_occupied_port_fails():
    occupied = socket.create_server(("127.0.0.1", 0))
    try:
        port = occupied.getsockname()[1]
        with pytest.raises(OSError):
            await make_exporter().bind(("127.0.0.1", port))
    finally:
        occupied.close()


@pytest.mark.asyncio
async def test_using_push_gateway(caplog):
    caplog.set_level(logging.INFO, logger="vise.exporter")
    requests = asyncio.Queue()
    counter = {"value": 0}

    async def handler(request):
        assert request.method == "PUT"
        behavior = counter["value"] % 3
        counter["value"] += 1
        body = await request.read()
        await requests.put((dict(request.headers), body))
        if behavior == 1:
            return web.Response(status=503, text="Mistake!")
        if behavior == 2:
            raise RuntimeError("oops")
        return web.Response(status=202)

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", handler)
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    listener = socket.create_server(("127.0.0.1", 0))
    host, port = listener.getsockname()[:2]
    site = web.SockSite(runner, listener)
    await site.start()

    endpoint = f"http://{host}:{port}/"
    push_task = asyncio.create_task(make_exporter().push_to_gateway(endpoint, 0.05))
    try:
        for _ in range(4):
            headers, body = await asyncio.wait_for(requests.get(), TEST_TIMEOUT)
            assert headers["Content-Type"] == OPEN_METRICS_CONTENT_TYPE
            assert_scraped_payload_is_valid(body.decode("utf-8"))
    finally:
        push_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await push_task
        await runner.cleanup()

    warnings = [
        record
        for record in caplog.records
        if record.name == "vise.exporter" and record.levelno >= logging.WARNING
    ]
    assert len(warnings) == 1
    warning = warnings[0]
    assert "Error pushing metrics to Prometheus push gateway" in warning.getMessage()
    status, body, logged_endpoint = warning.args
    assert status == "503 Service Unavailable"
    assert body == "Mistake!"
    assert logged_endpoint.startswith("http://127.0.0.1:")


@pytest.mark.asyncio
async def test_push_stops_after_shutdown():
    received = asyncio.Queue()

    async def handler(request):
        await received.put((request.method, request.headers.get("Content-Type"), await request.read()))
        return web.Response(status=200)

    app = web.Application()
    app.router.add_route("*", "/{tail:.*}", handler)
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    listener = socket.create_server(("127.0.0.1", 0))
    host, port = listener.getsockname()[:2]
    site = web.SockSite(runner, listener)
    await site.start()
    try:
        shutdown = asyncio.Event()
        shutdown.set()
        exporter = make_exporter().with_graceful_shutdown(shutdown.wait())
        result = await asyncio.wait_for(
            exporter.push_to_gateway(f"http://{host}:{port}/", 10.0), TEST_TIMEOUT
        )
        assert result is None
        # A final push happens once the shutdown signal is received.
        assert received.qsize() == 1
        method, content_type, raw_body = await received.get()
        assert method == "PUT"
        assert content_type == OPEN_METRICS_CONTENT_TYPE
        body = raw_body.decode("utf-8")
        assert body.splitlines()[-1] == "# EOF"
        assert "modern_counter 1" in body.splitlines()
        assert_scraped_payload_is_valid(body)
    finally:
        await runner.cleanup()