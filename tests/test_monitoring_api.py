"""
HTTP tests for the monitoring API and the request-counting middleware.
"""
import os
import socket
import sys

import pytest
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse, StreamingResponse
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from services.api_gateway.app import WebAPIService, create_app, web_service
from services.api_gateway.middleware import setup_request_metrics

from conftest import T0


@pytest.fixture()
def client(engine):
    with TestClient(create_app(engine)) as c:
        yield c


class TestReadRoutes:
    def test_counters(self, client):
        resp = client.get("/counters")
        assert resp.status_code == 200
        assert resp.json() == {"counters": ["requestCount", "transferredBytes"]}

    def test_counter_data(self, client, engine):
        for _ in range(3):
            engine.record("requestCount")
        resp = client.get("/counter/requestCount")
        assert resp.status_code == 200
        assert resp.json() == {"data": [{"window_start": T0, "total": 3}]}

    def test_counter_empty(self, client):
        assert client.get("/counter/transferredBytes").json() == {"data": []}

    def test_unknown_counter_404(self, client):
        resp = client.get("/counter/bogus")
        assert resp.status_code == 404
        assert resp.json() == {"error": "Could not find counter for name: bogus"}

    def test_uptime(self, client, clock):
        clock.advance(5000)
        assert client.get("/uptime").json() == {"uptime": 5000}

    def test_state(self, client, engine):
        engine.register_field({"name": "latency", "type": "avg", "aggregate": 10})
        engine.record("latency", 4)
        engine.record("latency", 8)
        body = client.get("/state").json()
        assert body["process_start"] == T0
        assert set(body["fields"]) == {"requestCount", "transferredBytes", "latency"}
        latency = body["fields"]["latency"]
        assert latency["config"] == {"type": "avg", "aggregate": 10, "custom": {}}
        assert latency["data"] == [{
            "window_start": T0,
            "samples": [4, 8],
            "max": 8,
            "min": 4,
            "count": 2,
            "average": 6.0,
        }]

    def test_api_does_not_count_itself(self, client, engine):
        client.get("/counters")
        assert engine.snapshot().fields["requestCount"].buckets == ()

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["fields"] == 2
        assert body["retention_scheduled"] is False


class TestRequestMetricsMiddleware:
    @pytest.fixture()
    def host_client(self, engine):
        engine.register_field({"name": "handled", "type": "count"})
        app = FastAPI()
        setup_request_metrics(app, engine)

        @app.get("/hello", response_class=PlainTextResponse)
        async def hello(request: Request):
            request.state.metrics.record("handled")
            return "hello"

        @app.get("/stream")
        async def stream():
            async def chunks():
                yield b"abc"
                yield b"defg"
            return StreamingResponse(chunks(), media_type="text/plain")

        with TestClient(app) as c:
            yield c

    def test_counts_requests_and_bytes(self, host_client, engine):
        for _ in range(2):
            assert host_client.get("/hello").text == "hello"
        snap = engine.snapshot()
        assert snap.fields["requestCount"].buckets[0].total == 2
        assert snap.fields["transferredBytes"].buckets[0].total == 10
        assert snap.fields["handled"].buckets[0].total == 2

    def test_counts_streamed_chunks(self, host_client, engine):
        assert host_client.get("/stream").text == "abcdefg"
        assert engine.snapshot().fields["transferredBytes"].buckets[0].total == 7

    def test_not_found_still_counted(self, host_client, engine):
        assert host_client.get("/missing").status_code == 404
        assert engine.snapshot().fields["requestCount"].buckets[0].total == 1


class TestWebService:
    def test_factory_options(self, engine):
        svc = web_service(engine, {"listen": "127.0.0.1", "port": "3005"})
        assert isinstance(svc, WebAPIService)
        assert (svc.host, svc.port) == ("127.0.0.1", 3005)
        assert svc.active() is False

    def test_stop_before_start_is_safe(self, engine):
        svc = web_service(engine, {})
        svc.stop()
        assert svc.port == 3001
        assert svc.active() is False

    def test_start_and_stop_on_free_port(self, engine):
        with socket.socket() as s:
            s.bind(("127.0.0.1", 0))
            port = s.getsockname()[1]
        svc = WebAPIService(engine, "127.0.0.1", port)
        svc.start()
        try:
            assert svc.active() is True
        finally:
            svc.stop()
        assert svc.active() is False

    def test_port_in_use_raises(self, engine):
        with socket.socket() as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen(1)
            port = blocker.getsockname()[1]
            svc = WebAPIService(engine, "127.0.0.1", port)
            with pytest.raises(RuntimeError):
                svc.start()
            assert svc.active() is False
