from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from codegate.app.middleware.request_size import RequestSizeLimitMiddleware


def make_app(max_body_size: int) -> FastAPI:
    app = FastAPI()
    app.add_middleware(RequestSizeLimitMiddleware, max_body_size=max_body_size)

    @app.post("/echo")
    async def echo(req: Request):
        return {"size": len(await req.body())}

    @app.post("/boom")
    async def boom(_: Request):
        raise RuntimeError("boom")

    return app


def test_request_size_middleware_does_not_mask_exceptions():
    client = TestClient(make_app(1024), raise_server_exceptions=False)
    resp = client.post("/boom", json={"x": 1})

    # If middleware masks exceptions, this would be 413.
    assert resp.status_code == 500


def test_body_within_limit_passes():
    client = TestClient(make_app(10))
    resp = client.post("/echo", content=b"x" * 10)

    assert resp.status_code == 200
    assert resp.json() == {"size": 10}


def test_oversize_body_gets_error_envelope():
    client = TestClient(make_app(10), raise_server_exceptions=False)
    resp = client.post("/echo", content=b"x" * 11, headers={"X-Session-ID": "sess_big"})

    assert resp.status_code == 413
    assert resp.headers.get("content-type", "").startswith("application/json")
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "INVALID_REQUEST"
    assert "10 bytes" in body["error"]["message"]
    assert body["metadata"]["sessionId"] == "sess_big"


def test_streamed_body_without_length_is_counted():
    def chunks():
        for _ in range(4):
            yield b"x" * 5

    client = TestClient(make_app(10), raise_server_exceptions=False)
    resp = client.post("/echo", content=chunks())

    assert resp.status_code == 413
    assert resp.json()["error"]["code"] == "INVALID_REQUEST"
