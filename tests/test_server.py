from __future__ import annotations

import http.client
import json
import threading
from urllib.parse import urlsplit
import time
from collections.abc import Iterator

import pytest
import requests
from fake_api import FakeBoardAPI, content_card, issue_url

from boardsync.config import config_from_mapping
from boardsync.runtime import BoardSyncRuntime, build_runtime
from boardsync.server import EventLoopThread, WebhookServer
from boardsync.webhooks import sign_payload

SECRET = "s3cret"
ISSUE = issue_url("openstax", "books", 7)


@pytest.fixture
def runtime() -> BoardSyncRuntime:
    cfg = config_from_mapping(
        {
            "github": {"webhook_secret": SECRET},
            "automate_project_columns": [{"id": 300, "columns": [{"id": 31, "rules": {"closed_issue": True}}]}],
        }
    )
    api = FakeBoardAPI()
    api.add_project(300, columns={30: [content_card(3, ISSUE)], 31: []})
    return build_runtime(cfg, api=api)


@pytest.fixture
def base_url(runtime: BoardSyncRuntime) -> Iterator[str]:
    loop_thread = EventLoopThread().start()
    server = WebhookServer(("127.0.0.1", 0), runtime, loop_thread)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield f"http://127.0.0.1:{server.server_address[1]}"
    finally:
        server.shutdown()
        server.server_close()
        loop_thread.stop()


def _post(url: str, body: bytes, *, event: str = "issues", secret: str | None = SECRET) -> requests.Response:
    headers = {"X-GitHub-Event": event, "X-GitHub-Delivery": "d-42", "Content-Type": "application/json"}
    if secret:
        headers["X-Hub-Signature-256"] = sign_payload(secret, body)
    return requests.post(f"{url}/", data=body, headers=headers, timeout=5)


def _closed_body() -> bytes:
    return json.dumps(
        {
            "action": "closed",
            "repository": {"name": "books", "owner": {"login": "openstax"}},
            "issue": {"id": 7007, "url": ISSUE},
        }
    ).encode()


def test_healthz(base_url: str):
    response = requests.get(f"{base_url}/healthz", timeout=5)
    assert response.status_code == 200
    assert response.text == "ok"


def test_signed_delivery_is_accepted_and_applied(base_url: str, runtime: BoardSyncRuntime):
    response = _post(base_url, _closed_body())
    assert response.status_code == 202

    api = runtime.api
    assert isinstance(api, FakeBoardAPI)
    deadline = time.monotonic() + 5
    while not api.moved and time.monotonic() < deadline:
        time.sleep(0.01)
    assert api.moved == [(3, 31, "top")]


def test_bad_signature_is_rejected(base_url: str, runtime: BoardSyncRuntime):
    response = _post(base_url, _closed_body(), secret="wrong")
    assert response.status_code == 401
    assert runtime.api.calls["list_columns"] == 0  # type: ignore[attr-defined]


def test_malformed_payload_is_rejected(base_url: str):
    assert _post(base_url, b"{not json").status_code == 400


@pytest.mark.parametrize("length", ["abc", "-5"])
def test_bad_content_length_is_rejected(base_url: str, length: str):
    parts = urlsplit(base_url)
    conn = http.client.HTTPConnection(parts.hostname, parts.port, timeout=5)
    try:
        conn.putrequest("POST", "/")
        conn.putheader("X-GitHub-Event", "issues")
        conn.putheader("Content-Length", length)
        conn.endheaders()
        response = conn.getresponse()
        assert response.status == 400
        assert response.read() == b"bad Content-Length"
    finally:
        conn.close()
