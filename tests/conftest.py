import gzip
import logging
from typing import Any, Dict, List

import pytest
from fastapi import FastAPI, Request, Response
from fastapi.testclient import TestClient

TEST_TOKEN = "123456789"
LISTENER_URL = "http://testserver"


class Listener:
  """Records every bulk POSTed to the fake log listener."""

  def __init__(self) -> None:
    self.status_code = 200
    self.body = ""
    self.requests: List[Dict[str, Any]] = []

  @property
  def bulks(self) -> List[List[str]]:
    return [req["lines"] for req in self.requests]

  @property
  def lines(self) -> List[str]:
    return [line for bulk in self.bulks for line in bulk]


def make_listener_app(listener: Listener) -> FastAPI:
  app = FastAPI()

  @app.post("/")
  async def ingest(request: Request) -> Response:
    raw = await request.body()
    data = raw
    if request.headers.get("content-encoding") == "gzip":
      data = gzip.decompress(raw)
    listener.requests.append(
      {
        "headers": dict(request.headers),
        "params": dict(request.query_params),
        "data": data,
        "lines": data.decode("utf-8").splitlines(),
      }
    )
    return Response(content=listener.body, status_code=listener.status_code)

  return app


@pytest.fixture
def listener() -> Listener:
  return Listener()


@pytest.fixture
def listener_client(listener):
  client = TestClient(make_listener_app(listener), base_url=LISTENER_URL)
  yield client
  client.close()


@pytest.fixture
def patch_http_client(monkeypatch, listener):
  """Make every DeliveryClient built without an explicit client talk to the listener."""
  from logship_client.transport import http_transport

  monkeypatch.setattr(
    http_transport,
    "build_http_client",
    lambda options: TestClient(make_listener_app(listener), base_url=LISTENER_URL),
  )
  return listener


@pytest.fixture(autouse=True)
def _reset_library_logger():
  yield
  logging.getLogger("logship_client").setLevel(logging.NOTSET)
