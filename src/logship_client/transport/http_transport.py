from __future__ import annotations

import gzip
import logging
import zlib
from typing import Dict, Optional

import httpx

from ..bulk import BulkBuffer
from ..config import ClientOptions
from ..models import Result

BODY_LOG_LIMIT = 512

_logger = logging.getLogger("logship_client.transport")


def classify_status(status_code: int) -> Result:
  """
  Map an HTTP status to a delivery outcome.

  Only 2xx is success. 5xx may succeed later; every other status means the
  request itself was refused and resending it is pointless.
  """
  if 200 <= status_code < 300:
    return Result.OK
  if status_code >= 500:
    return Result.RETRY
  return Result.ERROR


def compress(payload: bytes) -> bytes:
  return gzip.compress(payload)


def build_http_client(options: ClientOptions) -> httpx.Client:
  # Without an explicit proxy, httpx honours HTTP(S)_PROXY / NO_PROXY.
  return httpx.Client(
    timeout=httpx.Timeout(options.timeout),
    proxy=options.proxy_url,
    trust_env=True,
    follow_redirects=False,
  )


class DeliveryClient:
  """
  Bulk HTTP client for a log listener.

  Records go through `send` into a size-bounded bulk; each bulk is gzipped
  and POSTed once. The outcome is reported as a Result and never retried
  here: the host decides whether to redeliver.
  """

  def __init__(
    self,
    options: ClientOptions,
    *,
    http_client: Optional[httpx.Client] = None,
    logger: Optional[logging.Logger] = None,
  ) -> None:
    self._options = options
    self._logger = logger or _logger
    self._owns_http = http_client is None
    self._http = http_client if http_client is not None else build_http_client(options)
    self._bulk = BulkBuffer(options.bulk_size_bytes, self.send_bulk, logger=self._logger)
    self._closed = False
    if options.proxy_url:
      self._logger.debug("using http proxy %s", options.proxy_url.rsplit("@", 1)[-1])
    self._logger.debug(
      "client ready: url=%s bulk_size=%d bytes", options.url, options.bulk_size_bytes
    )

  @property
  def options(self) -> ClientOptions:
    return self._options

  @property
  def bulk(self) -> BulkBuffer:
    return self._bulk

  def send(self, record: bytes) -> Result:
    return self._bulk.append(record)

  def flush(self) -> Result:
    return self._bulk.flush_now()

  def close(self) -> Result:
    """Flush what is left and release the connection pool."""
    if self._closed:
      return Result.OK
    try:
      return self.flush()
    finally:
      self._closed = True
      if self._owns_http:
        self._http.close()

  def __enter__(self) -> "DeliveryClient":
    return self

  def __exit__(self, *exc_info) -> None:
    self.close()

  def send_bulk(self, payload: bytes) -> Result:
    if not payload:
      return Result.OK

    try:
      body = compress(payload)
    except (OSError, zlib.error) as exc:
      self._logger.warning("failed to gzip bulk of %d bytes (retryable): %s", len(payload), exc)
      return Result.RETRY

    try:
      response = self._http.post(
        self._options.endpoint,
        params={"token": self._options.token},
        content=body,
        headers=self._headers(),
        timeout=self._options.timeout,
      )
    except httpx.InvalidURL as exc:
      self._logger.error("invalid listener url %r: %s", self._options.url, exc)
      return Result.ERROR
    except httpx.RequestError as exc:
      self._logger.warning(
        "failed to do client request (retryable): %s: %s", type(exc).__name__, exc
      )
      return Result.RETRY

    result = classify_status(response.status_code)
    if result is Result.OK:
      self._logger.debug(
        "successfully sent bulk of %d bytes (%d compressed)", len(payload), len(body)
      )
      return result

    kind = "retryable" if result is Result.RETRY else "non-retryable"
    self._logger.warning(
      "received %s HTTP status code from listener: %d (%s)",
      kind,
      response.status_code,
      _body_excerpt(response),
    )
    return result

  def _headers(self) -> Dict[str, str]:
    headers = dict(self._options.headers)
    headers["Content-Type"] = "application/json"
    headers["Content-Encoding"] = "gzip"
    return headers


def _body_excerpt(response: httpx.Response) -> str:
  try:
    text = response.text
  except (httpx.HTTPError, UnicodeDecodeError, LookupError) as exc:
    return f"<unreadable body: {exc}>"
  if len(text) > BODY_LOG_LIMIT:
    return text[:BODY_LOG_LIMIT] + "..."
  return text
