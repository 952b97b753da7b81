from __future__ import annotations

import logging
from typing import Callable, Optional

from .models import Result

BulkSender = Callable[[bytes], Result]

_logger = logging.getLogger(__name__)


class BulkBuffer:
  """
  Newline-delimited byte buffer that flushes by size.

  A flush never exceeds `threshold` bytes, except when a single record is
  larger than the threshold on its own: it is still accepted and goes out
  alone with the next flush.

  The buffer is emptied after every flush attempt, whatever the sender
  returns. Redelivery of a failed bulk is left to the host.
  """

  def __init__(
    self,
    threshold: int,
    sender: BulkSender,
    logger: Optional[logging.Logger] = None,
  ) -> None:
    if threshold < 0:
      raise ValueError(f"threshold must be >= 0, got {threshold}")
    self._threshold = threshold
    self._sender = sender
    self._logger = logger or _logger
    self._buf = bytearray()
    self._count = 0

  @property
  def threshold(self) -> int:
    return self._threshold

  @property
  def size(self) -> int:
    return len(self._buf)

  def __len__(self) -> int:
    """Number of records currently buffered."""
    return self._count

  def append(self, record: bytes) -> Result:
    """
    Buffer one serialized record, flushing first if it would not fit.

    Returns the outcome of that flush, or OK when none was needed. The
    record is buffered in both cases.
    """
    result = Result.OK
    if len(self._buf) + len(record) + 1 > self._threshold:
      result = self.flush_now()

    if self._logger.isEnabledFor(logging.DEBUG):
      self._logger.debug("adding log to the bulk: %s", record.decode("utf-8", "replace"))
    self._buf += record
    self._buf += b"\n"
    self._count += 1
    return result

  def flush_now(self) -> Result:
    if not self._buf:
      return Result.OK

    # Detach before sending. Records appended while the sender runs, such as
    # the HTTP stack's own log lines, go into the next bulk.
    payload = bytes(self._buf)
    count = self._count
    self._buf = bytearray()
    self._count = 0
    result = self._sender(payload)

    if result is not Result.OK:
      self._logger.warning(
        "dropping bulk of %d record(s) (%d bytes) after %s", count, len(payload), result.value
      )
    return result
