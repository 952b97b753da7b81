"""
Seam between a host pipeline and the delivery core.

A host hands over already-decoded records through a HostAdapter; the core
never sees the host's wire format. deliver_batch is what a host calls once
per chunk of records, and OutputRegistry.close is what it calls at exit.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Iterator, Mapping, NamedTuple, Optional, Protocol

from .models import Result
from .registry import OutputRegistry
from .transform import TransformError
from .transport import DeliveryClient

_logger = logging.getLogger(__name__)


class EventTime(NamedTuple):
  """Structured event time of the fluent-bit wire format."""

  seconds: int
  nanoseconds: int = 0

  def to_datetime(self) -> datetime:
    ts = datetime.fromtimestamp(self.seconds, tz=timezone.utc)
    return ts + timedelta(microseconds=self.nanoseconds // 1000)


class HostRecord(NamedTuple):
  time: Any
  tag: Optional[str]
  record: Mapping[Any, Any]


class HostAdapter(Protocol):
  """The operations the core needs from a host runtime."""

  def next_record(self) -> Optional[HostRecord]:
    """Next decoded record of the current chunk, or None when exhausted."""
    ...

  def send(self, data: bytes, client: DeliveryClient) -> Result:
    ...

  def flush(self, client: DeliveryClient) -> Result:
    ...


class StreamAdapter:
  """HostAdapter over any iterable of HostRecord triples."""

  def __init__(self, records: Iterable[HostRecord]) -> None:
    self._records: Iterator[HostRecord] = iter(records)

  def next_record(self) -> Optional[HostRecord]:
    return next(self._records, None)

  def send(self, data: bytes, client: DeliveryClient) -> Result:
    return client.send(data)

  def flush(self, client: DeliveryClient) -> Result:
    return client.flush()


def deliver_batch(
  registry: OutputRegistry,
  adapter: HostAdapter,
  tag: str,
  output_id: Optional[str] = None,
) -> Result:
  """
  Serialize and send every record of one chunk, then flush.

  Records that cannot be serialized are logged and dropped. The returned
  result combines every send and the final flush, so a bulk that failed
  mid-chunk is not hidden by a later success.
  """
  instance = registry.for_instance(output_id)
  instance.logger.debug("flushing for id: %s", instance.output_id)

  result = Result.OK
  sent = dropped = 0
  while True:
    item = adapter.next_record()
    if item is None:
      break

    try:
      data = instance.serialize(item.time, item.tag or tag, item.record)
    except TransformError as exc:
      dropped += 1
      instance.logger.warning("dropping record: %s", exc)
      continue

    result = result.combine(adapter.send(data, instance.client))
    sent += 1

  result = result.combine(adapter.flush(instance.client))
  instance.logger.debug(
    "chunk done for %s: %d sent, %d dropped, %s", instance.output_id, sent, dropped, result.value
  )
  return result
