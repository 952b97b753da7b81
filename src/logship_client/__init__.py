"""
logship_client

Bulk HTTPS delivery of structured log records to a log listener: records
are normalized, batched into gzip-compressed NDJSON bulks and POSTed with a
three-valued outcome (ok / retryable / fatal) reported back to the host.
"""

from .bulk import BulkBuffer
from .config import ClientOptions, ConfigError, DedotOptions, OutputConfig
from .host import EventTime, HostAdapter, HostRecord, StreamAdapter, deliver_batch
from .logging_setup import ShippingHandler, setup_logging
from .models import Result
from .registry import OutputInstance, OutputRegistry, UnknownOutputError
from .transform import TransformError, normalize, serialize_record
from .transport import DeliveryClient

__version__ = "0.1.0"

__all__ = [
  "BulkBuffer",
  "ClientOptions",
  "ConfigError",
  "DedotOptions",
  "DeliveryClient",
  "EventTime",
  "HostAdapter",
  "HostRecord",
  "OutputConfig",
  "OutputInstance",
  "OutputRegistry",
  "Result",
  "ShippingHandler",
  "StreamAdapter",
  "TransformError",
  "UnknownOutputError",
  "deliver_batch",
  "normalize",
  "serialize_record",
  "setup_logging",
]
