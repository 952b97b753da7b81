"""
Record normalization: turns a decoded host record into the flat JSON object
the listener indexes.

Keys may be de-dotted (`a.b` -> `a_b`) so the receiving store does not read
them as nested-field paths. Byte strings are rendered as text, never base64.
"""

from __future__ import annotations

import json
import logging
import socket
from datetime import date, datetime, timezone
from typing import Any, Dict, Mapping

from .config import DedotOptions

TIMESTAMP_KEY = "@timestamp"
TAG_KEY = "fluentbit_tag"
UNKNOWN_HOST = "unknown_host"

_BYTES = (bytes, bytearray, memoryview)

_logger = logging.getLogger(__name__)


class TransformError(ValueError):
  """A record that cannot be turned into a JSON object; it is dropped."""


def normalize(raw: Any, dedot: DedotOptions = DedotOptions()) -> Dict[str, Any]:
  if not isinstance(raw, Mapping):
    raise TransformError(f"record must be a mapping, got {type(raw).__name__}")
  return _normalize_map(raw, dedot.enabled, dedot)


def _normalize_map(raw: Mapping[Any, Any], dedot_here: bool, dedot: DedotOptions) -> Dict[str, Any]:
  # Below this level keys keep their dots unless nested de-dotting is on.
  dedot_below = dedot_here and dedot.nested
  out: Dict[str, Any] = {}
  for key, value in raw.items():
    name = _key_text(key)
    if dedot_here:
      name = name.replace(".", dedot.separator)
    out[name] = _normalize_value(value, dedot_below, dedot)
  return out


def _normalize_value(value: Any, dedot_here: bool, dedot: DedotOptions) -> Any:
  if isinstance(value, _BYTES):
    return bytes(value).decode("utf-8", "replace")
  if isinstance(value, Mapping):
    return _normalize_map(value, dedot_here, dedot)
  if isinstance(value, (list, tuple)):
    return [_normalize_value(item, dedot_here, dedot) for item in value]
  return value


def _key_text(key: Any) -> str:
  if isinstance(key, str):
    return key
  if isinstance(key, _BYTES):
    return bytes(key).decode("utf-8", "replace")
  return str(key)


def resolve_timestamp(ts: Any) -> datetime:
  """
  Resolve a host event time to an aware UTC datetime.

  Accepts an EventTime-like value (`to_datetime()`), a datetime, Unix
  seconds, or a two-element [time, metadata] array. Anything else falls back
  to the current time.
  """
  to_datetime = getattr(ts, "to_datetime", None)
  try:
    if callable(to_datetime):
      return to_datetime().astimezone(timezone.utc)
    if isinstance(ts, datetime):
      return ts.astimezone(timezone.utc)
    if isinstance(ts, (int, float)) and not isinstance(ts, bool):
      return datetime.fromtimestamp(ts, tz=timezone.utc)
  except (OverflowError, OSError, ValueError):
    _logger.warning("timestamp %r out of range, defaulting to now", ts)
    return datetime.now(timezone.utc)

  if isinstance(ts, (list, tuple)) and len(ts) == 2:
    return resolve_timestamp(ts[0])

  _logger.warning("unknown timestamp format %r, defaulting to now", ts)
  return datetime.now(timezone.utc)


def format_timestamp(ts: Any) -> str:
  value = resolve_timestamp(ts).isoformat(timespec="microseconds")
  return value.replace("+00:00", "Z")


def local_hostname() -> str:
  try:
    name = socket.gethostname()
  except OSError:
    return UNKNOWN_HOST
  return name or UNKNOWN_HOST


def enrich(
  body: Dict[str, Any],
  ts: Any,
  tag: str,
  *,
  log_type: str,
  output_id: str,
) -> Dict[str, Any]:
  if "type" not in body and log_type:
    body["type"] = log_type
  if "output_id" not in body:
    body["output_id"] = output_id
  if "host" not in body:
    body["host"] = local_hostname()
  body[TIMESTAMP_KEY] = format_timestamp(ts)
  body[TAG_KEY] = tag
  return body


def serialize_record(
  ts: Any,
  tag: str,
  record: Any,
  *,
  log_type: str,
  output_id: str,
  dedot: DedotOptions = DedotOptions(),
) -> bytes:
  """Normalize, enrich and encode one record as a compact JSON line."""
  body = enrich(normalize(record, dedot), ts, tag, log_type=log_type, output_id=output_id)
  try:
    text = json.dumps(
      body,
      separators=(",", ":"),
      ensure_ascii=False,
      allow_nan=False,
      default=_json_default,
    )
  except (TypeError, ValueError) as exc:
    raise TransformError(f"failed to convert record to JSON: {exc}") from exc
  return text.encode("utf-8")


def _json_default(value: Any) -> Any:
  if isinstance(value, (datetime, date)):
    return value.isoformat()
  raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")
