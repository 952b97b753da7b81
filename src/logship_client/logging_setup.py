from __future__ import annotations

import logging
import sys
import traceback
from logging import Handler, LogRecord
from typing import TYPE_CHECKING, Any, Dict, Mapping, Optional

from .config import resolve_output_id, settings_from_env
from .models import Result

if TYPE_CHECKING:
  from .registry import OutputInstance, OutputRegistry

LIBRARY_LOGGER = "logship_client"
# Never shipped: their lines carry the listener URL with the token, and they
# log from inside a send.
SKIPPED_LOGGERS = (LIBRARY_LOGGER, "httpx", "httpcore")
CONSOLE_FORMAT = "%(asctime)s [%(name)s] %(levelname)s %(message)s"


def get_output_logger(output_id: str, debug: bool = False) -> logging.Logger:
  """
  Logger for one output instance. The debug flag turns on per-record tracing.
  """
  logger = logging.getLogger(f"{LIBRARY_LOGGER}.output.{output_id}")
  logger.setLevel(logging.DEBUG if debug else logging.NOTSET)
  return logger


def configure_logging(level: int = logging.INFO) -> None:
  """Console logging for the command line tool."""
  root = logging.getLogger()
  if not root.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root.addHandler(handler)
  logging.getLogger(LIBRARY_LOGGER).setLevel(level)


def _is_skipped(name: str) -> bool:
  return any(name == prefix or name.startswith(prefix + ".") for prefix in SKIPPED_LOGGERS)


class ShippingHandler(Handler):
  """
  Logging handler that ships Python log records through an output instance.

  Records are sent synchronously into the instance's bulk; the network is
  only touched when the bulk is full, on flush() and on close().
  """

  def __init__(self, instance: "OutputInstance", tag: str = "python") -> None:
    super().__init__()
    self._instance = instance
    self._tag = tag
    self.last_result = Result.OK

  @property
  def instance(self) -> "OutputInstance":
    return self._instance

  def emit(self, record: LogRecord) -> None:
    if _is_skipped(record.name):
      return
    try:
      payload: Dict[str, Any] = {
        "message": record.getMessage(),
        "level": record.levelname,
        "logger": record.name,
      }

      if record.exc_info:
        _type, _value, _tb = record.exc_info
        if _type is not None:
          payload["exception_type"] = _type.__name__
        if _tb is not None:
          payload["stacktrace"] = "".join(traceback.format_exception(_type, _value, _tb))

      if getattr(record, "pathname", None):
        payload["file_path"] = record.pathname
      if getattr(record, "lineno", None) is not None:
        payload["line_no"] = record.lineno

      data = self._instance.serialize(record.created, self._tag, payload)
      self.last_result = self._instance.client.send(data)
    except Exception:
      self.handleError(record)

  def flush(self) -> None:
    self.acquire()
    try:
      self.last_result = self._instance.client.flush()
    finally:
      self.release()

  def close(self) -> None:
    try:
      self.flush()
    finally:
      super().close()


def setup_logging(
  logger: Optional[logging.Logger] = None,
  *,
  registry: "OutputRegistry",
  settings: Optional[Mapping[str, Any]] = None,
  output_id: Optional[str] = None,
  tag: str = "python",
) -> Optional[ShippingHandler]:
  """
  Attach a ShippingHandler to a logger (the root logger by default).

  The output is configured from `settings`, or from LOGSHIP_* environment
  variables when none are given. Returns None, leaving logging untouched,
  if the output cannot be configured.
  """
  target_logger = logger or logging.getLogger()

  for existing in target_logger.handlers:
    if isinstance(existing, ShippingHandler):
      return existing

  if settings is None:
    settings = settings_from_env()
  if registry.configure(output_id, settings) is not Result.OK:
    return None

  handler = ShippingHandler(registry.for_instance(resolve_output_id(settings, output_id)), tag=tag)
  target_logger.addHandler(handler)
  return handler
