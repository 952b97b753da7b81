from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

import httpx

from .config import DEFAULT_OUTPUT_ID, ConfigError, OutputConfig
from .logging_setup import get_output_logger
from .models import Result
from .transform import serialize_record
from .transport import DeliveryClient

_logger = logging.getLogger(__name__)


class UnknownOutputError(KeyError):
  """No output is configured under the requested id."""


@dataclass(frozen=True)
class OutputInstance:
  """One configured destination: its settings, client and logger."""

  config: OutputConfig
  client: DeliveryClient
  logger: logging.Logger

  @property
  def output_id(self) -> str:
    return self.config.output_id

  def serialize(self, ts: Any, tag: str, record: Any) -> bytes:
    return serialize_record(
      ts,
      tag,
      record,
      log_type=self.config.log_type,
      output_id=self.config.output_id,
      dedot=self.config.dedot,
    )


class OutputRegistry:
  """
  Output instances keyed by id.

  Lookups read an immutable snapshot and take no lock. Writes are rare
  (configuration time) and replace the snapshot under a lock.
  """

  def __init__(self) -> None:
    self._outputs: Mapping[str, OutputInstance] = {}
    self._lock = threading.Lock()

  def add(
    self,
    config: OutputConfig,
    http_client: Optional[httpx.Client] = None,
  ) -> OutputInstance:
    logger = get_output_logger(config.output_id, config.debug)
    client = DeliveryClient(config.client_options(), http_client=http_client, logger=logger)
    instance = OutputInstance(config=config, client=client, logger=logger)

    with self._lock:
      previous = self._outputs.get(config.output_id)
      outputs = dict(self._outputs)
      outputs[config.output_id] = instance
      self._outputs = outputs

    if previous is not None:
      logger.warning("output_id %s already exists, overriding", config.output_id)
      result = previous.client.close()
      if result is not Result.OK:
        logger.warning("final flush of replaced output %s: %s", config.output_id, result.value)
    return instance

  def configure(
    self,
    output_id: Optional[str],
    settings: Mapping[str, Any],
    http_client: Optional[httpx.Client] = None,
  ) -> Result:
    """
    Build and register an output from host settings.

    Returns ERROR, registering nothing, when the settings are unusable.
    """
    try:
      config = OutputConfig.from_settings(settings, output_id=output_id)
    except ConfigError as exc:
      _logger.error(
        "failed to initialize output %s: %s", output_id or settings.get("id") or DEFAULT_OUTPUT_ID, exc
      )
      return Result.ERROR
    self.add(config, http_client=http_client)
    return Result.OK

  def for_instance(self, output_id: Optional[str] = None) -> OutputInstance:
    key = output_id or DEFAULT_OUTPUT_ID
    instance = self._outputs.get(key)
    if instance is None:
      raise UnknownOutputError(key)
    return instance

  def ids(self) -> List[str]:
    return list(self._outputs)

  def __contains__(self, output_id: object) -> bool:
    return output_id in self._outputs

  def __len__(self) -> int:
    return len(self._outputs)

  def flush_all(self) -> Dict[str, Result]:
    results: Dict[str, Result] = {}
    for output_id, instance in self._outputs.items():
      results[output_id] = self._finish(instance, instance.client.flush)
    return results

  def close(self) -> Dict[str, Result]:
    """
    Final flush of every output, then release their connections.

    Failures are logged and reported in the returned mapping, never raised.
    """
    with self._lock:
      outputs = self._outputs
      self._outputs = {}
    return {
      output_id: self._finish(instance, instance.client.close)
      for output_id, instance in outputs.items()
    }

  @staticmethod
  def _finish(instance: OutputInstance, action) -> Result:
    try:
      result = action()
    except Exception:
      instance.logger.exception("final flush of output %s failed", instance.output_id)
      return Result.RETRY
    if result is not Result.OK:
      instance.logger.warning("final flush of output %s: %s", instance.output_id, result.value)
    return result
