from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Union

from pydantic import BaseModel, Field

# Status codes understood by the fluent-bit output plugin API.
FLB_ERROR = 0
FLB_OK = 1
FLB_RETRY = 2


class Result(str, Enum):
  """
  Outcome of a send or flush, surfaced to the host pipeline.
  """

  OK = "ok"
  RETRY = "retryable-error"
  ERROR = "fatal-error"

  @property
  def flb_code(self) -> int:
    return _FLB_CODES[self]

  @property
  def severity(self) -> int:
    return _SEVERITY[self]

  def combine(self, other: "Result") -> "Result":
    """
    Fold two outcomes into one.

    RETRY wins over ERROR so that a host redelivers a chunk when any part of
    it may still succeed.
    """
    return self if self.severity >= other.severity else other

  @classmethod
  def worst(cls, results: Iterable["Result"]) -> "Result":
    outcome = cls.OK
    for result in results:
      outcome = outcome.combine(result)
    return outcome


_FLB_CODES = {Result.OK: FLB_OK, Result.RETRY: FLB_RETRY, Result.ERROR: FLB_ERROR}
_SEVERITY = {Result.OK: 0, Result.ERROR: 1, Result.RETRY: 2}


class InboundEvent(BaseModel):
  """
  One decoded event read by the command line shipper (one NDJSON line).
  """

  time: Optional[Union[int, float, List[Any]]] = Field(
    default=None, description="Unix seconds, or [seconds, metadata]"
  )
  tag: Optional[str] = None
  record: Dict[str, Any]


class OutputsFile(BaseModel):
  """
  Shape of a YAML configuration file.
  """

  outputs: List[Dict[str, Any]] = Field(default_factory=list)
