from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import quote, urlparse

import yaml

from .models import OutputsFile

DEFAULT_URL = "https://listener.logz.io:8071"
DEFAULT_OUTPUT_ID = "logzio_output_1"
DEFAULT_LOG_TYPE = "logzio-fluent-bit"
DEFAULT_DEDOT_SEPARATOR = "_"

MEGABYTE = 1024 * 1024
MIN_BULK_SIZE_MB = 1
MAX_BULK_SIZE_MB = 9
DEFAULT_BULK_SIZE_MB = 9

# The remote side may be asleep; never stall the pipeline longer than this.
REQUEST_TIMEOUT_SECONDS = 10.0

ENV_PREFIX = "LOGSHIP_"

SETTINGS_KEYS = (
  "id",
  "logzio_url",
  "logzio_token",
  "logzio_type",
  "logzio_debug",
  "dedot_enabled",
  "dedot_nested",
  "dedot_new_separator",
  "proxy_host",
  "proxy_user",
  "proxy_pass",
  "headers",
  "logzio_bulk_size_mb",
)

RESERVED_HEADERS = frozenset({"content-type", "content-encoding"})

_TRUE = {"1", "t", "T", "TRUE", "true", "True"}
_FALSE = {"0", "f", "F", "FALSE", "false", "False"}

_logger = logging.getLogger(__name__)


class ConfigError(ValueError):
  """Raised when an output cannot be configured at all."""


@dataclass(frozen=True)
class DedotOptions:
  enabled: bool = False
  nested: bool = False
  separator: str = DEFAULT_DEDOT_SEPARATOR

  def __post_init__(self) -> None:
    if self.separator in ("", "."):
      object.__setattr__(self, "separator", DEFAULT_DEDOT_SEPARATOR)


@dataclass(frozen=True)
class ClientOptions:
  """
  Every option the delivery client recognizes, validated in one place.

  bulk_size_bytes may be 0 (every record flushes the previous one); values
  below 0 or above MAX_BULK_SIZE_MB fall back to the default.
  """

  token: str
  url: str = DEFAULT_URL
  bulk_size_bytes: int = DEFAULT_BULK_SIZE_MB * MEGABYTE
  headers: Dict[str, str] = field(default_factory=dict)
  proxy_url: Optional[str] = None
  timeout: float = REQUEST_TIMEOUT_SECONDS
  debug: bool = False

  def __post_init__(self) -> None:
    if not self.token:
      raise ConfigError("required parameter 'logzio_token' is missing")
    if not self.url:
      object.__setattr__(self, "url", DEFAULT_URL)
    if self.bulk_size_bytes < 0 or self.bulk_size_bytes > MAX_BULK_SIZE_MB * MEGABYTE:
      _logger.warning(
        "bulk size %d bytes out of range, falling back to %d MB",
        self.bulk_size_bytes,
        DEFAULT_BULK_SIZE_MB,
      )
      object.__setattr__(self, "bulk_size_bytes", DEFAULT_BULK_SIZE_MB * MEGABYTE)

  @property
  def endpoint(self) -> str:
    return self.url.rstrip("/") + "/"


@dataclass(frozen=True)
class OutputConfig:
  """
  Configuration of one output instance.
  """

  output_id: str
  token: str
  url: str = DEFAULT_URL
  log_type: str = DEFAULT_LOG_TYPE
  debug: bool = False
  dedot: DedotOptions = field(default_factory=DedotOptions)
  proxy_host: str = ""
  proxy_user: str = ""
  proxy_pass: str = ""
  headers: Dict[str, str] = field(default_factory=dict)
  bulk_size_mb: int = DEFAULT_BULK_SIZE_MB

  def __post_init__(self) -> None:
    if not self.token:
      raise ConfigError("required parameter 'logzio_token' is missing")
    if not self.output_id:
      object.__setattr__(self, "output_id", DEFAULT_OUTPUT_ID)

  @classmethod
  def from_settings(
    cls,
    settings: Mapping[str, Any],
    output_id: Optional[str] = None,
  ) -> "OutputConfig":
    """
    Build a config from string key/value settings, as a host supplies them.

    Only a missing token is fatal. Every other unusable value falls back to
    its default and is logged.
    """
    output_id = resolve_output_id(settings, output_id)

    token = _text(settings.get("logzio_token"))
    if not token:
      raise ConfigError("required parameter 'logzio_token' is missing")

    url = _text(settings.get("logzio_url"))
    if not url:
      _logger.debug("[%s] using default url: %s", output_id, DEFAULT_URL)
      url = DEFAULT_URL
    else:
      _check_url(url, output_id)

    log_type = _text(settings.get("logzio_type"))
    if not log_type:
      _logger.debug("[%s] using default log type: %s", output_id, DEFAULT_LOG_TYPE)
      log_type = DEFAULT_LOG_TYPE

    dedot_enabled = parse_bool(settings.get("dedot_enabled"), False, "dedot_enabled")
    dedot = DedotOptions()
    if dedot_enabled:
      separator = _text(
        settings.get("dedot_new_separator", settings.get("dedot_new_seperator"))
      )
      if separator in ("", "."):
        _logger.debug("[%s] invalid dedot separator %r, using '_'", output_id, separator)
        separator = DEFAULT_DEDOT_SEPARATOR
      dedot = DedotOptions(
        enabled=True,
        nested=parse_bool(settings.get("dedot_nested"), False, "dedot_nested"),
        separator=separator,
      )

    return cls(
      output_id=output_id,
      token=token,
      url=url,
      log_type=log_type,
      debug=parse_bool(settings.get("logzio_debug"), False, "logzio_debug"),
      dedot=dedot,
      proxy_host=_text(settings.get("proxy_host")),
      proxy_user=_text(settings.get("proxy_user")),
      proxy_pass=_text(settings.get("proxy_pass")),
      headers=parse_headers(settings.get("headers")),
      bulk_size_mb=parse_bulk_size_mb(settings.get("logzio_bulk_size_mb")),
    )

  @property
  def proxy_url(self) -> Optional[str]:
    return build_proxy_url(self.proxy_host, self.proxy_user, self.proxy_pass)

  def client_options(self) -> ClientOptions:
    return ClientOptions(
      token=self.token,
      url=self.url,
      bulk_size_bytes=self.bulk_size_mb * MEGABYTE,
      headers=dict(self.headers),
      proxy_url=self.proxy_url,
      debug=self.debug,
    )

  def describe(self) -> Dict[str, Any]:
    """Summary safe to print: the token and proxy password are masked."""
    return {
      "id": self.output_id,
      "url": self.url,
      "token": _mask(self.token),
      "type": self.log_type,
      "debug": self.debug,
      "dedot": {
        "enabled": self.dedot.enabled,
        "nested": self.dedot.nested,
        "separator": self.dedot.separator,
      },
      "proxy": self.proxy_host or None,
      "headers": sorted(self.headers),
      "bulk_size_mb": self.bulk_size_mb,
    }


def resolve_output_id(settings: Mapping[str, Any], output_id: Optional[str] = None) -> str:
  """Id an output is registered under: explicit, then the `id` setting, then the default."""
  return _text(output_id) or _text(settings.get("id")) or DEFAULT_OUTPUT_ID


def parse_bool(value: Any, default: bool, name: str = "value") -> bool:
  """
  Parse a boolean setting using the spellings fluent-bit configs use.
  """
  if isinstance(value, bool):
    return value
  if value is None or value == "":
    return default
  text = str(value).strip()
  if text in _TRUE:
    return True
  if text in _FALSE:
    return False
  _logger.debug("failed parsing %s value %r, set to %s", name, value, default)
  return default


def parse_bulk_size_mb(value: Any) -> int:
  if value is None or value == "":
    return DEFAULT_BULK_SIZE_MB
  try:
    size = int(str(value).strip())
  except ValueError:
    _logger.warning(
      "invalid logzio_bulk_size_mb %r, falling back to %d MB", value, DEFAULT_BULK_SIZE_MB
    )
    return DEFAULT_BULK_SIZE_MB
  if size < MIN_BULK_SIZE_MB or size > MAX_BULK_SIZE_MB:
    _logger.warning(
      "logzio_bulk_size_mb %d outside [%d, %d], falling back to %d MB",
      size,
      MIN_BULK_SIZE_MB,
      MAX_BULK_SIZE_MB,
      DEFAULT_BULK_SIZE_MB,
    )
    return DEFAULT_BULK_SIZE_MB
  return size


def parse_headers(value: Any) -> Dict[str, str]:
  """
  Parse "Key:Value" pairs separated by commas.

  A mapping is accepted as-is (YAML configs). Malformed entries are skipped
  and duplicate keys overwrite, both with a warning.
  """
  headers: Dict[str, str] = {}
  if not value:
    return headers

  if isinstance(value, Mapping):
    pairs = [(str(k), str(v)) for k, v in value.items()]
  else:
    pairs = []
    for part in str(value).split(","):
      part = part.strip()
      if not part:
        continue
      key, sep, val = part.partition(":")
      if not sep or not key.strip():
        _logger.warning("skipping malformed header %r, expected Key:Value", part)
        continue
      pairs.append((key, val))

  for key, val in pairs:
    key = key.strip()
    val = val.strip()
    if key.lower() in RESERVED_HEADERS:
      _logger.warning("header %r is set by the client and cannot be overridden", key)
      continue
    if key in headers:
      _logger.warning("duplicate header %r, overriding previous value", key)
    headers[key] = val
  return headers


def build_proxy_url(host: str, user: str = "", password: str = "") -> Optional[str]:
  if not host:
    return None
  if user and password:
    return f"http://{quote(user, safe='')}:{quote(password, safe='')}@{host}"
  return f"http://{host}"


def settings_from_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
  """
  Collect settings from LOGSHIP_<KEY> environment variables.

  For example LOGSHIP_LOGZIO_TOKEN supplies the logzio_token setting.
  """
  env = os.environ if environ is None else environ
  settings: Dict[str, str] = {}
  for key in SETTINGS_KEYS:
    value = env.get(ENV_PREFIX + key.upper())
    if value is not None:
      settings[key] = value
  return settings


def load_settings_file(path: Union[str, Path]) -> List[Dict[str, Any]]:
  """
  Load output settings from a YAML file with a top-level `outputs` list.
  """
  text = Path(path).read_text(encoding="utf-8")
  try:
    data = yaml.safe_load(text) or {}
  except yaml.YAMLError as exc:
    raise ConfigError(f"invalid YAML in {path}: {exc}") from exc
  if not isinstance(data, dict):
    raise ConfigError(f"{path}: expected a mapping with an 'outputs' list")
  try:
    parsed = OutputsFile.model_validate(data)
  except ValueError as exc:
    raise ConfigError(f"{path}: {exc}") from exc
  return parsed.outputs


def _text(value: Any) -> str:
  if value is None:
    return ""
  return str(value).strip()


def _check_url(url: str, output_id: str) -> None:
  parsed = urlparse(url)
  if parsed.scheme not in ("http", "https") or not parsed.netloc:
    _logger.warning(
      "[%s] listener url %r does not look like an http(s) URL", output_id, url
    )


def _mask(secret: str) -> str:
  if len(secret) <= 4:
    return "****"
  return "*" * (len(secret) - 4) + secret[-4:]
