from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from typing import IO, Iterator, List, NoReturn, Optional

from pydantic import ValidationError

from .config import (
  DEFAULT_OUTPUT_ID,
  ConfigError,
  OutputConfig,
  load_settings_file,
  settings_from_env,
)
from .host import HostRecord, StreamAdapter, deliver_batch
from .logging_setup import configure_logging
from .models import InboundEvent, Result
from .registry import OutputRegistry

EXIT_OK = 0
EXIT_USAGE = 1
EXIT_CONFIG = 2
EXIT_CODES = {Result.OK: EXIT_OK, Result.RETRY: 3, Result.ERROR: 4}

_logger = logging.getLogger("logship_client.cli")


def main(argv: list[str] | None = None) -> NoReturn:
  argv = list(sys.argv[1:] if argv is None else argv)

  if not argv or argv[0] not in {"ship", "check"}:
    print("Usage: python -m logship_client {ship|check}", file=sys.stderr)
    print("  ship   - Send NDJSON events from a file or stdin to the listener", file=sys.stderr)
    print("  check  - Validate output configuration and print a summary", file=sys.stderr)
    sys.exit(EXIT_USAGE)

  if argv[0] == "ship":
    sys.exit(_run_ship(argv[1:]))
  sys.exit(_run_check(argv[1:]))


def _load_settings(config_path: Optional[str]) -> List[dict]:
  if config_path:
    return load_settings_file(config_path)
  return [settings_from_env()]


def _run_check(args: list[str]) -> int:
  parser = argparse.ArgumentParser(
    prog="logship_client check",
    description="Validate output configuration",
  )
  parser.add_argument("--config", default=None, help="YAML file with an 'outputs' list (default: LOGSHIP_* env vars)")
  opts = parser.parse_args(args)
  configure_logging(logging.WARNING)

  try:
    configs = [OutputConfig.from_settings(settings) for settings in _load_settings(opts.config)]
  except (ConfigError, OSError) as exc:
    print(f"Configuration error: {exc}", file=sys.stderr)
    return EXIT_CONFIG

  if not configs:
    print("Configuration error: no outputs configured", file=sys.stderr)
    return EXIT_CONFIG

  for config in configs:
    print(json.dumps(config.describe(), indent=2))
  return EXIT_OK


def _run_ship(args: list[str]) -> int:
  parser = argparse.ArgumentParser(
    prog="logship_client ship",
    description="Ship NDJSON events ({\"time\", \"tag\", \"record\"} per line) in gzip bulks",
  )
  parser.add_argument("input", nargs="?", default="-", help="Input file (default: stdin)")
  parser.add_argument("--config", default=None, help="YAML file with an 'outputs' list (default: LOGSHIP_* env vars)")
  parser.add_argument("--output-id", default=None, help="Output to deliver to (default: the only configured one)")
  parser.add_argument("--tag", default="logship", help="Tag for events that carry none (default: logship)")
  parser.add_argument("--batch-size", type=int, default=1000, help="Events per chunk (default: 1000)")
  parser.add_argument("--debug", action="store_true", help="Verbose logging")
  opts = parser.parse_args(args)
  configure_logging(logging.DEBUG if opts.debug else logging.INFO)

  if opts.batch_size < 1:
    parser.error("--batch-size must be at least 1")

  try:
    all_settings = _load_settings(opts.config)
  except (ConfigError, OSError) as exc:
    print(f"Configuration error: {exc}", file=sys.stderr)
    return EXIT_CONFIG

  registry = OutputRegistry()
  for settings in all_settings:
    registry.configure(None, settings)
  if not len(registry):
    print("Configuration error: no usable outputs", file=sys.stderr)
    return EXIT_CONFIG

  output_id = opts.output_id
  if output_id is None and len(registry) == 1:
    output_id = registry.ids()[0]
  if (output_id or DEFAULT_OUTPUT_ID) not in registry:
    print(
      f"Configuration error: unknown output id {output_id or DEFAULT_OUTPUT_ID!r}, "
      f"configured: {', '.join(registry.ids())}",
      file=sys.stderr,
    )
    registry.close()
    return EXIT_CONFIG

  try:
    stream = sys.stdin if opts.input == "-" else open(opts.input, "r", encoding="utf-8")
  except OSError as exc:
    print(f"Cannot read input: {exc}", file=sys.stderr)
    registry.close()
    return EXIT_USAGE

  result = Result.OK
  try:
    try:
      for chunk in _chunks(_read_events(stream), opts.batch_size):
        result = result.combine(
          deliver_batch(registry, StreamAdapter(chunk), opts.tag, output_id)
        )
    finally:
      if stream is not sys.stdin:
        stream.close()
  finally:
    for final in registry.close().values():
      result = result.combine(final)

  _logger.info("shipping finished: %s", result.value)
  return EXIT_CODES[result]


def _read_events(stream: IO[str]) -> Iterator[HostRecord]:
  for lineno, line in enumerate(stream, start=1):
    line = line.strip()
    if not line:
      continue
    try:
      event = InboundEvent.model_validate_json(line)
    except ValidationError as exc:
      _logger.warning("skipping line %d: %s", lineno, exc.errors()[0].get("msg", exc))
      continue
    ts = event.time if event.time is not None else time.time()
    yield HostRecord(time=ts, tag=event.tag, record=event.record)


def _chunks(events: Iterator[HostRecord], size: int) -> Iterator[List[HostRecord]]:
  chunk: List[HostRecord] = []
  for event in events:
    chunk.append(event)
    if len(chunk) >= size:
      yield chunk
      chunk = []
  if chunk:
    yield chunk


if __name__ == "__main__":
  main()
