import logging
import threading

import pytest

from logship_client.config import DEFAULT_OUTPUT_ID, OutputConfig
from logship_client.models import Result
from logship_client.registry import OutputRegistry, UnknownOutputError

from conftest import LISTENER_URL, TEST_TOKEN


def settings(**extra):
  values = {"logzio_token": TEST_TOKEN, "logzio_url": LISTENER_URL}
  values.update(extra)
  return values


def test_configure_registers_instance(listener_client):
  registry = OutputRegistry()

  assert registry.configure("out1", settings(logzio_type="app"), http_client=listener_client) is Result.OK

  instance = registry.for_instance("out1")
  assert instance.output_id == "out1"
  assert instance.config.log_type == "app"
  assert "out1" in registry
  assert len(registry) == 1
  assert registry.ids() == ["out1"]


def test_default_id_is_used_when_none_given(listener_client):
  registry = OutputRegistry()
  registry.configure(None, settings(), http_client=listener_client)

  assert registry.ids() == [DEFAULT_OUTPUT_ID]
  assert registry.for_instance().output_id == DEFAULT_OUTPUT_ID
  assert registry.for_instance("").output_id == DEFAULT_OUTPUT_ID


def test_id_from_settings(listener_client):
  registry = OutputRegistry()
  registry.configure(None, settings(id="from-settings"), http_client=listener_client)
  assert registry.ids() == ["from-settings"]


def test_missing_token_is_not_registered(caplog):
  registry = OutputRegistry()

  with caplog.at_level(logging.ERROR, logger="logship_client.registry"):
    assert registry.configure("broken", {"logzio_url": LISTENER_URL}) is Result.ERROR

  assert "broken" not in registry
  assert "failed to initialize output broken" in caplog.text
  assert "logzio_token" in caplog.text


def test_unknown_id_raises():
  registry = OutputRegistry()
  with pytest.raises(UnknownOutputError):
    registry.for_instance("nope")
  with pytest.raises(KeyError):
    registry.for_instance()


def test_reconfigure_replaces_with_warning_and_flushes_old(listener, listener_client, caplog):
  registry = OutputRegistry()
  registry.configure("out1", settings(logzio_type="old"), http_client=listener_client)
  old = registry.for_instance("out1")
  old.client.send(b'{"pending":true}')

  with caplog.at_level(logging.WARNING):
    registry.configure("out1", settings(logzio_type="new"), http_client=listener_client)

  assert registry.for_instance("out1").config.log_type == "new"
  assert len(registry) == 1
  assert "output_id out1 already exists, overriding" in caplog.text
  assert listener.lines == ['{"pending":true}']


def test_debug_flag_sets_output_logger_level(listener_client):
  registry = OutputRegistry()
  registry.configure("loud", settings(logzio_debug="true"), http_client=listener_client)
  registry.configure("quiet", settings(), http_client=listener_client)

  assert registry.for_instance("loud").logger.level == logging.DEBUG
  assert registry.for_instance("quiet").logger.level == logging.NOTSET


def test_flush_all_reports_each_output(listener, listener_client):
  registry = OutputRegistry()
  registry.configure("a", settings(), http_client=listener_client)
  registry.configure("b", settings(), http_client=listener_client)
  registry.for_instance("a").client.send(b"from-a")
  registry.for_instance("b").client.send(b"from-b")

  assert registry.flush_all() == {"a": Result.OK, "b": Result.OK}
  assert sorted(listener.lines) == ["from-a", "from-b"]
  assert len(registry) == 2


def test_close_flushes_everything_and_never_raises(listener, listener_client, monkeypatch, caplog):
  registry = OutputRegistry()
  registry.configure("good", settings(), http_client=listener_client)
  registry.configure("exploding", settings(), http_client=listener_client)
  registry.for_instance("good").client.send(b"kept")

  def boom():
    raise RuntimeError("socket melted")

  monkeypatch.setattr(registry.for_instance("exploding").client, "close", boom)

  with caplog.at_level(logging.WARNING):
    results = registry.close()

  assert results == {"good": Result.OK, "exploding": Result.RETRY}
  assert listener.lines == ["kept"]
  assert "final flush of output exploding failed" in caplog.text
  assert len(registry) == 0


def test_close_reports_failed_final_flush(listener, listener_client, caplog):
  listener.status_code = 503
  registry = OutputRegistry()
  registry.configure("out1", settings(), http_client=listener_client)
  registry.for_instance("out1").client.send(b"doomed")

  with caplog.at_level(logging.WARNING):
    assert registry.close() == {"out1": Result.RETRY}
  assert "final flush of output out1" in caplog.text


def test_add_returns_instance(listener_client):
  registry = OutputRegistry()
  config = OutputConfig(output_id="direct", token=TEST_TOKEN, url=LISTENER_URL)

  instance = registry.add(config, http_client=listener_client)
  assert registry.for_instance("direct") is instance


def test_concurrent_lookups_during_reconfiguration(listener_client):
  registry = OutputRegistry()
  registry.configure("shared", settings(), http_client=listener_client)
  errors = []
  stop = threading.Event()

  def reader():
    while not stop.is_set():
      try:
        registry.for_instance("shared")
      except Exception as exc:  # pragma: no cover - failure path
        errors.append(exc)

  threads = [threading.Thread(target=reader) for _ in range(4)]
  for t in threads:
    t.start()
  for i in range(20):
    registry.configure("shared", settings(logzio_type=f"t{i}"), http_client=listener_client)
  stop.set()
  for t in threads:
    t.join()

  assert errors == []
  assert registry.for_instance("shared").config.log_type == "t19"
