import json
import logging
import textwrap

import pytest

from rss_push import cli
from rss_push.delivery import LoggingSink, OneBotSink
from rss_push.models import CycleReport


@pytest.fixture
def restore_root_logger():
    original_handlers = list(logging.getLogger().handlers)
    original_level = logging.getLogger().level
    for handler in logging.getLogger().handlers[:]:
        logging.getLogger().removeHandler(handler)
    yield
    for handler in logging.getLogger().handlers[:]:
        logging.getLogger().removeHandler(handler)
        handler.close()
    for handler in original_handlers:
        logging.getLogger().addHandler(handler)
    logging.getLogger().setLevel(original_level)


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.xml"
    path.write_text(
        textwrap.dedent(
            f"""\
            <config>
              <database><connection-string>sqlite:///{tmp_path / 'state.db'}</connection-string></database>
              <pacing-seconds>0</pacing-seconds>
              <admins><user>1</user></admins>
            </config>
            """
        ),
        encoding="utf-8",
    )
    return path


def test_configure_logging_defaults_to_console_only(restore_root_logger):
    cli.configure_logging("INFO")

    handlers = logging.getLogger().handlers
    assert any(isinstance(handler, logging.StreamHandler) for handler in handlers)
    assert not any(isinstance(handler, logging.FileHandler) for handler in handlers)


def test_configure_logging_with_log_file_creates_file_handler(restore_root_logger, tmp_path):
    log_path = tmp_path / "logs" / "custom.log"

    cli.configure_logging("INFO", str(log_path))

    assert log_path.exists()
    assert any(
        isinstance(handler, logging.FileHandler) for handler in logging.getLogger().handlers
    )


def test_configure_logging_rejects_unknown_level(restore_root_logger):
    with pytest.raises(ValueError):
        cli.configure_logging("LOUD")


def test_build_sink_uses_onebot_when_configured(config_file, monkeypatch):
    config = cli.parse_app_config(str(config_file))
    assert isinstance(cli.build_sink(config), LoggingSink)

    config.onebot.api_url = "http://127.0.0.1:5700"
    monkeypatch.setenv("ONEBOT_ACCESS_TOKEN", "token")
    sink = cli.build_sink(config)
    assert isinstance(sink, OneBotSink)
    assert sink.session.headers["Authorization"] == "Bearer token"


def test_main_command_then_list(restore_root_logger, config_file, capsys):
    base = ["--config", str(config_file), "--log-level", "WARNING"]

    assert cli.main(base + ["command", "#rss添加 https://example.com/feed",
                            "--destination", "100", "--user", "1"]) == 0
    assert cli.main(base + ["list"]) == 0

    out = capsys.readouterr().out
    assert "[1] https://example.com/feed destinations=100 image=yes" in out


def test_main_unknown_chat_command_returns_error(restore_root_logger, config_file):
    base = ["--config", str(config_file), "--log-level", "WARNING"]

    assert cli.main(base + ["command", "hello", "--destination", "100", "--user", "1"]) == 1


def test_main_poll_once_prints_report(restore_root_logger, config_file, capsys, monkeypatch):
    base = ["--config", str(config_file), "--log-level", "WARNING"]
    monkeypatch.setattr(cli.DeliveryScheduler, "run_cycle", _empty_cycle)

    assert cli.main(base + ["poll-once"]) == 0

    report = json.loads(capsys.readouterr().out)
    assert report == {"skipped": False, "delivered": 0, "failed": 0, "feeds": []}


async def _empty_cycle(self, now=None):
    return CycleReport()


def test_main_prune_cache(restore_root_logger, config_file, capsys):
    base = ["--config", str(config_file), "--log-level", "WARNING"]

    assert cli.main(base + ["prune-cache", "--days", "30"]) == 0
    assert "Removed 0 records" in capsys.readouterr().out


def test_main_missing_config_returns_error(restore_root_logger, tmp_path):
    assert cli.main(["--config", str(tmp_path / "missing.xml"), "list"]) == 1
