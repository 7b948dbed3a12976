"""Configuration loading for rss_push."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from xml.etree import ElementTree as ET

logger = logging.getLogger(__name__)

DEFAULT_CONNECTION_STRING = "sqlite:///data/rss_push.db"


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class DatabaseConfig:
    connection_string: str = DEFAULT_CONNECTION_STRING


@dataclass
class RendererConfig:
    scratch_dir: str = "temp/html"
    timeout_seconds: float = 5.0
    code_font_size: int = 16
    markdown_font_size: int = 18


@dataclass
class OneBotConfig:
    api_url: Optional[str] = None
    timeout_seconds: float = 10.0


@dataclass
class AppConfig:
    env_file: Optional[str] = None
    poll_interval_minutes: float = 10.0
    pacing_seconds: float = 2.0
    entry_limit: int = 3
    max_age_hours: float = 48.0
    auto_add: bool = False
    render_as_image: bool = True
    admins: List[str] = field(default_factory=list)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    renderer: RendererConfig = field(default_factory=RendererConfig)
    onebot: OneBotConfig = field(default_factory=OneBotConfig)


def _resolve_path(base_path: Path, target_path: str) -> str:
    """Resolve a path relative to the base config file if it's not absolute."""
    target = Path(target_path)
    if target.is_absolute():
        return str(target)
    return str((base_path.parent / target).resolve())


def _resolve_sqlite_url(base_path: Path, connection_string: str) -> str:
    """Anchor relative sqlite file paths at the config file directory."""
    prefix = "sqlite:///"
    if not connection_string.startswith(prefix):
        return connection_string
    database = connection_string[len(prefix):]
    if not database or database == ":memory:" or Path(database).is_absolute():
        return connection_string
    return prefix + _resolve_path(base_path, database)


def _parse_bool(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("true", "1", "yes", "on")


def _parse_number(root: ET.Element, tag: str, default: float, cast=float):
    text = root.findtext(tag)
    if text is None or not text.strip():
        return default
    try:
        value = cast(text.strip())
    except ValueError as exc:
        raise ValueError(f"Invalid value for <{tag}>: {text!r}") from exc
    if value <= 0:
        raise ValueError(f"<{tag}> must be positive, got {value}")
    return value


def parse_env_config(path: str) -> Dict[str, str]:
    """Parse environment variables from XML."""
    env_vars = {}
    if not path:
        return env_vars

    logger.info("Loading environment configuration from %s", path)
    try:
        tree = ET.parse(path)
        root = tree.getroot()
        for var in root.findall("variable"):
            name = var.attrib.get("name")
            value = var.text
            if name and value:
                env_vars[name] = value.strip()
    except Exception as exc:
        logger.warning("Failed to load environment config: %s", exc)
        raise

    return env_vars


def parse_app_config(path: str) -> AppConfig:
    """Parse the main application configuration XML."""
    config_path = Path(path).resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    logger.info("Loading application configuration from %s", config_path)
    try:
        root = ET.parse(config_path).getroot()
    except ET.ParseError as exc:
        raise ValueError(f"Config file is not valid XML: {exc}") from exc

    config = AppConfig()

    env_text = root.findtext("env")
    if env_text and env_text.strip():
        config.env_file = _resolve_path(config_path, env_text.strip())

    config.poll_interval_minutes = _parse_number(
        root, "poll-interval-minutes", config.poll_interval_minutes
    )
    pacing = root.findtext("pacing-seconds")
    if pacing is not None and pacing.strip():
        try:
            config.pacing_seconds = float(pacing)
        except ValueError as exc:
            raise ValueError(f"Invalid value for <pacing-seconds>: {pacing!r}") from exc
        if config.pacing_seconds < 0:
            raise ValueError("<pacing-seconds> must not be negative")
    config.entry_limit = _parse_number(root, "entry-limit", config.entry_limit, int)
    config.max_age_hours = _parse_number(root, "max-age-hours", config.max_age_hours)
    config.auto_add = _parse_bool(root.findtext("auto-add"), config.auto_add)
    config.render_as_image = _parse_bool(
        root.findtext("render-as-image"), config.render_as_image
    )

    admins_node = root.find("admins")
    if admins_node is not None:
        config.admins = [
            user.text.strip()
            for user in admins_node.findall("user")
            if user.text and user.text.strip()
        ]

    db_node = root.find("database")
    if db_node is not None:
        connection_string = db_node.findtext("connection-string")
        if connection_string and connection_string.strip():
            config.database.connection_string = connection_string.strip()
    config.database.connection_string = _resolve_sqlite_url(
        config_path, config.database.connection_string
    )

    log_node = root.find("logging")
    if log_node is not None:
        config.logging.level = log_node.findtext("level", "INFO")
        log_file = log_node.findtext("file")
        if log_file:
            config.logging.file = _resolve_path(config_path, log_file)

    renderer_node = root.find("renderer")
    if renderer_node is not None:
        scratch_dir = renderer_node.findtext("scratch-dir")
        if scratch_dir and scratch_dir.strip():
            config.renderer.scratch_dir = scratch_dir.strip()
        config.renderer.timeout_seconds = _parse_number(
            renderer_node, "timeout-seconds", config.renderer.timeout_seconds
        )
        config.renderer.code_font_size = _parse_number(
            renderer_node, "code-font-size", config.renderer.code_font_size, int
        )
        config.renderer.markdown_font_size = _parse_number(
            renderer_node, "markdown-font-size", config.renderer.markdown_font_size, int
        )
    config.renderer.scratch_dir = _resolve_path(config_path, config.renderer.scratch_dir)

    onebot_node = root.find("onebot")
    if onebot_node is not None:
        api_url = onebot_node.findtext("api-url")
        if api_url and api_url.strip():
            config.onebot.api_url = api_url.strip()
        config.onebot.timeout_seconds = _parse_number(
            onebot_node, "timeout-seconds", config.onebot.timeout_seconds
        )

    return config
