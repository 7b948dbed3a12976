"""Command-line interface for the rss_push application."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import pprint
import shutil
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

from .cache import DedupCache
from .commands import CommandContext, CommandRouter
from .config import AppConfig, parse_app_config, parse_env_config
from .db import get_session_factory, init_engine
from .delivery import LoggingSink, MessageSink, OneBotSink
from .models import OutgoingMessage, RenderedImage
from .runner import DeliveryScheduler, PollingService, pull_latest
from .screenshot import Renderer
from .subscriptions import SubscriptionStore

logger = logging.getLogger(__name__)


@dataclass
class Components:
    """Everything wired together from an :class:`AppConfig`."""

    store: SubscriptionStore
    cache: DedupCache
    renderer: Renderer
    sink: MessageSink
    scheduler: DeliveryScheduler
    router: CommandRouter


def build_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Push new RSS/Atom entries to chat groups as rendered images."
    )
    parser.add_argument(
        "--config",
        default="configs/config.xml",
        help="Path to the main configuration XML file.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO, WARNING). Overrides config.",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional path to a log file. Overrides config.",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("run", help="Poll subscriptions periodically until interrupted.")
    sub.add_parser("poll-once", help="Run a single polling cycle.")
    sub.add_parser("list", help="Print all subscriptions.")

    pull = sub.add_parser("pull", help="Render a preview of the newest entry of a feed.")
    pull.add_argument("url")
    pull.add_argument("--output", default="rss-preview.png")

    code = sub.add_parser("render-code", help="Render a source file as an image.")
    code.add_argument("file")
    code.add_argument("--language", default="text")
    code.add_argument("--output", default="code.png")

    markdown = sub.add_parser("render-markdown", help="Render a Markdown file as an image.")
    markdown.add_argument("file")
    markdown.add_argument("--output", default="markdown.png")

    command = sub.add_parser("command", help="Process one chat command.")
    command.add_argument("text")
    command.add_argument("--destination", required=True)
    command.add_argument("--user", required=True)

    prune = sub.add_parser("prune-cache", help="Forget delivered entries older than N days.")
    prune.add_argument("--days", type=float, required=True)

    return parser


def configure_logging(level_name: str, log_file: Optional[str] = None) -> None:
    """Initialise logging according to options."""
    log_level = getattr(logging, level_name.upper(), None)
    if not isinstance(log_level, int):
        raise ValueError(f"Unsupported log level: {level_name}")

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    root_logger.setLevel(log_level)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        if log_path.parent and not log_path.parent.exists():
            log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)
        logger.debug(
            "Logger initialised with level %s and file output to %s",
            level_name.upper(),
            log_path,
        )
    else:
        logger.debug(
            "Logger initialised with console output at level %s", level_name.upper()
        )


def build_sink(config: AppConfig) -> MessageSink:
    if config.onebot.api_url:
        return OneBotSink(
            config.onebot.api_url,
            access_token=os.environ.get("ONEBOT_ACCESS_TOKEN"),
            timeout=config.onebot.timeout_seconds,
        )
    logger.warning("No OneBot API URL configured; messages will only be logged.")
    return LoggingSink()


def build_components(config: AppConfig, sink: Optional[MessageSink] = None) -> Components:
    engine = init_engine(config.database.connection_string)
    session_factory = get_session_factory(engine)
    store = SubscriptionStore(session_factory)
    cache = DedupCache(session_factory)
    renderer = Renderer(
        scratch_dir=config.renderer.scratch_dir,
        timeout=config.renderer.timeout_seconds,
        code_font_size=config.renderer.code_font_size,
        markdown_font_size=config.renderer.markdown_font_size,
    )
    sink = sink or build_sink(config)
    scheduler = DeliveryScheduler(
        store,
        cache,
        renderer,
        sink,
        pacing_seconds=config.pacing_seconds,
        entry_limit=config.entry_limit,
        max_age=timedelta(hours=config.max_age_hours),
    )
    router = CommandRouter(
        store,
        renderer,
        sink,
        admins=config.admins,
        auto_add=config.auto_add,
        default_render_as_image=config.render_as_image,
    )
    return Components(store, cache, renderer, sink, scheduler, router)


def _keep_image(image: Optional[RenderedImage], output: str) -> int:
    if image is None:
        logger.error("Rendering failed; see log for details.")
        return 1
    try:
        shutil.move(str(image.path), output)
    finally:
        image.path.unlink(missing_ok=True)
    print(output)
    return 0


async def _serve(components: Components, interval_seconds: float) -> None:
    service = PollingService(components.scheduler, interval_seconds=interval_seconds)
    service.ensure_started()
    try:
        await service.wait()
    finally:
        await service.stop()


async def _run_command(args: argparse.Namespace, config: AppConfig) -> int:
    components = build_components(config)
    try:
        if args.command == "run":
            await _serve(components, config.poll_interval_minutes * 60)
            return 0

        if args.command == "poll-once":
            report = await components.scheduler.run_cycle()
            print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
            return 0 if report.failed_count == 0 else 1

        if args.command == "list":
            for item in components.store.list_all():
                print(
                    f"[{item.id}] {item.url} "
                    f"destinations={','.join(item.destinations) or '-'} "
                    f"image={'yes' if item.render_as_image else 'no'}"
                )
            return 0

        if args.command == "pull":
            replies: List[str] = []

            async def reply(message: OutgoingMessage) -> None:
                if message.image is not None:
                    shutil.copyfile(message.image, args.output)
                    replies.append(args.output)
                elif message.text:
                    replies.append(message.text)

            ok = await pull_latest(args.url, components.renderer, reply)
            print("\n".join(replies))
            return 0 if ok else 1

        if args.command == "render-code":
            code = Path(args.file).read_text(encoding="utf-8")
            image = await components.renderer.render_code(code, args.language)
            return _keep_image(image, args.output)

        if args.command == "render-markdown":
            text = Path(args.file).read_text(encoding="utf-8")
            image = await components.renderer.render_markdown(text)
            return _keep_image(image, args.output)

        if args.command == "command":
            ctx = CommandContext(destination=args.destination, user_id=args.user)
            if not await components.router.handle(args.text, ctx):
                logger.error("Not a recognised command: %s", args.text)
                return 1
            return 0

        if args.command == "prune-cache":
            cutoff = datetime.now(timezone.utc) - timedelta(days=args.days)
            removed = components.cache.prune_before(cutoff)
            print(f"Removed {removed} records")
            return 0

        raise ValueError(f"Unknown command: {args.command}")
    finally:
        await components.renderer.close()


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        app_config = parse_app_config(args.config)

        if app_config.env_file:
            env_vars = parse_env_config(app_config.env_file)
            os.environ.update(env_vars)

        # CLI overrides config
        log_level = args.log_level or app_config.logging.level
        log_file = args.log_file or app_config.logging.file

        configure_logging(log_level, log_file)

        config_dict = dataclasses.asdict(app_config)
        if "@" in config_dict["database"]["connection_string"]:
            config_dict["database"]["connection_string"] = "***MASKED***"
        logger.info("Active Configuration:\n%s", pprint.pformat(config_dict))

        return asyncio.run(_run_command(args, app_config))
    except ValueError as exc:
        parser.error(str(exc))
    except (RuntimeError, FileNotFoundError) as exc:
        logger.error("%s", exc)
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down.")
        return 0
    except Exception:  # noqa: BLE001
        logger.exception("Unexpected error during execution.")
        return 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
