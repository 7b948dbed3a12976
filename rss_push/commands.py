"""Chat text commands for managing subscriptions."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Collection, Optional
from urllib.parse import urlparse

from .delivery import MessageSink
from .errors import ConfigError
from .feeds import fetch_feed_entries
from .models import OutgoingMessage
from .runner import Fetcher, pull_latest
from .screenshot import Renderer
from .subscriptions import AddResult, SubscriptionStore

logger = logging.getLogger(__name__)

ADD_PATTERN = re.compile(r"^#rss添加\s*(\S*)$")
REMOVE_PATTERN = re.compile(r"^#rss移除\s*(\S*)$")
PULL_PATTERN = re.compile(r"^#rss拉取\s*(\S*)$")
LIST_PATTERN = re.compile(r"^#rss列表$")
FEED_URL_PATTERN = re.compile(r"(https?://\S+(?:\.atom|/feed))", re.IGNORECASE)

ADD_REPLIES = {
    AddResult.CREATED: "rss解析流设置成功..",
    AddResult.DESTINATION_ADDED: "群已添加到该rss订阅中..",
    AddResult.ALREADY_PRESENT: "该rss已存在并包含在该群聊..",
}


@dataclass
class CommandContext:
    """Where a command came from."""

    destination: str
    user_id: str


def validate_feed_url(url: Optional[str]) -> str:
    """Return ``url`` stripped, or raise ``ConfigError`` if it is not http(s)."""
    candidate = (url or "").strip()
    if not candidate:
        raise ConfigError("missing URL")
    parsed = urlparse(candidate)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ConfigError(f"invalid URL: {candidate}")
    return candidate


class CommandRouter:
    """Dispatches ``#rss`` commands; every command requires an admin user."""

    def __init__(
        self,
        store: SubscriptionStore,
        renderer: Renderer,
        sink: MessageSink,
        admins: Collection[str] = (),
        auto_add: bool = False,
        default_render_as_image: bool = True,
        fetcher: Fetcher = fetch_feed_entries,
    ):
        self.store = store
        self.renderer = renderer
        self.sink = sink
        self.admins = {str(admin) for admin in admins}
        self.auto_add = auto_add
        self.default_render_as_image = default_render_as_image
        self.fetcher = fetcher

    def is_privileged(self, ctx: CommandContext) -> bool:
        return str(ctx.user_id) in self.admins

    async def reply(self, ctx: CommandContext, text: str) -> None:
        await self.sink.send(ctx.destination, OutgoingMessage(text=text))

    async def handle(self, text: str, ctx: CommandContext) -> bool:
        """Run the command in ``text``; returns False when nothing matched."""
        text = text.strip()
        for pattern, handler in (
            (ADD_PATTERN, self.add_feed),
            (REMOVE_PATTERN, self.remove_feed),
            (PULL_PATTERN, self.pull_feed),
            (LIST_PATTERN, self.list_feeds),
        ):
            match = pattern.match(text)
            if match is None:
                continue
            if not self.is_privileged(ctx):
                logger.info("Rejected %r from unprivileged user %s", text, ctx.user_id)
                await self.reply(ctx, "权限不足")
                return True
            argument = match.group(1) if match.groups() else None
            await handler(ctx, argument)
            return True

        if self.auto_add:
            match = FEED_URL_PATTERN.search(text)
            if match and self.is_privileged(ctx):
                await self.add_feed(ctx, match.group(1))
                return True
        return False

    async def add_feed(self, ctx: CommandContext, url: Optional[str]) -> None:
        try:
            url = validate_feed_url(url)
        except ConfigError as exc:
            logger.info("Rejected subscription request: %s", exc)
            await self.reply(ctx, "请输入有效的RSS链接")
            return

        _, result = self.store.add(
            url, ctx.destination, render_as_image=self.default_render_as_image
        )
        await self.reply(ctx, ADD_REPLIES[result])

    async def remove_feed(self, ctx: CommandContext, argument: Optional[str]) -> None:
        if not argument or not argument.isdigit():
            await self.reply(ctx, "请指定要移除的订阅编号，例如：#rss移除1")
            return

        try:
            subscription = self.store.remove_destination(int(argument), ctx.destination)
        except KeyError:
            await self.reply(ctx, "编号无效，请发送 #rss列表 查看正确编号。")
            return
        except LookupError:
            await self.reply(ctx, "当前群组未订阅此源，无需移除。")
            return
        await self.reply(ctx, f"已取消订阅：{subscription.url}")

    async def pull_feed(self, ctx: CommandContext, url: Optional[str]) -> None:
        try:
            url = validate_feed_url(url)
        except ConfigError:
            await self.reply(ctx, "请提供RSS链接")
            return

        async def reply(message: OutgoingMessage) -> None:
            await self.sink.send(ctx.destination, message)

        await pull_latest(url, self.renderer, reply, fetcher=self.fetcher)

    async def list_feeds(self, ctx: CommandContext, _argument: Optional[str] = None) -> None:
        subscriptions = self.store.list_for_destination(ctx.destination)
        if not subscriptions:
            await self.reply(ctx, "当前群组暂无任何RSS订阅。")
            return

        lines = [f"≡ 当前群组订阅列表 ({len(subscriptions)}) ≡"]
        lines.extend(f"[{item.id}] {item.url}" for item in subscriptions)
        lines.append("----------------")
        lines.append("提示: 使用 #rss移除+编号 取消订阅")
        await self.reply(ctx, "\n".join(lines))
