"""Headless Chromium screenshots of generated HTML."""

from __future__ import annotations

import asyncio
import enum
import logging
import math
import uuid
from pathlib import Path
from typing import Callable, Optional

from playwright.async_api import Browser, Playwright, async_playwright

from .errors import RenderError
from .models import FeedEntry, RenderedImage
from .renderers import build_code_html, build_entry_html, build_markdown_html

logger = logging.getLogger(__name__)

LAUNCH_ARGS = ["--no-sandbox", "--disable-setuid-sandbox"]
COMPLETE_SELECTOR = "#render-complete"
NAVIGATION_TIMEOUT_MS = 30_000

_MEASURE_JS = """
() => {
  const body = document.body;
  const rect = body.getBoundingClientRect();
  return {
    width: Math.max(body.scrollWidth, rect.width),
    height: Math.max(body.scrollHeight, rect.height),
  };
}
"""


class BrowserState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    CLOSED = "closed"


class Renderer:
    """Turns HTML into PNG files using one shared browser instance.

    The browser is launched on first use and reused afterwards; each render
    gets its own page so interleaved calls never share content. Failures are
    logged and reported as ``None`` so callers can fall back to text.
    """

    def __init__(
        self,
        scratch_dir: Path | str = Path("temp") / "html",
        timeout: float = 5.0,
        code_font_size: int = 16,
        markdown_font_size: int = 18,
        playwright_factory: Callable = async_playwright,
    ):
        self.scratch_dir = Path(scratch_dir)
        self.timeout = timeout
        self.code_font_size = code_font_size
        self.markdown_font_size = markdown_font_size
        self._playwright_factory = playwright_factory
        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._lock = asyncio.Lock()
        self.state = BrowserState.UNINITIALIZED

    async def ensure_ready(self) -> Browser:
        """Return a connected browser, launching one if needed."""
        async with self._lock:
            if self._browser is not None and self._browser.is_connected():
                return self._browser

            if self._browser is not None:
                logger.warning("Browser disconnected; relaunching")
                await self._shutdown()

            logger.info("Launching headless Chromium")
            try:
                self._playwright = await self._playwright_factory().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=True, args=LAUNCH_ARGS
                )
            except Exception as exc:
                await self._shutdown()
                self.state = BrowserState.UNINITIALIZED
                raise RenderError(f"Failed to launch browser: {exc}") from exc

            self.state = BrowserState.READY
            return self._browser

    async def render_html(self, html: str, prefix: str = "render") -> Optional[RenderedImage]:
        """Screenshot ``html`` sized to its content; ``None`` on any failure."""
        page = None
        path: Optional[Path] = None
        try:
            browser = await self.ensure_ready()
            page = await browser.new_page()
            await page.set_content(
                html, wait_until="networkidle", timeout=NAVIGATION_TIMEOUT_MS
            )
            await page.wait_for_selector(
                COMPLETE_SELECTOR, state="attached", timeout=self.timeout * 1000
            )
            size = await page.evaluate(_MEASURE_JS)
            width = max(1, math.ceil(size["width"]))
            height = max(1, math.ceil(size["height"]))
            await page.set_viewport_size({"width": width, "height": height})

            self.scratch_dir.mkdir(parents=True, exist_ok=True)
            path = self.scratch_dir / f"{prefix}_{uuid.uuid4().hex}.png"
            await page.screenshot(path=str(path), full_page=False)
        except Exception:
            logger.exception("Failed to render %s image", prefix)
            if path is not None:
                path.unlink(missing_ok=True)
            return None
        finally:
            if page is not None:
                try:
                    await page.close()
                except Exception as exc:  # noqa: BLE001
                    logger.warning("Failed to close render page: %s", exc)

        logger.info("Rendered %s image: %s (%dx%d)", prefix, path, width, height)
        return RenderedImage(path=path, width=width, height=height)

    async def _render(self, prefix: str, build: Callable[[], str]) -> Optional[RenderedImage]:
        try:
            html = build()
        except Exception:
            logger.exception("Failed to build %s markup", prefix)
            return None
        return await self.render_html(html, prefix=prefix)

    async def render_code(self, code: str, language: str = "text") -> Optional[RenderedImage]:
        return await self._render(
            "code", lambda: build_code_html(code, language, self.code_font_size)
        )

    async def render_markdown(self, text: str) -> Optional[RenderedImage]:
        return await self._render(
            "markdown", lambda: build_markdown_html(text, self.markdown_font_size)
        )

    async def render_feed_entry(self, entry: FeedEntry) -> Optional[RenderedImage]:
        return await self._render(
            "rss", lambda: build_entry_html(entry, self.markdown_font_size)
        )

    async def _shutdown(self) -> None:
        browser, self._browser = self._browser, None
        playwright, self._playwright = self._playwright, None
        if browser is not None:
            try:
                await browser.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to close browser: %s", exc)
        if playwright is not None:
            try:
                await playwright.stop()
            except Exception as exc:  # noqa: BLE001
                logger.warning("Failed to stop playwright: %s", exc)

    async def close(self) -> None:
        """Tear down the shared browser; a later render relaunches it."""
        async with self._lock:
            if self.state is BrowserState.UNINITIALIZED and self._browser is None:
                return
            await self._shutdown()
            self.state = BrowserState.CLOSED
            logger.info("Renderer closed")
