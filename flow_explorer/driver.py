"""Browser driver: the single mutable browsing session the explorer walks with.

`Driver` is the interface the explorer consumes; `PlaywrightDriver` implements it
with Playwright's async API. Every command is a blocking request/response with a
timeout. Timeouts and missing elements surface as `TransientDriverError`; a dead
page, context or browser surfaces as `FatalDriverError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

from playwright.async_api import Browser, BrowserContext, Page, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import FatalDriverError, TransientDriverError
from .knowledge import Action, Backtrack, Click, Element, End, FormFill, Navigate

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Observation:
    """What the driver reports about the page it is currently on."""

    url: str
    title: str = ""


class Driver(Protocol):
    async def navigate(self, url: str) -> str:
        ...

    async def observe(self) -> Observation:
        ...

    async def list_candidate_elements(self, observation: Observation) -> List[Element]:
        ...

    async def apply(self, element: Optional[Element], action: Action) -> str:
        ...

    async def back(self) -> None:
        ...

    async def close(self) -> None:
        ...


_FATAL_MARKERS = (
    "has been closed",
    "target closed",
    "browser has disconnected",
    "connection closed",
)

_EXTRACT_ELEMENTS_JS = """
() => {
  const visible = (el) => {
    const r = el.getBoundingClientRect();
    const s = window.getComputedStyle(el);
    return r.width > 0 && r.height > 0 && s.visibility !== 'hidden' && s.display !== 'none';
  };
  const cssPath = (el) => {
    if (el.id) return '#' + CSS.escape(el.id);
    const testId = el.getAttribute('data-testid');
    if (testId) return `[data-testid="${testId}"]`;
    const parts = [];
    let node = el;
    while (node && node.nodeType === 1 && node !== document.documentElement) {
      if (node.id) { parts.unshift('#' + CSS.escape(node.id)); break; }
      let sel = node.tagName.toLowerCase();
      const parent = node.parentElement;
      if (parent) {
        const same = Array.from(parent.children).filter(c => c.tagName === node.tagName);
        if (same.length > 1) sel += `:nth-of-type(${same.indexOf(node) + 1})`;
      }
      parts.unshift(sel);
      node = parent;
    }
    return parts.join(' > ');
  };
  const labelOf = (el) => {
    const aria = el.getAttribute('aria-label');
    if (aria) return aria.trim();
    if (el.labels && el.labels.length) return (el.labels[0].innerText || '').trim();
    return (el.getAttribute('placeholder') || '').trim();
  };
  const fieldOf = (el) => ({
    locator: cssPath(el),
    name: el.getAttribute('name') || '',
    input_type: (el.tagName === 'INPUT' ? (el.type || 'text') : el.tagName).toLowerCase(),
    placeholder: el.getAttribute('placeholder') || '',
    label: labelOf(el),
    required: !!el.required,
    options: el.tagName === 'SELECT' ? Array.from(el.options).map(o => o.value).filter(v => v) : [],
  });
  const skipTypes = ['hidden', 'submit', 'button', 'reset', 'image'];
  const out = [];
  document.querySelectorAll('a[href]').forEach(a => {
    if (!visible(a)) return;
    out.push({kind: 'link', locator: cssPath(a), text: (a.innerText || '').trim().slice(0, 80), href: a.href});
  });
  document.querySelectorAll('button, [role="button"], input[type="button"]').forEach(b => {
    if (!visible(b) || b.closest('form')) return;
    const text = (b.innerText || b.value || b.getAttribute('aria-label') || '').trim();
    out.push({kind: 'button', locator: cssPath(b), text: text.slice(0, 80)});
  });
  document.querySelectorAll('form').forEach(f => {
    const controls = Array.from(f.querySelectorAll('input, select, textarea'))
      .filter(i => visible(i) && !skipTypes.includes((i.type || '').toLowerCase()));
    const submit = f.querySelector('button[type="submit"], input[type="submit"], button:not([type])');
    out.push({
      kind: 'form',
      locator: cssPath(f),
      text: (f.getAttribute('aria-label') || f.getAttribute('name') || f.id || '').trim(),
      fields: controls.map(fieldOf),
      submit_locator: submit ? cssPath(submit) : null,
    });
  });
  document.querySelectorAll('input, select, textarea').forEach(i => {
    if (i.closest('form') || !visible(i) || skipTypes.includes((i.type || '').toLowerCase())) return;
    out.push({kind: i.tagName === 'SELECT' ? 'select' : 'input', locator: cssPath(i), text: labelOf(i), fields: [fieldOf(i)]});
  });
  return out;
}
"""


class PlaywrightDriver:
    """One Chromium page driven through Playwright's async API.

    Use as an async context manager::

        async with PlaywrightDriver(headless=True) as driver:
            await driver.navigate("https://example.com")
    """

    def __init__(self, headless: bool = True, timeout_ms: int = 10_000, settle_ms: int = 500) -> None:
        self._headless = headless
        self._timeout_ms = timeout_ms
        self._settle_ms = settle_ms
        self._pw: Any = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

    async def __aenter__(self) -> "PlaywrightDriver":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def start(self) -> None:
        self._pw = await async_playwright().start()
        self._browser = await self._pw.chromium.launch(headless=self._headless)
        self._context = await self._browser.new_context()
        self._context.set_default_timeout(self._timeout_ms)
        self._page = await self._context.new_page()

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._pw is not None:
            await self._pw.stop()
            self._pw = None

    # ------------------------------------------------------------------
    @property
    def page(self) -> Page:
        if self._page is None or self._page.is_closed():
            raise FatalDriverError("browser page is not available")
        return self._page

    def _translate(self, exc: PlaywrightError, what: str) -> Exception:
        message = str(exc)
        if isinstance(exc, PlaywrightTimeoutError):
            return TransientDriverError(f"{what} timed out: {message}")
        if any(marker in message.lower() for marker in _FATAL_MARKERS):
            return FatalDriverError(f"{what}: {message}")
        return TransientDriverError(f"{what} failed: {message}")

    async def _settle(self) -> None:
        """Wait for the page to finish loading after a command; slow pages are not an error."""
        try:
            await self.page.wait_for_load_state("load", timeout=self._timeout_ms)
            await self.page.wait_for_timeout(self._settle_ms)
        except PlaywrightTimeoutError:
            logger.debug("Page did not reach 'load' within %sms", self._timeout_ms)
        await self._ensure_single_tab()

    async def _ensure_single_tab(self) -> None:
        """Close popups opened by the last command so the session stays single-tab."""
        if self._context is None:
            return
        for p in self._context.pages:
            if p is not self._page:
                await p.close()

    # ------------------------------------------------------------------
    async def navigate(self, url: str) -> str:
        try:
            await self.page.goto(url, wait_until="load", timeout=self._timeout_ms)
        except PlaywrightError as exc:
            raise self._translate(exc, f"navigate({url})") from exc
        await self._settle()
        return self.page.url

    async def observe(self) -> Observation:
        try:
            return Observation(url=self.page.url, title=await self.page.title())
        except PlaywrightError as exc:
            raise self._translate(exc, "observe") from exc

    async def list_candidate_elements(self, observation: Observation) -> List[Element]:
        try:
            raw = await self.page.evaluate(_EXTRACT_ELEMENTS_JS)
        except PlaywrightError as exc:
            raise self._translate(exc, f"extract elements on {observation.url}") from exc
        elements: List[Element] = []
        seen: set[str] = set()
        for item in raw:
            el = Element.from_dict(item)
            if el.key in seen:
                continue
            seen.add(el.key)
            elements.append(el)
        logger.debug("Extracted %d candidate elements on %s", len(elements), observation.url)
        return elements

    async def apply(self, element: Optional[Element], action: Action) -> str:
        page = self.page
        try:
            if isinstance(action, Click):
                await page.locator(action.locator).first.click(timeout=self._timeout_ms)
            elif isinstance(action, FormFill):
                for locator, value in action.fields:
                    await self._fill(locator, value)
                if action.submit:
                    await page.locator(action.submit).first.click(timeout=self._timeout_ms)
            elif isinstance(action, Navigate):
                await page.goto(action.url, wait_until="load", timeout=self._timeout_ms)
            elif isinstance(action, Backtrack):
                for _ in range(action.steps):
                    await self.back()
            elif isinstance(action, End):
                pass
            else:
                raise TypeError(f"unhandled action: {action!r}")
        except PlaywrightError as exc:
            raise self._translate(exc, f"{action.kind} {element.key if element else ''}".strip()) from exc
        await self._settle()
        return self.page.url

    async def _fill(self, locator: str, value: str) -> None:
        target = self.page.locator(locator).first
        tag = await target.evaluate("e => e.tagName.toLowerCase()")
        input_type = (await target.get_attribute("type") or "").lower()
        if tag == "select":
            await target.select_option(value, timeout=self._timeout_ms)
        elif input_type in ("checkbox", "radio"):
            await target.check(timeout=self._timeout_ms)
        else:
            await target.fill(value, timeout=self._timeout_ms)

    async def back(self) -> None:
        try:
            response = await self.page.go_back(wait_until="load", timeout=self._timeout_ms)
        except PlaywrightError as exc:
            raise self._translate(exc, "back") from exc
        if response is None and self.page.url in ("", "about:blank"):
            raise TransientDriverError("no history entry to go back to")
        await self._settle()
