"""Page-level tool handlers invoked by the dispatcher.

Each handler receives the page of the currently held session handle and the
tool arguments, and returns a JSON-serializable mapping.  Handlers validate
their own arguments and raise :class:`ValueError` for bad input; the
dispatcher turns any exception into a ``ToolExecutionError``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Mapping, Optional

from playwright.async_api import Page

ALLOWED_WAIT_STATES = {"load", "domcontentloaded", "networkidle", "commit"}
ALLOWED_SELECTOR_STATES = {"attached", "detached", "visible", "hidden"}
ALLOWED_MODIFIERS = {"Control", "Shift", "Alt", "Meta"}

# Puppeteer-style names accepted for compatibility with existing clients.
_WAIT_ALIASES = {"networkidle0": "networkidle", "networkidle2": "networkidle"}

DEFAULT_TIMEOUT_MS = 30000

logger = logging.getLogger(__name__)


def _validate_wait_state(wait_until: str) -> str:
    state = _WAIT_ALIASES.get(wait_until, wait_until)
    if state not in ALLOWED_WAIT_STATES:
        allowed = ", ".join(sorted(ALLOWED_WAIT_STATES))
        raise ValueError(f"waitUntil must be one of {{{allowed}}}.")
    return state


def _require_str(args: Mapping[str, Any], key: str) -> str:
    value = args.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string.")
    return value


def _timeout_ms(args: Mapping[str, Any], key: str = "timeout") -> int:
    raw = args.get(key)
    if raw is None:
        return DEFAULT_TIMEOUT_MS
    timeout = int(raw)
    if timeout < 0:
        raise ValueError(f"{key} must be non-negative.")
    return timeout


def _log_call(action: str, **kwargs: Any) -> None:
    logger.info("%s call: %s", action, {k: v for k, v in kwargs.items() if v is not None})


def _log_result(action: str, result: Mapping[str, Any]) -> None:
    summary: Dict[str, Any] = {}
    for key, value in result.items():
        if key == "content" and isinstance(value, str):
            summary[key] = f"<{len(value)} chars>"
        elif key in ("links", "matches") and isinstance(value, list):
            summary[key] = f"<{len(value)} {key}>"
        else:
            summary[key] = value
    logger.info("%s result: %s", action, summary)


async def _page_summary(page: Page) -> Dict[str, str]:
    return {"final_url": page.url, "title": await page.title()}


async def navigate(page: Page, args: Mapping[str, Any]) -> Dict[str, Any]:
    """Navigate to ``url`` and return the final location and title."""
    url = _require_str(args, "url").strip()
    wait_until = _validate_wait_state(args.get("waitUntil", "domcontentloaded"))
    _log_call("navigate", url=url, wait_until=wait_until)
    response = await page.goto(url, wait_until=wait_until)
    result = await _page_summary(page)
    result["status"] = response.status if response is not None else None
    _log_result("navigate", result)
    return result


async def get_content(page: Page, args: Mapping[str, Any]) -> Dict[str, Any]:
    """Return page HTML or visible text, optionally scoped to a selector."""
    kind = args.get("type", "html")
    if kind not in ("html", "text"):
        raise ValueError("type must be 'html' or 'text'.")
    selector: Optional[str] = args.get("selector")
    _log_call("get_content", type=kind, selector=selector)
    if selector:
        element = await page.wait_for_selector(selector, timeout=_timeout_ms(args))
        if element is None:
            content = ""
        elif kind == "text":
            content = (await element.inner_text()).strip()
        else:
            content = await element.evaluate("node => node.outerHTML")
    elif kind == "text":
        content = (await page.inner_text("body")).strip()
    else:
        content = await page.content()
    result = await _page_summary(page)
    result.update({"type": kind, "selector": selector, "content": content})
    _log_result("get_content", result)
    return result


async def click(page: Page, args: Mapping[str, Any]) -> Dict[str, Any]:
    """Click ``selector``, optionally waiting for the resulting navigation."""
    selector = _require_str(args, "selector")
    wait_for_navigation = bool(args.get("waitForNavigation", False))
    timeout = _timeout_ms(args)
    _log_call("click", selector=selector, wait_for_navigation=wait_for_navigation)
    if wait_for_navigation:
        async with page.expect_navigation(timeout=timeout):
            await page.click(selector, timeout=timeout)
    else:
        await page.click(selector, timeout=timeout)
    result = await _page_summary(page)
    result["selector"] = selector
    _log_result("click", result)
    return result


async def type_text(page: Page, args: Mapping[str, Any]) -> Dict[str, Any]:
    """Type ``text`` into ``selector`` one keystroke at a time."""
    selector = _require_str(args, "selector")
    text = args.get("text")
    if not isinstance(text, str):
        raise ValueError("text must be a string.")
    delay = float(args.get("delay", 100))
    if delay < 0:
        raise ValueError("delay must be non-negative.")
    _log_call("type", selector=selector, length=len(text), delay=delay)
    if args.get("clear", True):
        await page.fill(selector, "", timeout=_timeout_ms(args))
    await page.type(selector, text, delay=delay, timeout=_timeout_ms(args))
    result = {"selector": selector, "typed": len(text)}
    _log_result("type", result)
    return result


async def press_key(page: Page, args: Mapping[str, Any]) -> Dict[str, Any]:
    """Press ``key`` with optional modifiers, focusing ``selector`` first."""
    key = _require_str(args, "key")
    modifiers: List[str] = list(args.get("modifiers") or [])
    unknown = [m for m in modifiers if m not in ALLOWED_MODIFIERS]
    if unknown:
        raise ValueError(f"Unsupported modifiers: {unknown}.")
    selector: Optional[str] = args.get("selector")
    combo = "+".join([*modifiers, key])
    _log_call("press_key", key=combo, selector=selector)
    if selector:
        await page.press(selector, combo, timeout=_timeout_ms(args))
    else:
        await page.keyboard.press(combo)
    result = {"key": combo, "selector": selector}
    _log_result("press_key", result)
    return result


async def wait(page: Page, args: Mapping[str, Any]) -> Dict[str, Any]:
    """Wait for a selector, a navigation, or a fixed delay."""
    kind = args.get("type")
    value = args.get("value")
    timeout = _timeout_ms(args)
    _log_call("wait", type=kind, value=value, timeout=timeout)
    if kind == "selector":
        selector = _require_str(args, "value")
        state = args.get("state", "visible")
        if state not in ALLOWED_SELECTOR_STATES:
            allowed = ", ".join(sorted(ALLOWED_SELECTOR_STATES))
            raise ValueError(f"state must be one of {{{allowed}}}.")
        await page.wait_for_selector(selector, state=state, timeout=timeout)
    elif kind == "navigation":
        wait_until = _validate_wait_state(value or "load")
        await page.wait_for_load_state(wait_until, timeout=timeout)
    elif kind == "timeout":
        try:
            delay_ms = int(value)
        except (TypeError, ValueError):
            raise ValueError("value must be a number of milliseconds for type 'timeout'.") from None
        if delay_ms < 0:
            raise ValueError("value must be non-negative.")
        await asyncio.sleep(delay_ms / 1000)
    else:
        raise ValueError("type must be one of 'selector', 'navigation' or 'timeout'.")
    result = {"type": kind, "value": value, "waited": True}
    _log_result("wait", result)
    return result


_FIND_BY_TEXT_SCRIPT = """({ text, elementType, exact }) => {
    const needle = text.trim().toLowerCase();
    const cssPath = (el) => {
        if (el.id) return `#${CSS.escape(el.id)}`;
        const parts = [];
        while (el && el.nodeType === 1 && parts.length < 6) {
            let part = el.tagName.toLowerCase();
            const parent = el.parentElement;
            if (parent) {
                const siblings = Array.from(parent.children).filter(c => c.tagName === el.tagName);
                if (siblings.length > 1) part += `:nth-of-type(${siblings.indexOf(el) + 1})`;
            }
            parts.unshift(part);
            if (el.id) break;
            el = parent;
        }
        return parts.join(" > ");
    };
    const matches = [];
    for (const el of document.querySelectorAll(elementType || "*")) {
        const own = (el.innerText || el.textContent || "").trim();
        const candidate = own.toLowerCase();
        const hit = exact ? candidate === needle : candidate.includes(needle);
        if (!hit) continue;
        if (Array.from(el.children).some(child =>
            ((child.innerText || child.textContent || "").toLowerCase()).includes(needle))) {
            continue;
        }
        matches.push({ selector: cssPath(el), tag: el.tagName.toLowerCase(), text: own.slice(0, 200) });
        if (matches.length >= 20) break;
    }
    return matches;
}"""


async def find_selector(page: Page, args: Mapping[str, Any]) -> Dict[str, Any]:
    """Find elements by visible text and return CSS selectors for them."""
    text = _require_str(args, "text")
    element_type = args.get("elementType") or "*"
    exact = bool(args.get("exact", False))
    _log_call("find_selector", text=text, element_type=element_type, exact=exact)
    matches = await page.evaluate(
        _FIND_BY_TEXT_SCRIPT,
        {"text": text, "elementType": element_type, "exact": exact},
    )
    result = {"text": text, "matches": list(matches or []), "count": len(matches or [])}
    _log_result("find_selector", result)
    return result


async def evaluate(page: Page, args: Mapping[str, Any]) -> Dict[str, Any]:
    """Evaluate a JavaScript expression or function and return its result."""
    script = _require_str(args, "script")
    _log_call("evaluate", script=script[:80])
    value = await page.evaluate(script, args.get("arg"))
    result = await _page_summary(page)
    result["result"] = value
    _log_result("evaluate", result)
    return result


_COLLECT_LINKS_SCRIPT = """({ rootSelector, selector, limit }) => {
    const root = rootSelector ? document.querySelector(rootSelector) : document;
    if (!root) {
        return { links: [], truncated: false, total: 0 };
    }
    const elements = Array.from(root.querySelectorAll(selector || "a"));
    const total = elements.length;
    const unlimited = limit === null || limit === undefined;
    const truncated = unlimited ? false : total > limit;
    const slice = truncated ? elements.slice(0, limit) : elements;
    const links = slice.map((element, index) => ({
        position: index + 1,
        href: element.getAttribute("href") ?? "",
        text: (element.innerText ?? "").trim(),
        title: element.getAttribute("title"),
        target: element.getAttribute("target"),
        rel: element.getAttribute("rel"),
    }));
    return { links, truncated, total };
}"""


async def list_links(page: Page, args: Mapping[str, Any]) -> Dict[str, Any]:
    """List anchor tags on the current page with basic metadata."""
    limit = args.get("limit", 200)
    root_selector = args.get("rootSelector")
    link_selector = args.get("linkSelector") or "a"
    _log_call("list_links", limit=limit, root_selector=root_selector, link_selector=link_selector)
    for attempt in range(3):
        try:
            raw = await page.evaluate(
                _COLLECT_LINKS_SCRIPT,
                {"rootSelector": root_selector, "selector": link_selector, "limit": limit},
            )
        except Exception as exc:
            if "Execution context was destroyed" in str(exc) and attempt < 2:
                await page.wait_for_load_state("load")
                continue
            raise
        break
    raw = raw or {}
    result = await _page_summary(page)
    result.update(
        {
            "links": list(raw.get("links") or []),
            "count": int(raw.get("total") or 0),
            "truncated": bool(raw.get("truncated")),
        }
    )
    _log_result("list_links", result)
    return result


__all__ = [
    "navigate",
    "get_content",
    "click",
    "type_text",
    "press_key",
    "wait",
    "find_selector",
    "evaluate",
    "list_links",
]
