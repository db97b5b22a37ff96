"""Reusable step primitives built on the interactive surface.

Two contracts are kept deliberately apart:

* ``wait_until`` asserts a required precondition and fails loudly with
  ``PreconditionTimeout`` when it never holds.
* ``find_and_act`` acts on the first live match and silently does nothing
  when there is none, so optional UI (a popup that may or may not show up)
  can be handled with the same call. Callers that need a match check the
  returned flag.
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable

from config import POLL_INTERVAL
from errors import BookingError, PreconditionTimeout

logger = logging.getLogger(__name__)

Predicate = Callable[[], Awaitable[bool]]
Matcher = Callable[[Any, Any], Awaitable[bool]]
Action = Callable[[Any, Any], Awaitable[None]]


async def wait_until(
    predicate: Predicate,
    description: str,
    timeout: float,
    poll_interval: float = POLL_INTERVAL,
) -> None:
    """Suspend until predicate() is true against fresh state, or time out."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        if await predicate():
            return
        remaining = deadline - loop.time()
        if remaining <= 0:
            raise PreconditionTimeout(description, timeout)
        await asyncio.sleep(min(poll_interval, remaining))


async def find_and_act(surface, selector: str, matcher: Matcher, action: Action, within=None) -> bool:
    """Apply action to the first live element satisfying matcher.

    Returns False, without raising, when nothing matches.
    """
    for handle in await surface.query_all(selector, within=within):
        if await matcher(surface, handle):
            await action(surface, handle)
            return True
    logger.debug("find_and_act: nothing matched %s", selector)
    return False


async def with_retries(
    operation: Callable[[int], Awaitable[Any]],
    attempts: int,
    backoff: float,
    description: str,
) -> Any:
    """Run operation(attempt) up to attempts times, sleeping backoff between tries.

    Only BookingError is retried; the last one is re-raised.
    """
    last_error: BookingError | None = None
    for attempt in range(1, attempts + 1):
        try:
            return await operation(attempt)
        except BookingError as e:
            last_error = e
            logger.warning("%s: attempt %d/%d failed: %s", description, attempt, attempts, e)
            if attempt < attempts:
                await asyncio.sleep(backoff)
    raise last_error


# -- predicates ---------------------------------------------------------------

def rendered(surface, selector: str, min_height: float | None = None) -> Predicate:
    """Some element matching selector is laid out (and taller than min_height, if given)."""
    async def predicate() -> bool:
        for handle in await surface.query_all(selector):
            if not await surface.is_rendered(handle):
                continue
            if min_height is None:
                return True
            box = await surface.bounding_box(handle)
            if box and box["height"] > min_height:
                return True
        return False
    return predicate


def checked(surface, selector: str) -> Predicate:
    async def predicate() -> bool:
        for handle in await surface.query_all(selector):
            if await surface.is_checked(handle):
                return True
        return False
    return predicate


def any_text(surface, selector: str, needles) -> Predicate:
    """Some rendered element's text contains one of needles."""
    async def predicate() -> bool:
        for handle in await surface.query_all(selector):
            if not await surface.is_rendered(handle):
                continue
            text = await surface.text_of(handle)
            if any(n in text for n in needles):
                return True
        return False
    return predicate


# -- matchers / actions -------------------------------------------------------

def has_text(text: str, exact: bool = True, visible_only: bool = True) -> Matcher:
    async def matcher(surface, handle) -> bool:
        if visible_only and not await surface.is_rendered(handle):
            return False
        value = await surface.text_of(handle)
        return value == text if exact else text in value
    return matcher


async def visible(surface, handle) -> bool:
    return await surface.is_rendered(handle)


def attribute_contains(name: str, needle: str) -> Matcher:
    async def matcher(surface, handle) -> bool:
        value = await surface.attribute(handle, name) or ""
        return needle.lower() in value.lower()
    return matcher


async def click(surface, handle) -> None:
    await surface.click(handle)


def type_into(text: str) -> Action:
    async def action(surface, handle) -> None:
        await surface.type_text(handle, text)
    return action


async def click_center(surface, handle) -> None:
    """Mouse click at the centre of the element's bounding box."""
    box = await surface.bounding_box(handle)
    if not box:
        raise BookingError("element has no bounding box to click")
    await surface.click_at(box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)
