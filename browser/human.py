"""
Human-Behavior Simulator

Randomized pointer movement, scrolling, typing cadence and idle activity.
Straight-line, perfectly timed interactions are what automation detectors
look for, so every helper here adds jitter to both position and timing.

The helpers keep no state. Randomness (``rng``) and waiting (``sleep``) are
injectable so tests can run them deterministically and without real delays.
"""

import asyncio
import random
from typing import Awaitable, Callable, List, Optional, Tuple

from browser.driver import PageDriver

Sleep = Callable[[float], Awaitable[None]]
Point = Tuple[float, float]

# Pointer offset around the element center, in pixels
CLICK_OFFSET_X = 5
CLICK_OFFSET_Y = 3

MIN_MOUSE_STEPS = 15
MAX_MOUSE_STEPS = 24


def ease_in_out(progress: float) -> float:
    """Quadratic ease-in-out over [0, 1]."""
    if progress < 0.5:
        return 2 * progress * progress
    return 1 - ((-2 * progress + 2) ** 2) / 2


def plan_mouse_path(start: Point, target: Point, steps: int) -> List[Point]:
    """Points from ``start`` to ``target`` (both included) along the easing curve."""
    if steps < 1:
        return [target]
    (sx, sy), (tx, ty) = start, target
    path = []
    for i in range(steps + 1):
        eased = ease_in_out(i / steps)
        path.append((sx + (tx - sx) * eased, sy + (ty - sy) * eased))
    return path


async def human_pause(min_sec: float, max_sec: float, rng: Optional[random.Random] = None,
                      sleep: Sleep = asyncio.sleep) -> float:
    """Wait a random time between ``min_sec`` and ``max_sec``."""
    rng = rng or random
    delay = rng.uniform(min_sec, max_sec)
    await sleep(delay)
    return delay


async def move_mouse_human(
    page: PageDriver,
    x: float,
    y: float,
    click_offset: bool = True,
    rng: Optional[random.Random] = None,
    sleep: Sleep = asyncio.sleep,
) -> Point:
    """
    Move the pointer to (x, y) from a random start point.

    Returns the final pointer position, which is offset slightly from the
    requested target when ``click_offset`` is set.
    """
    rng = rng or random
    target_x, target_y = x, y
    if click_offset:
        target_x += rng.uniform(-CLICK_OFFSET_X, CLICK_OFFSET_X)
        target_y += rng.uniform(-CLICK_OFFSET_Y, CLICK_OFFSET_Y)

    steps = rng.randint(MIN_MOUSE_STEPS, MAX_MOUSE_STEPS)
    start = (rng.uniform(0, 200), rng.uniform(0, 200))

    for px, py in plan_mouse_path(start, (target_x, target_y), steps):
        await page.mouse_move(px, py)
        await sleep(rng.uniform(0.005, 0.020))

    return target_x, target_y


async def approach_element(
    page: PageDriver,
    selector: str,
    rng: Optional[random.Random] = None,
    sleep: Sleep = asyncio.sleep,
) -> bool:
    """Move the pointer to the center of ``selector``. False if it has no box."""
    box = await page.bounding_box(selector)
    if not box:
        return False
    await move_mouse_human(
        page,
        box["x"] + box["width"] / 2,
        box["y"] + box["height"] / 2,
        rng=rng,
        sleep=sleep,
    )
    return True


async def scroll_human(page: PageDriver, rng: Optional[random.Random] = None,
                       sleep: Sleep = asyncio.sleep) -> int:
    """Smooth-scroll down by a random amount."""
    rng = rng or random
    amount = rng.randint(100, 350)
    await page.evaluate(
        "(amount) => window.scrollBy({ top: amount, behavior: 'smooth' })",
        amount,
    )
    await sleep(rng.uniform(0.3, 0.8))
    return amount


async def simulate_human_activity(page: PageDriver, rng: Optional[random.Random] = None,
                                  sleep: Sleep = asyncio.sleep, moves: int = 2) -> None:
    """A couple of idle pointer moves and a scroll, to build interaction history."""
    rng = rng or random
    for _ in range(moves):
        await page.mouse_move(rng.uniform(100, 700), rng.uniform(100, 400))
        await sleep(rng.uniform(0.3, 0.8))

    await page.evaluate(
        "(top) => window.scrollTo({ top: top, behavior: 'smooth' })",
        rng.uniform(0, 200),
    )
    await sleep(rng.uniform(0.5, 1.3))


async def type_like_human(
    page: PageDriver,
    selector: str,
    text: str,
    rng: Optional[random.Random] = None,
    sleep: Sleep = asyncio.sleep,
) -> None:
    """Clear ``selector`` and type ``text`` one key at a time with variable cadence."""
    rng = rng or random
    await page.click(selector)
    await sleep(rng.uniform(0.3, 0.8))
    await page.fill(selector, "")

    for char in text:
        await page.type_text(char, delay=rng.uniform(60, 180))
        # Occasional hesitation
        if rng.random() > 0.9:
            await sleep(rng.uniform(0.2, 0.6))
