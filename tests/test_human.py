"""
Tests for the human-behavior helpers.
"""

import pytest

from browser.human import (
    MAX_MOUSE_STEPS,
    MIN_MOUSE_STEPS,
    approach_element,
    ease_in_out,
    human_pause,
    move_mouse_human,
    plan_mouse_path,
    scroll_human,
    simulate_human_activity,
    type_like_human,
)
from tests.fakes import FakePortalPage


@pytest.mark.unit
class TestMousePath:
    """Easing curve and path planning."""

    def test_easing_endpoints_and_midpoint(self):
        assert ease_in_out(0.0) == 0.0
        assert ease_in_out(1.0) == 1.0
        assert ease_in_out(0.5) == pytest.approx(0.5)

    def test_easing_is_monotonic(self):
        values = [ease_in_out(i / 100) for i in range(101)]
        assert values == sorted(values)

    def test_path_includes_both_ends(self):
        path = plan_mouse_path((0, 0), (100, 50), steps=10)

        assert len(path) == 11
        assert path[0] == (0, 0)
        assert path[-1] == pytest.approx((100, 50))

    def test_path_moves_slowly_at_the_edges(self):
        """Ease-in-out: small first and last steps, bigger steps mid-way."""
        xs = [x for x, _ in plan_mouse_path((0, 0), (100, 0), steps=10)]
        steps = [b - a for a, b in zip(xs, xs[1:])]

        assert steps[0] < steps[4]
        assert steps[-1] < steps[5]

    def test_zero_steps_jumps_to_target(self):
        assert plan_mouse_path((0, 0), (5, 5), steps=0) == [(5, 5)]


@pytest.mark.unit
class TestPointerAndTiming:

    @pytest.mark.asyncio
    async def test_move_lands_near_target(self, rng, fake_sleep):
        page = FakePortalPage()

        x, y = await move_mouse_human(page, 500, 300, rng=rng, sleep=fake_sleep)

        assert abs(x - 500) <= 5
        assert abs(y - 300) <= 3
        assert MIN_MOUSE_STEPS + 1 <= page.mouse_moves <= MAX_MOUSE_STEPS + 1
        assert len(fake_sleep.calls) == page.mouse_moves

    @pytest.mark.asyncio
    async def test_move_without_offset_is_exact(self, rng, fake_sleep):
        page = FakePortalPage()

        assert await move_mouse_human(page, 10, 20, click_offset=False, rng=rng, sleep=fake_sleep) == (10, 20)

    @pytest.mark.asyncio
    async def test_approach_element_without_box(self, rng, fake_sleep):
        page = FakePortalPage()

        async def no_box(selector):
            return None

        page.bounding_box = no_box
        assert await approach_element(page, "#hidden", rng=rng, sleep=fake_sleep) is False
        assert page.mouse_moves == 0

    @pytest.mark.asyncio
    async def test_human_pause_stays_in_range(self, rng, fake_sleep):
        for _ in range(20):
            delay = await human_pause(1.5, 3.5, rng=rng, sleep=fake_sleep)
            assert 1.5 <= delay <= 3.5
        assert len(fake_sleep.calls) == 20

    @pytest.mark.asyncio
    async def test_scroll_amount_in_range(self, rng, fake_sleep):
        page = FakePortalPage()

        amount = await scroll_human(page, rng=rng, sleep=fake_sleep)

        assert 100 <= amount <= 350
        assert page.actions_named("evaluate") == [("evaluate", amount)]

    @pytest.mark.asyncio
    async def test_idle_activity(self, rng, fake_sleep):
        page = FakePortalPage()

        await simulate_human_activity(page, rng=rng, sleep=fake_sleep)

        assert page.mouse_moves == 2
        assert len(page.actions_named("evaluate")) == 1


@pytest.mark.unit
class TestTyping:

    @pytest.mark.asyncio
    async def test_types_one_key_at_a_time_after_clearing(self, rng, fake_sleep):
        page = FakePortalPage()

        await type_like_human(page, "#correo", "ops@bank.mx", rng=rng, sleep=fake_sleep)

        assert page.actions[0] == ("click", "#correo", False)
        assert page.actions[1] == ("fill", "#correo", "")
        typed = "".join(action[1] for action in page.actions_named("type"))
        assert typed == "ops@bank.mx"
