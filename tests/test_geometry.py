import random

import pytest

from raster_studio.geometry import (
    effective_size, effective_to_original, effective_to_screen, fit_contain,
    original_to_effective, original_to_screen, rect_effective_to_original,
    rect_original_to_effective, screen_to_effective, screen_to_original, wrap_signed,
)
from raster_studio.models import Rect, ViewState

ROTATIONS = (0, 90, 180, 270)
FLIPS = [(False, False), (True, False), (False, True), (True, True)]


@pytest.mark.parametrize("rotation", ROTATIONS)
@pytest.mark.parametrize("flip_x, flip_y", FLIPS)
def test_point_round_trip_is_exact(rotation, flip_x, flip_y):
    rng = random.Random(rotation * 10 + flip_x * 2 + flip_y)
    img_w, img_h = 1000, 500
    eff_w, eff_h = effective_size(img_w, img_h, rotation)
    for _ in range(200):
        x, y = rng.randint(0, img_w), rng.randint(0, img_h)
        ex, ey = original_to_effective(x, y, rotation, img_w, img_h, flip_x, flip_y)
        assert effective_to_original(ex, ey, rotation, img_w, img_h, flip_x, flip_y) == (x, y)

        ex, ey = rng.randint(0, int(eff_w)), rng.randint(0, int(eff_h))
        ox, oy = effective_to_original(ex, ey, rotation, img_w, img_h, flip_x, flip_y)
        assert original_to_effective(ox, oy, rotation, img_w, img_h, flip_x, flip_y) == (ex, ey)


def test_scenario_a_half_turn_keeps_size():
    assert effective_size(800, 600, 180) == (800, 600)
    assert original_to_effective(10, 10, 180, 800, 600) == (790, 590)


def test_scenario_b_quarter_turn_swaps_size():
    assert effective_size(1000, 500, 90) == (500, 1000)
    assert original_to_effective(0, 0, 90, 1000, 500) == (500, 0)
    assert original_to_effective(1000, 500, 90, 1000, 500) == (0, 1000)


def test_flip_mirrors_before_rotation():
    assert original_to_effective(0, 0, 0, 100, 50, flip_x=True) == (100, 0)
    assert original_to_effective(0, 0, 0, 100, 50, flip_y=True) == (0, 50)
    # flipped horizontally then turned 90: the original top-right lands top-right
    assert original_to_effective(100, 0, 90, 100, 50, flip_x=True) == (50, 0)


def test_invalid_rotation_raises():
    with pytest.raises(ValueError):
        original_to_effective(0, 0, 45, 10, 10)
    with pytest.raises(ValueError):
        effective_to_original(0, 0, 45, 10, 10)


@pytest.mark.parametrize("rotation", ROTATIONS)
def test_rect_round_trip(rotation):
    rect = Rect(100, 50, 300, 200)
    eff = rect_original_to_effective(rect, rotation, 800, 600)
    back = rect_effective_to_original(eff, rotation, 800, 600)
    assert (back.x, back.y, back.w, back.h) == (100, 50, 300, 200)


def test_rect_quarter_turn_swaps_extent():
    eff = rect_original_to_effective(Rect(100, 100, 400, 300), 90, 800, 600)
    assert (eff.x, eff.y, eff.w, eff.h) == (200, 100, 300, 400)


def _view(**overrides) -> ViewState:
    fields = dict(
        container_width=1000, container_height=800, rotation=0,
        image_width=800, image_height=600, effective_width=800, effective_height=600,
        box_x=20.0, box_y=40.0, box_w=960.0, box_h=720.0,
    )
    fields.update(overrides)
    return ViewState(**fields)


def test_effective_screen_round_trip():
    view = _view()
    sx, sy = effective_to_screen(400, 300, view)
    assert (sx, sy) == (500.0, 400.0)
    assert screen_to_effective(sx, sy, view) == pytest.approx((400, 300))


def test_screen_to_original_clamps_or_rejects_outside_points():
    view = _view()
    assert screen_to_original(0, 0, view) == (0.0, 0.0)
    assert screen_to_original(0, 0, view, clamp=False) is None
    assert screen_to_original(980, 760, view) == pytest.approx((800, 600))


def test_screen_original_round_trip_rotated():
    view = _view(rotation=90, effective_width=600, effective_height=800,
                 box_x=215.0, box_y=20.0, box_w=570.0, box_h=760.0)
    sx, sy = original_to_screen(123, 456, view)
    assert screen_to_original(sx, sy, view) == pytest.approx((123, 456))


def test_fit_contain_centres_inside_padding():
    box = fit_contain(800, 600, 1000, 800, padding=20)
    assert (box.x, box.y, box.w, box.h) == pytest.approx((20, 40, 960, 720))


def test_wrap_signed_bound():
    rng = random.Random(7)
    for _ in range(2000):
        period = rng.uniform(0.5, 2000)
        value = rng.uniform(-1e6, 1e6)
        wrapped = wrap_signed(value, period)
        assert -period / 2 < wrapped <= period / 2


def test_wrap_signed_values():
    assert wrap_signed(650, 300) == 50
    assert wrap_signed(150, 300) == 150
    assert wrap_signed(-150, 300) == 150
    assert wrap_signed(-160, 300) == 140
    assert wrap_signed(5, 0) == 5
