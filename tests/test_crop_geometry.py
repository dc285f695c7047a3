import random

import pytest

from raster_studio.crop_geometry import (
    HANDLES, MOVE, CropEditor, CropMode, CropRule, CropSession, apply_ratio, drag_rect, hit_test,
)
from raster_studio.models import CropRect, Rect, default_crop

TOL = 1e-6


def _assert_in_bounds(rect, bound_w, bound_h):
    assert rect.x >= -TOL and rect.y >= -TOL
    assert rect.right <= bound_w + TOL
    assert rect.bottom <= bound_h + TOL
    assert rect.w >= min(24, bound_w) - TOL
    assert rect.h >= min(24, bound_h) - TOL


# =============================================================================
# Modes
# =============================================================================
def test_mode_from_preset_values():
    assert CropMode.from_value("16:9").locked_ratio == pytest.approx(16 / 9)
    circle = CropMode.from_value("circle")
    assert circle.is_circle and circle.locked_ratio == 1.0
    assert CropMode.from_value("free").locked_ratio is None
    assert CropMode.from_value("nonsense") == CropMode()


def test_custom_mode_needs_both_terms():
    custom = CropMode.from_value("custom", 3, 2)
    assert custom.locked_ratio == 1.5
    assert custom.label == "3:2"
    assert CropMode.from_value("custom", 3, None).locked_ratio is None
    assert CropMode.from_value("custom", 0, 2).locked_ratio is None


# =============================================================================
# Hit testing
# =============================================================================
def test_hit_test_handles_body_and_outside():
    screen = Rect(100, 100, 200, 100)
    assert hit_test(screen, 100, 100) == "nw"
    assert hit_test(screen, 300, 150) == "e"
    assert hit_test(screen, 200, 100) == "n"
    assert hit_test(screen, 305, 205) == "se"
    assert hit_test(screen, 200, 150) == MOVE
    assert hit_test(screen, 50, 50) is None


# =============================================================================
# Drag math
# =============================================================================
def test_ratio_corner_drag_scenario():
    rect = drag_rect(Rect(100, 100, 400, 300), "se", 40, 10, 1000, 1000, 16 / 9)
    assert (rect.x, rect.y, rect.w, rect.h) == pytest.approx((100, 100, 440, 247.5))


def test_ratio_corner_drag_through_editor(flat_view):
    editor = CropEditor(1000, 1000, CropMode.from_value("16:9"), CropRect(100, 100, 400, 300))
    view = flat_view(1000, 1000)
    assert editor.begin_drag(500, 400, view)
    assert editor.active_handle == "se"
    rect = editor.drag_to(540, 410, view)
    editor.end_drag()
    assert (rect.x, rect.y, rect.w, rect.h) == pytest.approx((100, 100, 440, 247.5))
    assert not editor.is_dragging


def test_free_west_drag_moves_left_edge():
    rect = drag_rect(Rect(100, 100, 200, 100), "w", -50, 0, 1000, 1000)
    assert (rect.x, rect.y, rect.w, rect.h) == (50, 100, 250, 100)


def test_move_is_clamped_inside_bounds():
    rect = drag_rect(Rect(100, 100, 200, 100), MOVE, 5000, -5000, 1000, 1000)
    assert (rect.x, rect.y, rect.w, rect.h) == (800, 0, 200, 100)


def test_shrinking_stops_at_minimum_size():
    rect = drag_rect(Rect(100, 100, 200, 100), "e", -190, 0, 1000, 1000)
    assert rect.w == 24
    assert rect.x == 100


def test_edge_handle_ratio_keeps_centre():
    rect = apply_ratio(Rect(0, 100, 200, 100), "e", 1.0)
    assert (rect.w, rect.h) == (200, 200)
    assert rect.y + rect.h / 2 == 150


@pytest.mark.parametrize("ratio", [None, 1.0, 16 / 9, 9 / 16])
def test_random_drags_respect_bounds_and_ratio(ratio):
    rng = random.Random(42)
    bound_w, bound_h = 800, 600
    rect = default_crop(bound_w, bound_h)
    if ratio:
        rect = drag_rect(rect, "se", 0, 0, bound_w, bound_h, ratio)
    for _ in range(500):
        handle = rng.choice(HANDLES + (MOVE,))
        dx = rng.uniform(-1200, 1200)
        dy = rng.uniform(-1200, 1200)
        rect = drag_rect(rect, handle, dx, dy, bound_w, bound_h, ratio)
        _assert_in_bounds(rect, bound_w, bound_h)
        if ratio:
            assert abs(rect.w / rect.h - ratio) < 1e-3


def test_handle_follows_visual_edge_when_rotated(flat_view):
    # At 90 degrees the visual right edge is the original top edge
    editor = CropEditor(800, 600, rect=CropRect(100, 100, 400, 300))
    view = flat_view(800, 600, rotation=90)
    eff = editor.effective_rect(view)
    assert (eff.x, eff.y, eff.w, eff.h) == (200, 100, 300, 400)

    assert editor.begin_drag(500, 300, view)
    assert editor.active_handle == "e"
    rect = editor.drag_to(520, 300, view)
    assert (rect.x, rect.y, rect.w, rect.h) == pytest.approx((100, 80, 400, 320))


def test_rotated_flipped_drags_stay_in_original_bounds(flat_view):
    rng = random.Random(3)
    editor = CropEditor(800, 600, CropMode.from_value("4:5"), CropRect(100, 100, 500, 400))
    view = flat_view(800, 600, rotation=270, flip_x=True)
    for _ in range(200):
        screen = editor.screen_rect(view)
        hx, hy = rng.choice([
            (screen.x, screen.y), (screen.right, screen.bottom),
            (screen.x + screen.w / 2, screen.y + screen.h / 2),
        ])
        if not editor.begin_drag(hx, hy, view):
            continue
        editor.drag_to(hx + rng.uniform(-300, 300), hy + rng.uniform(-300, 300), view)
        editor.end_drag()
        _assert_in_bounds(editor.rect, 800, 600)
        # 4:5 on screen is 5:4 in original space after a quarter turn
        assert abs(editor.rect.w / editor.rect.h - 5 / 4) < 1e-3


def test_rotated_ratio_rect_keeps_original_ratio_until_resized(flat_view):
    editor = CropEditor(800, 600, CropMode.from_value("16:9"))
    view = flat_view(800, 600, rotation=90)
    assert editor.rect.w / editor.rect.h == pytest.approx(16 / 9)

    screen = editor.screen_rect(view)
    cx, cy = screen.x + screen.w / 2, screen.y + screen.h / 2
    assert editor.begin_drag(cx, cy, view)
    assert editor.active_handle == "move"
    editor.drag_to(cx + 5, cy + 5, view)
    editor.end_drag()
    assert editor.rect.w / editor.rect.h == pytest.approx(16 / 9)

    screen = editor.screen_rect(view)
    assert editor.begin_drag(screen.right, screen.y + screen.h / 2, view)
    assert editor.active_handle == "e"
    editor.drag_to(screen.right - 10, screen.y + screen.h / 2, view)
    editor.end_drag()
    eff = editor.effective_rect(view)
    assert eff.w / eff.h == pytest.approx(16 / 9, abs=1e-3)


def test_shift_locks_free_mode_to_starting_ratio(flat_view):
    editor = CropEditor(1000, 1000, rect=CropRect(100, 100, 400, 200))
    view = flat_view(1000, 1000)
    assert editor.begin_drag(500, 300, view)
    rect = editor.drag_to(600, 310, view, shift=True)
    assert rect.w / rect.h == pytest.approx(2.0)


def test_begin_drag_misses_outside_rect(flat_view):
    editor = CropEditor(1000, 1000, rect=CropRect(100, 100, 400, 300))
    assert not editor.begin_drag(900, 900, flat_view(1000, 1000))
    assert not editor.is_dragging


# =============================================================================
# Rules and session
# =============================================================================
def test_circle_rule_scales_with_shorter_edge():
    editor = CropEditor(800, 600, CropMode.from_value("circle"))
    assert (editor.rect.x, editor.rect.y, editor.rect.w, editor.rect.h) == (160, 60, 480, 480)
    rule = CropRule.from_rect(editor.rect, 800, 600, "circle")
    rect = rule.to_rect(400, 200)
    assert (rect.x, rect.y, rect.w, rect.h) == pytest.approx((120, 20, 160, 160))


def test_session_restores_rect_per_image(make_item):
    a, b = make_item(800, 600), make_item(400, 400)
    session = CropSession()
    session.activate(a).set_rect(CropRect(10, 20, 300, 200))
    session.activate(b)
    assert session.rules.has_override(a.id)

    editor = session.activate(a)
    assert (editor.rect.x, editor.rect.y, editor.rect.w, editor.rect.h) == pytest.approx((10, 20, 300, 200))


def test_unvisited_image_exports_default_crop(make_item):
    session = CropSession()
    c = make_item(640, 480)
    mode, rect = session.export_state(c)
    assert mode == CropMode()
    assert rect == default_crop(640, 480)


def test_apply_to_all_refits_ratio_on_other_sizes(make_item):
    a, b = make_item(800, 600), make_item(400, 400)
    session = CropSession()
    session.activate(b).set_rect(CropRect(0, 0, 50, 50))
    session.activate(a)
    session.set_mode("1:1")
    session.apply_to_all()

    assert not session.rules.has_override(b.id)
    mode, rect = session.export_state(b)
    assert mode.kind == "ratio"
    assert rect.w == pytest.approx(rect.h)
    assert (rect.x, rect.y, rect.w, rect.h) == pytest.approx((80, 80, 240, 240))


def test_remove_purges_active_image(make_item):
    a = make_item()
    session = CropSession()
    session.activate(a)
    session.commit()
    session.remove(a.id)
    assert session.editor is None
    assert session.active_id is None
    assert not session.rules.has_override(a.id)
