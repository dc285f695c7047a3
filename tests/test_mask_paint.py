import numpy as np
import pytest
from PIL import Image

from raster_studio.mask_paint import (
    EffectParams, MaskPaintEngine, MaskSession, MaskState, blur_effect, composite_state,
    mosaic_effect, resample_mask,
)
from raster_studio.models import Rect


def _changed(a: Image.Image, b: Image.Image):
    """(rows, cols) of pixels that differ between two same-size images."""
    diff = np.asarray(a.convert("RGBA"), dtype=np.int16) != np.asarray(b.convert("RGBA"), dtype=np.int16)
    return diff.any(axis=2).nonzero()


# =============================================================================
# Effects
# =============================================================================
def test_effect_params_validate_effect():
    with pytest.raises(ValueError):
        EffectParams(effect="pixelate")


@pytest.mark.parametrize("strength, block", [(20, 10), (10, 5), (5, 5), (200, 40), (30, 15)])
def test_mosaic_block_size_follows_strength(strength, block):
    assert EffectParams(strength=strength).block_size == block


def test_mosaic_reduces_image_to_flat_cells():
    rng = np.random.default_rng(0)
    img = Image.fromarray(rng.integers(0, 256, (10, 10, 3), dtype=np.uint8))
    out = mosaic_effect(img, 4)
    assert out.size == (10, 10)
    # ceil(10 / 4) = 3 cells per side
    assert len(out.getcolors(maxcolors=256)) <= 9


def test_blur_smooths_checkerboard():
    checker = np.indices((32, 32)).sum(axis=0) % 2 * 255
    img = Image.fromarray(checker.astype(np.uint8))
    out = blur_effect(img, 4)
    assert out.size == img.size
    assert np.asarray(out).std() < np.asarray(img).std() / 4


def test_blur_radius_is_clamped():
    assert EffectParams(effect="blur", blur_radius=0).radius == 1
    assert EffectParams(effect="blur", blur_radius=500).radius == 60


def test_resample_mask_scales_to_new_size():
    buf = np.zeros((100, 100), dtype=np.uint8)
    buf[:50, :50] = 255
    out = resample_mask(buf, 200, 100)
    assert out.shape == (100, 200)
    assert out[10, 20] == 255
    assert out[90, 190] == 0
    same = resample_mask(buf, 100, 100)
    assert same is not buf and np.array_equal(same, buf)


# =============================================================================
# Engine
# =============================================================================
def test_brush_dab_preview_equals_export(gradient_image):
    base = gradient_image(500, 500)
    engine = MaskPaintEngine(base)
    engine.set_brush_size(40)
    engine.pointer_down(200, 200, scale=1.0)
    engine.pointer_up()
    assert engine.is_dirty()

    preview = engine.composite()
    exported = composite_state(base, engine.state())
    assert preview.tobytes() == exported.tobytes()

    rows, cols = _changed(preview, base)
    assert rows.size > 0
    assert rows.min() >= 180 and rows.max() <= 220
    assert cols.min() >= 180 and cols.max() <= 220
    assert preview.getpixel((10, 10)) == base.convert("RGBA").getpixel((10, 10))


def test_unpainted_engine_returns_base(gradient_image):
    base = gradient_image(40, 30)
    engine = MaskPaintEngine(base)
    assert not engine.is_dirty()
    assert engine.state().is_empty
    assert engine.composite().tobytes() == base.convert("RGBA").tobytes()


def test_brush_size_is_in_screen_pixels(gradient_image):
    engine = MaskPaintEngine(gradient_image(50, 50))
    engine.set_brush_size(40)
    assert engine.brush_size_in_image(2.0) == 20
    engine.set_brush_size(1000)
    assert engine.brush_size == 200
    engine.set_brush_size(1)
    assert engine.brush_size == 4


def test_stroke_paints_along_segment(gradient_image):
    engine = MaskPaintEngine(gradient_image(100, 100))
    engine.paint_stroke([(10, 10), (90, 10)], 6)
    mask = engine.mask_buffer()
    assert mask[10, 50] == 255
    assert mask[50, 50] == 0


def test_dragging_brush_joins_points(gradient_image):
    engine = MaskPaintEngine(gradient_image(100, 100))
    engine.set_brush_size(10)
    engine.pointer_down(10, 50)
    assert engine.is_painting
    engine.pointer_move(90, 50)
    engine.pointer_up()
    assert not engine.is_painting
    assert engine.mask_buffer()[50, 10:91].all()


def test_rect_tool_commits_on_release(gradient_image):
    engine = MaskPaintEngine(gradient_image(100, 100))
    engine.set_tool("rect")
    engine.pointer_down(10, 10)
    engine.pointer_move(50, 40)
    assert engine.rect_preview == Rect(10, 10, 40, 30)
    assert not engine.is_dirty()

    engine.pointer_up()
    mask = engine.mask_buffer()
    assert mask[10:40, 10:50].all()
    assert mask[45, 45] == 0 and mask[9, 9] == 0
    assert engine.rect_preview is None


def test_unknown_tool_raises(gradient_image):
    engine = MaskPaintEngine(gradient_image(10, 10))
    with pytest.raises(ValueError):
        engine.set_tool("lasso")


def test_clear_mask(gradient_image):
    engine = MaskPaintEngine(gradient_image(60, 60))
    engine.fill_rect(Rect(0, 0, 30, 30))
    engine.clear_mask()
    assert not engine.is_dirty()


def test_effect_surface_is_rebuilt_only_on_param_change(gradient_image):
    engine = MaskPaintEngine(gradient_image(60, 60))
    first = engine.effect_image()
    assert engine.effect_image() is first
    engine.set_effect(EffectParams(effect="blur"))
    assert engine.effect_image() is not first


def test_effect_can_change_after_painting(gradient_image):
    base = gradient_image(80, 80)
    engine = MaskPaintEngine(base)
    engine.fill_rect(Rect(10, 10, 40, 40))
    mosaic = engine.composite()
    engine.set_effect(EffectParams(effect="blur", blur_radius=6))
    blurred = engine.composite()
    assert mosaic.tobytes() != blurred.tobytes()
    assert blurred.tobytes() == composite_state(base, engine.state()).tobytes()


def test_state_loads_onto_other_size(gradient_image):
    engine = MaskPaintEngine(gradient_image(100, 100))
    engine.fill_rect(Rect(0, 0, 50, 50))
    other = MaskPaintEngine(gradient_image(200, 100), engine.state())
    mask = other.mask_buffer()
    assert mask.shape == (100, 200)
    assert mask[10, 20] == 255 and mask[90, 190] == 0


def test_empty_state_composites_to_base(gradient_image):
    base = gradient_image(30, 30)
    out = composite_state(base, MaskState(30, 30))
    assert out.tobytes() == base.convert("RGBA").tobytes()


# =============================================================================
# Session
# =============================================================================
def test_session_default_state_uses_current_params(make_item):
    session = MaskSession()
    session.set_effect(EffectParams(effect="blur"))
    state = session.export_state(make_item(40, 30))
    assert state.is_empty
    assert state.params.effect == "blur"
    assert (state.width, state.height) == (40, 30)


def test_session_caches_mask_per_image(make_item, gradient_image):
    a, b = make_item(100, 100), make_item(200, 100)
    session = MaskSession()
    session.activate(a, gradient_image(100, 100)).fill_rect(Rect(0, 0, 50, 50))
    session.activate(b, gradient_image(200, 100))
    assert session.engine.state().is_empty

    engine = session.activate(a, gradient_image(100, 100))
    assert engine.is_dirty()


def test_apply_to_all_resamples_mask_on_export(make_item, gradient_image):
    a, b = make_item(100, 100), make_item(200, 100)
    session = MaskSession()
    session.activate(a, gradient_image(100, 100)).paint_stroke([(50, 50)], 20)
    session.apply_to_all()

    state = session.export_state(b)
    assert not state.is_empty
    base_b = gradient_image(200, 100)
    rows, cols = _changed(composite_state(base_b, state), base_b)
    assert rows.size > 0
    assert cols.min() >= 76 and cols.max() <= 124


def test_session_effect_change_is_committed(make_item, gradient_image):
    a = make_item(50, 50)
    session = MaskSession()
    session.activate(a, gradient_image(50, 50))
    session.set_effect(EffectParams(effect="blur", blur_radius=3))
    assert session.engine.params.effect == "blur"
    assert session.rules.override(a.id).params.effect == "blur"


def test_session_remove_drops_engine(make_item, gradient_image):
    a = make_item(20, 20)
    session = MaskSession()
    session.activate(a, gradient_image(20, 20))
    session.commit()
    session.remove(a.id)
    assert session.engine is None
    assert not session.rules.has_override(a.id)
