from raster_studio.rule_store import RuleStore


def test_resolution_order_override_then_broadcast_then_default():
    store = RuleStore(lambda image_id: f"default-{image_id}")
    assert store.resolve("a") == "default-a"

    store.apply_to_all("all")
    assert store.resolve("a") == "all"

    store.set("a", "mine")
    assert store.resolve("a") == "mine"
    assert store.resolve("b") == "all"

    store.remove("a")
    assert store.resolve("a") == "all"

    store.clear()
    assert store.resolve("a") == "default-a"


def test_apply_to_all_replaces_every_override():
    store = RuleStore()
    store.set("a", 1)
    store.set("b", 2)
    assert len(store) == 2

    store.apply_to_all(3)
    assert len(store) == 0
    assert not store.has_override("a")
    assert store.broadcast == 3
    assert store.resolve("b") == 3


def test_without_default_unknown_ids_resolve_to_none():
    store = RuleStore()
    assert store.resolve("missing") is None
    store.remove("missing")
    assert store.ids() == []


def test_clear_broadcast_falls_back_to_default():
    store = RuleStore(lambda image_id: 0)
    store.apply_to_all(5)
    store.clear_broadcast()
    assert store.resolve("x") == 0
    assert store.override("x") is None
