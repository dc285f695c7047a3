"""
Per-image rule cache with "apply to all" broadcast.

Each tool (crop, watermark, mask) keeps one ``RuleStore``.  The rule that
applies to an image is resolved in a fixed order:

    1. the image's own override (set while the user edits that image)
    2. the broadcast rule (set by "apply to all")
    3. the tool default, produced by ``default_factory(image_id)``

Entries are keyed by the opaque image id assigned at import.  Removing an
image must call ``remove(id)`` on every store; nothing is evicted
implicitly.

This module is Qt-free and safe for worker import.
"""

import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RuleStore(Generic[T]):
    """Override map + broadcast rule + default, keyed by image id."""

    def __init__(self, default_factory: Callable[[str], T | None] | None = None, name: str = "rules"):
        self._overrides: dict[str, T] = {}
        self._broadcast: T | None = None
        self._default_factory = default_factory
        self._name = name

    # --- Lookup ---

    def resolve(self, image_id: str) -> T | None:
        """Return the rule for *image_id* (override -> broadcast -> default)."""
        if image_id in self._overrides:
            return self._overrides[image_id]
        if self._broadcast is not None:
            return self._broadcast
        if self._default_factory is not None:
            return self._default_factory(image_id)
        return None

    def override(self, image_id: str) -> T | None:
        return self._overrides.get(image_id)

    def has_override(self, image_id: str) -> bool:
        return image_id in self._overrides

    @property
    def broadcast(self) -> T | None:
        return self._broadcast

    def ids(self) -> list[str]:
        return list(self._overrides)

    def __len__(self) -> int:
        return len(self._overrides)

    # --- Store ---

    def set(self, image_id: str, rule: T) -> None:
        self._overrides[image_id] = rule

    def apply_to_all(self, rule: T) -> None:
        """Make *rule* the broadcast rule and drop every per-image override."""
        self._broadcast = rule
        dropped = len(self._overrides)
        self._overrides.clear()
        logger.debug("%s: broadcast rule set, %d override(s) replaced", self._name, dropped)

    def clear_broadcast(self) -> None:
        self._broadcast = None

    def remove(self, image_id: str) -> None:
        if self._overrides.pop(image_id, None) is not None:
            logger.debug("%s: purged entry for %s", self._name, image_id)

    def clear(self) -> None:
        self._overrides.clear()
        self._broadcast = None
