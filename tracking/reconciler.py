"""Keep a declarative entity list in sync with an imperative render surface.

One :class:`EntityReconciler` owns one collection (a "layer"). Each
:meth:`EntityReconciler.apply` diffs the new list against what it rendered
last time and issues only the surface calls needed to close the gap:

- ids that disappeared are removed,
- new ids are added,
- surviving ids get one mutator call per mutable field that changed
  (position, icon, label, radius, visibility),
- a change to anything else (kind, style, title) replaces the object.

Surface failures are caught per entity and logged; a pass never raises
because of them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Set

from .entities import MUTABLE_FIELDS, MapEntity, render_options
from .surface import Handle, RenderSurface

_logger = logging.getLogger(__name__)


@dataclass
class ReconcileStats:
    added: int = 0
    removed: int = 0
    updated_fields: int = 0
    replaced: int = 0
    failures: int = 0

    @property
    def surface_calls(self) -> int:
        return self.added + self.removed + self.updated_fields

    def as_dict(self) -> Dict[str, int]:
        return {
            "added": self.added,
            "removed": self.removed,
            "updated_fields": self.updated_fields,
            "replaced": self.replaced,
            "failures": self.failures,
        }


def _static_part(options: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in options.items() if k not in MUTABLE_FIELDS}


class EntityReconciler:
    def __init__(self, surface: RenderSurface, name: str = "entities"):
        self.surface = surface
        self.name = name
        self._handles: Dict[str, Handle] = {}
        self._applied: Dict[str, Dict[str, Any]] = {}

    @property
    def rendered_ids(self) -> Set[str]:
        return set(self._handles)

    def handle_of(self, entity_id: str) -> Handle:
        return self._handles[entity_id]

    def apply(self, entities: Iterable[MapEntity]) -> ReconcileStats:
        stats = ReconcileStats()

        desired: Dict[str, Dict[str, Any]] = {}
        for entity in entities:
            if entity.id in desired:
                _logger.warning("%s: duplicate entity id %r ignored", self.name, entity.id)
                continue
            desired[entity.id] = render_options(entity)

        for entity_id in [i for i in self._handles if i not in desired]:
            self._remove(entity_id, stats)

        for entity_id, options in desired.items():
            if entity_id not in self._handles:
                self._add(entity_id, options, stats)
            elif _static_part(options) != _static_part(self._applied[entity_id]):
                self._remove(entity_id, stats)
                self._add(entity_id, options, stats)
                stats.replaced += 1
            else:
                self._update(entity_id, options, stats)

        if stats.surface_calls or stats.failures:
            _logger.debug("%s: reconciled %s", self.name, stats.as_dict())
        return stats

    def teardown(self) -> int:
        """Remove every rendered handle once. Returns the number removed."""
        removed = 0
        for entity_id, handle in list(self._handles.items()):
            try:
                self.surface.remove(handle)
                removed += 1
            except Exception as exc:
                _logger.warning("%s: teardown remove of %r failed: %s", self.name, entity_id, exc)
        self._handles.clear()
        self._applied.clear()
        return removed

    # ---- steps ----
    def _add(self, entity_id: str, options: Dict[str, Any], stats: ReconcileStats) -> None:
        try:
            handle = self.surface.add(options)
        except Exception as exc:
            stats.failures += 1
            _logger.warning("%s: add of %r failed: %s", self.name, entity_id, exc)
            return
        self._handles[entity_id] = handle
        self._applied[entity_id] = dict(options)
        stats.added += 1

    def _remove(self, entity_id: str, stats: ReconcileStats) -> None:
        handle = self._handles.pop(entity_id)
        self._applied.pop(entity_id, None)
        try:
            self.surface.remove(handle)
            stats.removed += 1
        except Exception as exc:
            stats.failures += 1
            _logger.warning("%s: remove of %r failed: %s", self.name, entity_id, exc)

    def _update(self, entity_id: str, options: Dict[str, Any], stats: ReconcileStats) -> None:
        handle = self._handles[entity_id]
        applied = self._applied[entity_id]
        changed: List[str] = [f for f in MUTABLE_FIELDS if options[f] != applied.get(f)]
        for field_name in changed:
            value = options[field_name]
            try:
                self._mutate(handle, field_name, value)
            except Exception as exc:
                stats.failures += 1
                _logger.warning("%s: set %s on %r failed: %s", self.name, field_name, entity_id, exc)
                continue
            applied[field_name] = value
            stats.updated_fields += 1

    def _mutate(self, handle: Handle, field_name: str, value: Any) -> None:
        if field_name == "position":
            self.surface.set_position(handle, value)
        elif field_name == "icon":
            self.surface.set_icon(handle, value)
        elif field_name == "label":
            self.surface.set_label(handle, value)
        elif field_name == "radius":
            self.surface.set_radius(handle, value)
        elif value:
            self.surface.show(handle)
        else:
            self.surface.hide(handle)
