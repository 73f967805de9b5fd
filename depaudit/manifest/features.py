"""Feature table analysis: which features switch an optional dependency on."""

from __future__ import annotations

from collections.abc import Iterable, Mapping


def _activated_dependency(value: str) -> str | None:
    """Name of the dependency a feature-list entry turns on, if any."""
    if value.startswith("dep:"):
        return value[4:]
    if "?/" in value:
        # weak dependency feature: only applies if enabled elsewhere
        return None
    if "/" in value:
        return value.split("/", 1)[0]
    return value


def activating_features(
    features: Mapping[str, Iterable[str]],
    optional_dependencies: Iterable[str],
) -> dict[str, frozenset[str]]:
    """Map each optional dependency to every feature that activates it.

    An optional dependency ``D`` is turned on by the implicit feature ``D``
    (unless some feature refers to it as ``dep:D``), by any feature listing
    ``dep:D``, ``D`` or ``D/feat``, and by any feature that transitively
    enables one of those.
    """
    optional = set(optional_dependencies)
    explicit = {
        value[4:]
        for values in features.values()
        for value in values
        if value.startswith("dep:")
    }

    direct: dict[str, set[str]] = {name: set() for name in optional}
    enablers: dict[str, set[str]] = {}
    for feature, values in features.items():
        for value in values:
            dependency = _activated_dependency(value)
            if dependency in optional:
                direct[dependency].add(feature)
            if ":" not in value and "/" not in value:
                enablers.setdefault(value, set()).add(feature)

    for name in optional:
        if name not in explicit:
            direct[name].add(name)

    result: dict[str, frozenset[str]] = {}
    for name, seeds in direct.items():
        seen: set[str] = set()
        worklist = sorted(seeds)
        while worklist:
            feature = worklist.pop()
            if feature in seen:
                continue
            seen.add(feature)
            worklist.extend(sorted(enablers.get(feature, ())))
        result[name] = frozenset(seen)
    return result
