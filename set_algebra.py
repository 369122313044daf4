#!/usr/bin/env python3
"""
set_algebra.py - Union, difference, intersection and symmetric difference
over two normalized SetCollections.

Each operation is a generator of member values (the original lines), so the
caller can write them out one at a time. Membership is always decided by
comparison key. With maintain_order the members of each set are emitted in
the order they were added; otherwise in key order.
"""

from set_collection import SetCollection, contains

UNION                = "union"
DIFFERENCE           = "difference"
INTERSECTION         = "intersection"
SYMMETRIC_DIFFERENCE = "symmetric_difference"

OPERATIONS = (UNION, DIFFERENCE, INTERSECTION, SYMMETRIC_DIFFERENCE)


class SetAlgebra:
    def __init__(self, set1: SetCollection, set2: SetCollection,
                 maintain_order: bool = False, trace=None):
        """
        trace, if given, is called as trace(target_set, member, result)
        after every membership test.
        """
        for s in (set1, set2):
            if not s.normalized:
                raise RuntimeError(f"{s.name}: normalize the set before running operations")

        self.set1           = set1
        self.set2           = set2
        self.maintain_order = maintain_order
        self._trace         = trace

    # ── Helpers ───────────────────────────────────────────────────────────────

    def _ordered(self, collection: SetCollection) -> list:
        if self.maintain_order:
            return collection.by_position()
        return collection.by_value()

    def _is_member(self, member, target: SetCollection) -> bool:
        result = contains(member, target)
        if self._trace:
            self._trace(target, member, result)
        return result

    # ── Operations ────────────────────────────────────────────────────────────

    def union(self):
        for member in self._ordered(self.set1):
            yield member.value
        for member in self._ordered(self.set2):
            if not self._is_member(member, self.set1):
                yield member.value

    def difference(self):
        for member in self._ordered(self.set1):
            if not self._is_member(member, self.set2):
                yield member.value

    def intersection(self):
        for member in self._ordered(self.set1):
            if self._is_member(member, self.set2):
                yield member.value

    def symmetric_difference(self):
        yield from self.difference()
        for member in self._ordered(self.set2):
            if not self._is_member(member, self.set1):
                yield member.value

    def run(self, operation: str):
        """Return the generator for the named operation."""
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown operation: {operation!r}")
        return getattr(self, operation)()


def summarize(operation: str, algebra: SetAlgebra, emitted: int) -> dict:
    """Plain-data description of a finished run, ready for yaml.dump."""
    options = algebra.set1.options
    return {
        "operation": operation,
        "options": {
            "use_basenames":     options.use_basenames,
            "ignore_extensions": options.ignore_extensions,
            "separator":         options.separator,
            "maintain_order":    algebra.maintain_order,
        },
        "sets": [
            {"name": s.name, "read": s.raw_count, "distinct": len(s)}
            for s in (algebra.set1, algebra.set2)
        ],
        "emitted": emitted,
    }
