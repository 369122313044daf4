#!/usr/bin/env python3
"""
set_collection.py - Members, comparison keys and normalized set collections.

A SetCollection gathers raw lines for one side of a set operation. Every line
is stored as a Member carrying the text to print, the key it is compared by,
and the position it arrived at. Once all lines are in, normalize() sorts the
collection by key and drops duplicate keys; after that the collection is
read-only and answers membership tests by binary search.

Key options (applied in this order):
    use_basenames       key = last path component (POSIX basename rules)
    ignore_extensions   key = key up to the last '.'
    separator           key = key up to the first occurrence of separator

Dedup guarantee:
    The sort is stable and members arrive in position order, so the member
    that survives for each key is the one that was added first.
"""

from bisect import bisect_left
from collections import namedtuple

Member = namedtuple("Member", "value key position")

KeyOptions = namedtuple(
    "KeyOptions", "use_basenames ignore_extensions separator",
    defaults=(False, False, None),
)


# ─── Key deriver ──────────────────────────────────────────────────────────────

def basename(path: str) -> str:
    """Last component of path, ignoring trailing slashes like basename(3)."""
    stripped = path.rstrip("/")
    if not stripped:
        return "/" if path else ""
    return stripped.rsplit("/", 1)[-1]


def derive_key(line: str, options: KeyOptions = KeyOptions()) -> str:
    key = basename(line) if options.use_basenames else line

    if options.ignore_extensions:
        dot = key.rfind(".")
        if dot != -1:
            key = key[:dot]

    if options.separator:
        cut = key.find(options.separator)
        if cut != -1:
            key = key[:cut]

    return key


def sort_key(key: str) -> bytes:
    """Byte string whose ordering is the byte-lexicographic order of key."""
    try:
        return key.encode("utf-8", "surrogateescape")
    except UnicodeEncodeError:
        # lone surrogates that did not come from undecodable input bytes
        return key.encode("utf-8", "surrogatepass")


# ─── Set collection ───────────────────────────────────────────────────────────

class SetCollection:
    """One input set: append lines, normalize once, then query."""

    def __init__(self, name: str, options: KeyOptions = None):
        self.name        = name
        self.options     = options or KeyOptions()
        self.raw_count   = 0
        self.normalized  = False

        self._members: list     = []   # arrival order until normalized, then key order
        self._sort_keys: list   = []   # parallel to _members once normalized
        self._by_position       = None

    def append(self, value: str):
        if self.normalized:
            raise RuntimeError(f"{self.name}: cannot add members after normalization")
        position = len(self._members)
        self._members.append(Member(value, derive_key(value, self.options), position))
        self.raw_count += 1

    def extend(self, values):
        for value in values:
            self.append(value)

    def normalize(self):
        normalize(self)

    def contains(self, member) -> bool:
        """True if a member with the same key is in this (normalized) set."""
        self._require_normalized()
        key   = sort_key(member.key if isinstance(member, Member) else member)
        index = bisect_left(self._sort_keys, key)
        return index < len(self._sort_keys) and self._sort_keys[index] == key

    def by_value(self) -> list:
        """Members in key order."""
        self._require_normalized()
        return list(self._members)

    def by_position(self) -> list:
        """Members in the order they were originally added."""
        self._require_normalized()
        if self._by_position is None:
            self._by_position = sorted(self._members, key=lambda m: m.position)
        return list(self._by_position)

    def keys(self) -> list:
        return [m.key for m in self._members]

    def _require_normalized(self):
        if not self.normalized:
            raise RuntimeError(f"{self.name}: set has not been normalized")

    def __len__(self):
        return len(self._members)

    def __iter__(self):
        return iter(self._members)

    def __repr__(self):
        state = "normalized" if self.normalized else "raw"
        return f"<SetCollection {self.name!r} {len(self)} members ({state})>"


# ─── Normalizer ───────────────────────────────────────────────────────────────

def normalize(collection: SetCollection):
    """
    Sort collection by key and keep one member per key, in place.
    Calling it again on a normalized collection changes nothing.
    """
    members = collection._members
    decorated = sorted(
        ((sort_key(m.key), m) for m in members), key=lambda pair: pair[0]
    )

    # compact: slot `kept` holds the last member kept so far
    kept = 0
    for j in range(1, len(decorated)):
        if decorated[j][0] != decorated[kept][0]:
            kept += 1
            if kept != j:
                decorated[kept] = decorated[j]
    del decorated[kept + 1:]

    collection._sort_keys   = [k for k, _ in decorated]
    members[:]              = [m for _, m in decorated]
    collection._by_position = None
    collection.normalized   = True


def contains(member, target: SetCollection) -> bool:
    """Binary search for member's key in the normalized target set."""
    return target.contains(member)
