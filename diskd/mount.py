from __future__ import annotations

import functools
from dataclasses import dataclass


@functools.total_ordering
@dataclass(frozen=True, slots=True, eq=True, order=False)
class Mount:
    """A live mount: the device number and the path it is mounted at.

    Mounts sort by mount path in *descending* order and then by device number,
    so nested mount points come before their parents.
    """

    dev: int
    mount_path: str

    def compare(self, other: Mount) -> int:
        """Negative, zero or positive as ``self`` sorts before, equal to or after ``other``."""
        if self.mount_path != other.mount_path:
            return -1 if other.mount_path < self.mount_path else 1
        return self.dev - other.dev

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Mount):
            return NotImplemented
        return self.compare(other) < 0
