"""
File System Event Models.

Defines change kinds, normalized change events, and the deduplicating batch
of rule roots collected during one debounce window.
"""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Iterable, Iterator, List, Set

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ChangeKind(Enum):
    """Kinds of file system changes that trigger a sync"""
    CREATE = "create"
    MODIFY = "modify"   # Includes renames, which carry both paths
    REMOVE = "remove"


class ChangeEvent(BaseModel):
    """
    A normalized file system change.

    Produced by the watch adapter for every raw notification that survives
    filtering, and consumed by the debounce loop.
    """
    model_config = ConfigDict(frozen=True)

    paths: List[Path]
    kind: ChangeKind
    timestamp: datetime = Field(default_factory=datetime.now)

    @field_validator('paths')
    @classmethod
    def validate_paths(cls, v: List[Path]) -> List[Path]:
        """Ensure every path is absolute"""
        if not v:
            raise ValueError('Change event must carry at least one path')
        for path in v:
            if not path.is_absolute():
                raise ValueError(f'Event path must be absolute: {path}')
        return v

    @classmethod
    def created(cls, path: Path) -> 'ChangeEvent':
        return cls(paths=[path], kind=ChangeKind.CREATE)

    @classmethod
    def modified(cls, *paths: Path) -> 'ChangeEvent':
        return cls(paths=list(paths), kind=ChangeKind.MODIFY)

    @classmethod
    def removed(cls, path: Path) -> 'ChangeEvent':
        return cls(paths=[path], kind=ChangeKind.REMOVE)

    def __str__(self) -> str:
        return f"{self.kind.value.upper()}: {', '.join(str(p) for p in self.paths)}"


class PendingBatch:
    """
    Distinct rule roots that need a re-sync.

    A root appears at most once no matter how many events resolved to it,
    which bounds the work done for an event storm.
    """

    def __init__(self, roots: Iterable[Path] = ()):
        self._roots: Set[Path] = set(roots)
        self.event_count = 0

    def add(self, root: Path) -> bool:
        """
        Add a root to the batch.

        Returns:
            True if the root was not already pending
        """
        if root in self._roots:
            return False
        self._roots.add(root)
        return True

    def clear(self) -> None:
        self._roots.clear()
        self.event_count = 0

    @property
    def roots(self) -> Set[Path]:
        return set(self._roots)

    def __contains__(self, root: object) -> bool:
        return root in self._roots

    def __iter__(self) -> Iterator[Path]:
        return iter(sorted(self._roots))

    def __len__(self) -> int:
        return len(self._roots)

    def __bool__(self) -> bool:
        return bool(self._roots)

    def __repr__(self) -> str:
        return f"PendingBatch({sorted(str(root) for root in self._roots)})"
