import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Hashable, Optional


def now_ms() -> int:
  return int(time.time() * 1000)


@dataclass
class CacheEntry:
  value: Any
  timestamp: int
  expires_in: int
  metadata: Dict[str, Any] = field(default_factory=dict)

  def is_fresh(self, now: int) -> bool:
    return now - self.timestamp < self.expires_in


class TtlCache:
  """In-memory mapping whose entries expire after a fixed number of milliseconds.

  Entries older than `expires_in + stale_for` are pruned on every write, so
  `peek` can still serve an expired value for `stale_for` ms. At most
  `max_entries` are kept; the oldest write goes first when the cap is hit.
  """

  def __init__(
    self,
    expires_in: int,
    clock: Callable[[], int] = now_ms,
    max_entries: int = 256,
    stale_for: int = 0,
  ) -> None:
    self.expires_in = expires_in
    self.stale_for = stale_for
    self.clock = clock
    self.max_entries = max_entries
    self._entries: Dict[Hashable, CacheEntry] = {}

  def peek(self, key: Hashable) -> Optional[CacheEntry]:
    """Return the entry for key even when it has expired."""
    return self._entries.get(key)

  def get_entry(self, key: Hashable) -> Optional[CacheEntry]:
    entry = self._entries.get(key)
    if entry is None or not entry.is_fresh(self.clock()):
      return None
    return entry

  def get(self, key: Hashable) -> Any:
    entry = self.get_entry(key)
    return entry.value if entry else None

  def set(self, key: Hashable, value: Any, **metadata: Any) -> CacheEntry:
    now = self.clock()
    # Entries are replaced whole so readers never observe a partial write.
    entry = CacheEntry(value=value, timestamp=now, expires_in=self.expires_in, metadata=metadata)
    self._entries.pop(key, None)
    self._prune(now)
    self._entries[key] = entry
    return entry

  def _prune(self, now: int) -> None:
    horizon = self.expires_in + self.stale_for
    for stale_key in [k for k, e in self._entries.items() if now - e.timestamp >= horizon]:
      del self._entries[stale_key]
    # dicts keep insertion order, so the first key is the oldest write.
    while len(self) >= self.max_entries:
      del self._entries[next(iter(self._entries))]

  def __len__(self) -> int:
    return len(self._entries)
