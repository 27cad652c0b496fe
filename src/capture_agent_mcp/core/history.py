from __future__ import annotations

from collections import Counter, deque
from typing import Deque, Iterable, List, Tuple


class RecentHistoryWindow:
    """
    Usage counts for the last N finalized seconds.

    Only used to decide whether a connection or protocol is "new".
    A key counts as known while at least one second inside the window used it,
    so the classification never looks at the full session history.
    """

    def __init__(self, size: int = 30):
        if size <= 0:
            raise ValueError("history window size must be positive")
        self.size = int(size)
        self._seconds: Deque[Tuple[int, List[Tuple[str, str]], List[str]]] = deque()
        self._connections: Counter = Counter()
        self._protocols: Counter = Counter()

    def __len__(self) -> int:
        return len(self._seconds)

    def has_connection(self, connection: Tuple[str, str]) -> bool:
        return self._connections[connection] > 0

    def has_protocol(self, protocol: str) -> bool:
        return self._protocols[protocol] > 0

    def push(
        self,
        second: int,
        connections: Iterable[Tuple[str, str]],
        protocols: Iterable[str],
    ) -> None:
        """
        Fold one finalized second into the window, then evict the oldest
        seconds until the window holds at most size entries.
        """
        conns = list(dict.fromkeys(connections))
        protos = list(dict.fromkeys(protocols))

        self._seconds.append((second, conns, protos))
        self._connections.update(conns)
        self._protocols.update(protos)

        while len(self._seconds) > self.size:
            _, old_conns, old_protos = self._seconds.popleft()
            self._connections.subtract(old_conns)
            self._protocols.subtract(old_protos)
            for c in old_conns:
                if self._connections[c] <= 0:
                    del self._connections[c]
            for p in old_protos:
                if self._protocols[p] <= 0:
                    del self._protocols[p]

    def clear(self) -> None:
        self._seconds.clear()
        self._connections.clear()
        self._protocols.clear()
