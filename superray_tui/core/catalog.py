"""
Server catalog: ordered server list plus the current selection

The catalog is not locked on its own; it lives inside SessionState and every
access goes through that state's lock.
"""

from typing import Optional, List, Iterable, Tuple

from .errors import InvalidSelection
from .types import Server, LatencyResult, LATENCY_TIMEOUT


class ServerCatalog:
    """Ordered servers and a selection index (-1 = nothing selected)"""

    def __init__(self, servers: Optional[List[Server]] = None):
        self.servers: List[Server] = list(servers or [])
        self.selected_index = 0 if self.servers else -1

    def __len__(self) -> int:
        return len(self.servers)

    @property
    def selected(self) -> Optional[Server]:
        if 0 <= self.selected_index < len(self.servers):
            return self.servers[self.selected_index]
        return None

    def get(self, index: int) -> Server:
        """Return the server at ``index`` or raise InvalidSelection"""
        if not 0 <= index < len(self.servers):
            raise InvalidSelection(
                f"Invalid server index {index} (total: {len(self.servers)})"
            )
        return self.servers[index]

    def select(self, index: int) -> Server:
        server = self.get(index)
        self.selected_index = index
        return server

    def index_of(self, key: Tuple[str, int]) -> int:
        for i, server in enumerate(self.servers):
            if server.key == key:
                return i
        return -1

    def replace(self, servers: Iterable[Server]):
        """
        Swap in a freshly fetched server list

        The previous selection survives when the same address+port is still
        present, otherwise the first entry becomes selected.
        """
        previous = self.selected
        self.servers = list(servers)

        index = self.index_of(previous.key) if previous else -1
        if index < 0:
            index = 0 if self.servers else -1
        self.selected_index = index

    def apply_latency(self, results: Iterable[LatencyResult]):
        """
        Fold probe results back into the catalog

        Entries without a matching successful result are marked timed out,
        which keeps them distinguishable from entries never probed.
        """
        by_key = {}
        for result in results:
            by_key.setdefault(result.key, result)

        for server in self.servers:
            result = by_key.get(server.key)
            if (result is not None and result.succeeded and
                    result.latency_ms is not None and result.latency_ms > 0):
                server.latency_ms = result.latency_ms
            else:
                server.latency_ms = LATENCY_TIMEOUT

    def sort_by_latency(self):
        """
        Stable sort: measured entries by ascending latency, then untested and
        timed-out entries in their existing relative order
        """
        previous = self.selected

        self.servers.sort(
            key=lambda s: (0, s.latency_ms) if s.latency_measured else (1, 0)
        )

        if previous is not None:
            self.selected_index = self.index_of(previous.key)
