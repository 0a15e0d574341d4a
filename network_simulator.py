"""Thread-safe in-memory network simulator for ledger nodes."""

from __future__ import annotations

import json
import logging
import threading
from typing import Callable, Dict, List

from data_models import canonical_json

logger = logging.getLogger(__name__)

ChainProvider = Callable[[], List[dict]]


class NetworkSimulator:
    """网络模拟器，节点之间交换链数据 / Simulates peer links between ledger nodes.

    Chains travel as serialized JSON so every fetch returns an independent
    copy, as it would over a real transport.
    """

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self._providers: Dict[str, ChainProvider] = {}
        self._partitioned: set = set()

    def register_node(self, node_id: str, chain_provider: ChainProvider) -> None:
        """注册节点及其链读取函数 / Register a node and the callable exporting its chain."""
        with self.lock:
            self._providers[node_id] = chain_provider
        logger.debug("Registered node %s", node_id)

    def unregister_node(self, node_id: str) -> None:
        with self.lock:
            self._providers.pop(node_id, None)
            self._partitioned.discard(node_id)

    def set_partitioned(self, node_id: str, partitioned: bool = True) -> None:
        """模拟网络分区 / A partitioned node is unreachable for its peers."""
        with self.lock:
            if partitioned:
                self._partitioned.add(node_id)
            else:
                self._partitioned.discard(node_id)

    def peers_of(self, node_id: str) -> List[str]:
        with self.lock:
            if node_id in self._partitioned:
                return []
            return sorted(p for p in self._providers if p != node_id and p not in self._partitioned)

    def fetch_chain(self, peer_id: str) -> List[dict]:
        with self.lock:
            provider = self._providers.get(peer_id)
        if provider is None:
            raise KeyError(f"Unknown peer {peer_id}")
        return json.loads(canonical_json(provider()))
