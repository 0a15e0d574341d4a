"""Collaborator interfaces (voter registry, election directory) and in-memory versions."""

from __future__ import annotations

import logging
import threading
from typing import Dict, List, Protocol

from data_models import ElectionInfo
from errors import ValidationError
from ring_signature import normalize_public_key

logger = logging.getLogger(__name__)


class VoterRegistry(Protocol):
    def anonymity_set(self, election_id: str) -> List[str]:
        ...

    def is_eligible(self, election_id: str, voter_id: str) -> bool:
        ...


class ElectionDirectory(Protocol):
    def get(self, election_id: str) -> ElectionInfo:
        ...


class InMemoryVoterRegistry:
    """选民注册表 / Registered voters and their ring public keys, per election."""

    def __init__(self) -> None:
        self._voters: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()

    def register(self, election_id: str, voter_id: str, public_key: str) -> None:
        public_key = normalize_public_key(public_key)
        with self._lock:
            voters = self._voters.setdefault(election_id, {})
            if voter_id in voters:
                raise ValidationError(f"Voter {voter_id} already registered for election {election_id}")
            if public_key in voters.values():
                raise ValidationError("Public key already registered for another voter")
            voters[voter_id] = public_key
        logger.debug("Registered voter %s for election %s", voter_id, election_id)

    def anonymity_set(self, election_id: str) -> List[str]:
        with self._lock:
            return sorted(self._voters.get(election_id, {}).values())

    def is_eligible(self, election_id: str, voter_id: str) -> bool:
        with self._lock:
            return voter_id in self._voters.get(election_id, {})

    def public_key_of(self, election_id: str, voter_id: str) -> str:
        with self._lock:
            try:
                return self._voters[election_id][voter_id]
            except KeyError as exc:
                raise ValidationError(f"Voter {voter_id} not registered for election {election_id}") from exc


class InMemoryElectionDirectory:
    def __init__(self) -> None:
        self._elections: Dict[str, ElectionInfo] = {}
        self._lock = threading.Lock()

    def add(self, election: ElectionInfo) -> None:
        with self._lock:
            if election.election_id in self._elections:
                raise ValidationError(f"Election {election.election_id} already exists")
            self._elections[election.election_id] = election

    def get(self, election_id: str) -> ElectionInfo:
        with self._lock:
            try:
                return self._elections[election_id]
            except KeyError as exc:
                raise ValidationError(f"Unknown election {election_id}") from exc

    def __contains__(self, election_id: str) -> bool:
        with self._lock:
            return election_id in self._elections
