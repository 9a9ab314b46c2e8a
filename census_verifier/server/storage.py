"""
Citizen registry backing the commitment tree.

``citizens.json`` is the source of truth: an append-only list of citizen
records in leaf order. The Merkle tree is rebuilt from it on start and
updated incrementally on every registration.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from ..census.config import ROOT_HISTORY_SIZE, TREE_DEPTH
from ..census.exceptions import ConfigError, InternalError, LeafIndexError, TreeFullError
from ..census.field import FieldElement, FieldLike
from ..census.hashing import FieldHasher
from ..census.merkle import IncrementalMerkleTree, MerkleProof, MerkleSnapshot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Citizen:
    commitment: str
    leaf_index: int
    registered_at: str
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "commitment": self.commitment,
            "leafIndex": self.leaf_index,
            "registeredAt": self.registered_at,
        }
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Citizen":
        return cls(
            commitment=str(FieldElement.parse(data["commitment"])),
            leaf_index=int(data["leafIndex"]),
            registered_at=str(data.get("registeredAt", "")),
            metadata=dict(data.get("metadata") or {}),
        )


class CitizenStore:
    """
    Citizen records plus the tree derived from them.

    Registrations are serialized through one lock: the leaf index is
    assigned, the file is rewritten and the tree is extended under it.
    The file is written before the tree so a failed write leaves both
    unchanged.

    Args:
        path: citizens.json location, or None for a purely in-memory store
        depth: Tree depth
        hasher: Field hasher shared with the circuit
        root_history_size: Number of recent roots accepted for proofs
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        depth: int = TREE_DEPTH,
        hasher: Optional[FieldHasher] = None,
        root_history_size: int = ROOT_HISTORY_SIZE,
    ) -> None:
        self._path = Path(path) if path is not None else None
        self._lock = threading.Lock()
        self._tree = IncrementalMerkleTree(
            depth=depth, hasher=hasher, root_history_size=root_history_size
        )
        self._citizens: List[Citizen] = []
        if self._path is not None:
            self._load()

    def _load(self) -> None:
        if not self._path.exists():
            return
        try:
            with open(self._path, "r", encoding="utf-8") as fh:
                records = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"cannot read citizens file {self._path}: {exc}") from exc
        if not isinstance(records, list):
            raise ConfigError(f"citizens file {self._path} must contain a list")

        for position, record in enumerate(records):
            try:
                citizen = Citizen.from_dict(record)
            except (KeyError, TypeError, ValueError) as exc:
                raise ConfigError(f"invalid citizen record #{position}: {exc}") from exc
            if citizen.leaf_index != position:
                raise ConfigError(
                    f"citizen record #{position} has leafIndex {citizen.leaf_index}"
                )
            self._tree.append(citizen.commitment)
            self._citizens.append(citizen)

        logger.info(
            "Loaded %d citizens from %s (root %s)", len(self._citizens), self._path, self._tree.root
        )

    def _persist(self, citizens: List[Citizen]) -> None:
        if self._path is None:
            return
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=".citizens-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump([c.to_dict() for c in citizens], fh, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    @property
    def tree(self) -> IncrementalMerkleTree:
        return self._tree

    @property
    def root(self) -> int:
        return self._tree.root

    def __len__(self) -> int:
        return len(self._citizens)

    def citizens(self) -> Tuple[Citizen, ...]:
        with self._lock:
            return tuple(self._citizens)

    def get(self, index: int) -> Citizen:
        with self._lock:
            if index < 0 or index >= len(self._citizens):
                raise LeafIndexError("Citizen not found")
            return self._citizens[index]

    def find(self, commitment: FieldLike) -> Optional[Citizen]:
        index = self._tree.index_of(commitment)
        if index is None:
            return None
        with self._lock:
            return self._citizens[index]

    def register(
        self, commitment: FieldLike, metadata: Optional[Dict[str, Any]] = None
    ) -> Tuple[Citizen, bool]:
        """
        Append a commitment as the next leaf.

        Idempotent: an already registered commitment returns its existing
        record.

        Returns:
            (citizen, created)

        Raises:
            InputError: If the commitment is not a field element
            TreeFullError: If the tree is at capacity
            InternalError: If citizens.json cannot be written
        """
        value = FieldElement.parse(commitment)
        with self._lock:
            index = self._tree.index_of(value)
            if index is not None:
                return self._citizens[index], False
            if len(self._tree) >= self._tree.capacity:
                raise TreeFullError("Merkle tree is full")

            citizen = Citizen(
                commitment=str(value),
                leaf_index=len(self._citizens),
                registered_at=datetime.now(timezone.utc).isoformat(),
                metadata=dict(metadata or {}),
            )
            updated = self._citizens + [citizen]
            try:
                self._persist(updated)
            except OSError as exc:
                raise InternalError(f"cannot write citizens file: {exc}") from exc

            self._tree.append(value)
            self._citizens = updated

        logger.info(
            "Registered commitment %s... at leaf %d (root %s...)",
            citizen.commitment[:20],
            citizen.leaf_index,
            str(self._tree.root)[:20],
        )
        return citizen, True

    def snapshot(self) -> MerkleSnapshot:
        with self._lock:
            return self._tree.snapshot()

    def proof(self, leaf_index: int) -> MerkleProof:
        return self._tree.proof(leaf_index)

    def proof_for(self, commitment: FieldLike) -> MerkleProof:
        return self._tree.proof_for(commitment)

    def is_known_root(self, root: FieldLike) -> bool:
        return self._tree.is_known_root(root)
