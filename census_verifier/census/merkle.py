"""
Fixed-depth Merkle commitment tree over identity commitments.

Positions beyond the current leaf count are filled with a precomputed
zero ladder (``zero[0] = 0``, ``zero[i+1] = H(zero[i], zero[i])``) so a
partially filled tree still has a complete root of depth D.

Two implementations are provided and must agree bit for bit:

- ``build_proof`` / ``compute_root`` recompute every level from the leaf
  list. They are the reference algorithm.
- ``IncrementalMerkleTree`` keeps every level cached and only rehashes the
  leaf-to-root path on append, so proofs cost O(D) instead of O(D·n).
"""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from .config import EMPTY_TREE_ROOT, MAX_TREE_DEPTH, ROOT_HISTORY_SIZE, TREE_DEPTH
from .exceptions import DuplicateLeafError, InputError, LeafIndexError, TreeFullError
from .field import FieldElement, FieldLike
from .hashing import FieldHasher, load_hasher


@dataclass(frozen=True)
class MerkleProof:
    """Inclusion proof for a single leaf."""

    leaf_index: int
    leaf: int
    path_elements: Tuple[int, ...]
    path_indices: Tuple[int, ...]  # 0 = current node is the left child
    root: int

    @property
    def depth(self) -> int:
        return len(self.path_elements)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leafIndex": self.leaf_index,
            "leaf": str(self.leaf),
            "pathElements": [str(e) for e in self.path_elements],
            "pathIndices": list(self.path_indices),
            "root": str(self.root),
        }


@dataclass(frozen=True)
class MerkleSnapshot:
    """
    Ordered leaves and depth of a tree at one point in time.

    ``root`` is derived from ``(leaves, depth)`` and does not take part in
    equality.
    """

    leaves: Tuple[int, ...]
    depth: int
    root: int = field(compare=False)

    @classmethod
    def from_leaves(
        cls,
        leaves: Iterable[FieldLike],
        depth: int = TREE_DEPTH,
        hasher: Optional[FieldHasher] = None,
    ) -> "MerkleSnapshot":
        _validate_depth(depth)
        parsed = tuple(_parse_leaves(leaves, depth))
        return cls(leaves=parsed, depth=depth, root=compute_root(parsed, depth, hasher))

    def __len__(self) -> int:
        return len(self.leaves)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leafCount": len(self.leaves),
            "root": str(self.root),
            "treeDepth": self.depth,
            "leaves": [str(leaf) for leaf in self.leaves],
        }


def _validate_depth(depth: int) -> None:
    if not isinstance(depth, int) or depth < 1 or depth > MAX_TREE_DEPTH:
        raise ValueError(f"depth must be in [1, {MAX_TREE_DEPTH}], got {depth!r}")


def _resolve_hasher(hasher: Optional[FieldHasher]) -> FieldHasher:
    return hasher if hasher is not None else load_hasher()


def zero_values(depth: int = TREE_DEPTH, hasher: Optional[FieldHasher] = None) -> List[int]:
    """
    Precompute the zero ladder for a tree of the given depth.

    Returns:
        ``depth + 1`` values; ``zeros[depth]`` is the root of an all-zero tree.
    """
    _validate_depth(depth)
    hasher = _resolve_hasher(hasher)
    zeros = [0]
    for _ in range(depth):
        zeros.append(hasher(zeros[-1], zeros[-1]))
    return zeros


def _next_level(nodes: Sequence[int], zero: int, hasher: FieldHasher) -> List[int]:
    level: List[int] = []
    for i in range(0, len(nodes), 2):
        left = nodes[i]
        right = nodes[i + 1] if i + 1 < len(nodes) else zero
        level.append(hasher(left, right))
    return level


def _parse_leaves(leaves: Iterable[FieldLike], depth: int) -> List[int]:
    parsed = [int(FieldElement.parse(leaf)) for leaf in leaves]
    if len(parsed) > (1 << depth):
        raise TreeFullError(f"{len(parsed)} leaves exceed capacity of depth {depth}")
    return parsed


def build_proof(
    leaves: Sequence[FieldLike],
    leaf_index: int,
    depth: int = TREE_DEPTH,
    hasher: Optional[FieldHasher] = None,
) -> MerkleProof:
    """
    Build an inclusion proof by recomputing the tree level by level.

    Args:
        leaves: Ordered leaf sequence, at most 2^depth long
        leaf_index: Index of the leaf to prove
        depth: Tree depth D
        hasher: Two-input field hash (defaults to the configured hasher)

    Returns:
        MerkleProof with D path elements and direction bits

    Raises:
        LeafIndexError: If leaf_index is not a populated position
    """
    _validate_depth(depth)
    hasher = _resolve_hasher(hasher)
    nodes = _parse_leaves(leaves, depth)

    if not isinstance(leaf_index, int) or leaf_index < 0 or leaf_index >= len(nodes):
        raise LeafIndexError("Leaf index out of bounds")

    zeros = zero_values(depth, hasher)
    leaf = nodes[leaf_index]
    path_elements: List[int] = []
    path_indices: List[int] = []
    index = leaf_index

    for level in range(depth):
        is_left = index % 2 == 0
        sibling_index = index + 1 if is_left else index - 1
        if sibling_index < len(nodes):
            path_elements.append(nodes[sibling_index])
        else:
            path_elements.append(zeros[level])
        path_indices.append(0 if is_left else 1)

        nodes = _next_level(nodes, zeros[level], hasher)
        index //= 2

    return MerkleProof(
        leaf_index=leaf_index,
        leaf=leaf,
        path_elements=tuple(path_elements),
        path_indices=tuple(path_indices),
        root=nodes[0],
    )


def compute_root(
    leaves: Sequence[FieldLike],
    depth: int = TREE_DEPTH,
    hasher: Optional[FieldHasher] = None,
) -> int:
    """Root of the tree over ``leaves``; ``EMPTY_TREE_ROOT`` when empty."""
    _validate_depth(depth)
    hasher = _resolve_hasher(hasher)
    nodes = _parse_leaves(leaves, depth)
    if not nodes:
        return EMPTY_TREE_ROOT

    zeros = zero_values(depth, hasher)
    for level in range(depth):
        nodes = _next_level(nodes, zeros[level], hasher)
    return nodes[0]


def verify_proof(
    leaf: FieldLike,
    path_elements: Sequence[FieldLike],
    path_indices: Sequence[int],
    root: FieldLike,
    hasher: Optional[FieldHasher] = None,
) -> bool:
    """
    Recompute the root from a leaf and its path.

    Direction bit 0 hashes ``(current, sibling)``, bit 1 hashes
    ``(sibling, current)``. This is the same fold the membership circuit
    performs.

    Returns:
        True if the recomputed root equals ``root``
    """
    if len(path_elements) != len(path_indices):
        return False
    hasher = _resolve_hasher(hasher)
    try:
        current = int(FieldElement.parse(leaf))
        expected = int(FieldElement.parse(root))
        siblings = [int(FieldElement.parse(e)) for e in path_elements]
    except InputError:
        return False

    for sibling, direction in zip(siblings, path_indices):
        if direction == 0:
            current = hasher(current, sibling)
        elif direction == 1:
            current = hasher(sibling, current)
        else:
            return False

    return current == expected


class IncrementalMerkleTree:
    """
    Append-only Merkle tree with per-level cached nodes.

    ``levels[0]`` holds the leaves, ``levels[l]`` the populated nodes of
    level ``l`` (``ceil(n / 2^l)`` entries), and ``levels[depth][0]`` the
    root. Appending rehashes one node per level.

    Usage:
        tree = IncrementalMerkleTree(depth=20)
        index = tree.append(commitment)
        proof = tree.proof(index)
        assert verify_proof(proof.leaf, proof.path_elements,
                            proof.path_indices, tree.root)
    """

    def __init__(
        self,
        depth: int = TREE_DEPTH,
        hasher: Optional[FieldHasher] = None,
        leaves: Iterable[FieldLike] = (),
        root_history_size: int = ROOT_HISTORY_SIZE,
    ) -> None:
        _validate_depth(depth)
        if root_history_size < 1:
            raise ValueError("root_history_size must be >= 1")
        self._depth = depth
        self._hasher = _resolve_hasher(hasher)
        self._zeros = zero_values(depth, self._hasher)
        self._levels: List[List[int]] = [[] for _ in range(depth + 1)]
        self._positions: Dict[int, int] = {}
        self._root_history: deque[int] = deque(maxlen=root_history_size)
        self._lock = threading.RLock()

        for leaf in leaves:
            self.append(leaf)

    @property
    def depth(self) -> int:
        return self._depth

    @property
    def capacity(self) -> int:
        return 1 << self._depth

    @property
    def hasher(self) -> FieldHasher:
        return self._hasher

    @property
    def zeros(self) -> Tuple[int, ...]:
        return tuple(self._zeros)

    def __len__(self) -> int:
        return len(self._levels[0])

    @property
    def leaves(self) -> Tuple[int, ...]:
        with self._lock:
            return tuple(self._levels[0])

    @property
    def root(self) -> int:
        """Current root, or ``EMPTY_TREE_ROOT`` for an empty tree."""
        with self._lock:
            if not self._levels[0]:
                return EMPTY_TREE_ROOT
            return self._levels[self._depth][0]

    @property
    def full_root(self) -> int:
        """Current root with the zero ladder applied to an empty tree."""
        with self._lock:
            if not self._levels[0]:
                return self._zeros[self._depth]
            return self._levels[self._depth][0]

    def append(self, leaf: FieldLike) -> int:
        """
        Append a leaf and update the cached path to the root.

        Returns:
            Index assigned to the leaf

        Raises:
            TreeFullError: If the tree holds 2^depth leaves
            DuplicateLeafError: If the leaf is already present
        """
        value = int(FieldElement.parse(leaf))
        with self._lock:
            if value in self._positions:
                raise DuplicateLeafError("Commitment already registered")
            if len(self._levels[0]) >= self.capacity:
                raise TreeFullError("Merkle tree is full")

            index = len(self._levels[0])
            self._levels[0].append(value)
            self._positions[value] = index

            node_index = index
            for level in range(self._depth):
                nodes = self._levels[level]
                parent_index = node_index // 2
                left = nodes[2 * parent_index]
                right_index = 2 * parent_index + 1
                right = nodes[right_index] if right_index < len(nodes) else self._zeros[level]
                parent = self._hasher(left, right)

                upper = self._levels[level + 1]
                if parent_index < len(upper):
                    upper[parent_index] = parent
                else:
                    upper.append(parent)
                node_index = parent_index

            self._root_history.append(self._levels[self._depth][0])
            return index

    def proof(self, leaf_index: int) -> MerkleProof:
        """
        Inclusion proof read from the cached levels.

        Raises:
            LeafIndexError: If leaf_index is not a populated position
        """
        with self._lock:
            if (
                not isinstance(leaf_index, int)
                or leaf_index < 0
                or leaf_index >= len(self._levels[0])
            ):
                raise LeafIndexError("Leaf index out of bounds")

            path_elements: List[int] = []
            path_indices: List[int] = []
            index = leaf_index
            for level in range(self._depth):
                nodes = self._levels[level]
                sibling_index = index ^ 1
                if sibling_index < len(nodes):
                    path_elements.append(nodes[sibling_index])
                else:
                    path_elements.append(self._zeros[level])
                path_indices.append(index & 1)
                index //= 2

            return MerkleProof(
                leaf_index=leaf_index,
                leaf=self._levels[0][leaf_index],
                path_elements=tuple(path_elements),
                path_indices=tuple(path_indices),
                root=self._levels[self._depth][0],
            )

    def index_of(self, leaf: FieldLike) -> Optional[int]:
        try:
            value = int(FieldElement.parse(leaf))
        except InputError:
            return None
        with self._lock:
            return self._positions.get(value)

    def proof_for(self, leaf: FieldLike) -> MerkleProof:
        index = self.index_of(leaf)
        if index is None:
            raise LeafIndexError("Commitment not found")
        return self.proof(index)

    def is_known_root(self, root: FieldLike) -> bool:
        """True if ``root`` is the current root or one of the recent ones."""
        try:
            value = int(FieldElement.parse(root))
        except InputError:
            return False
        with self._lock:
            return value in self._root_history

    def recent_roots(self) -> Tuple[int, ...]:
        with self._lock:
            return tuple(self._root_history)

    def snapshot(self) -> MerkleSnapshot:
        with self._lock:
            return MerkleSnapshot(
                leaves=tuple(self._levels[0]), depth=self._depth, root=self.root
            )

    def to_dict(self) -> Dict[str, Any]:
        return self.snapshot().to_dict()
