"""Authenticated map: a compact sparse Merkle tree over 256-bit keys.

Hashing rules (H = blake2b-256):

- an empty subtree hashes to 32 zero bytes,
- a subtree holding exactly one entry hashes to that entry's leaf hash
  ``H(0x00 || key || H(value))``,
- any other subtree hashes to ``H(0x01 || left || right)``.

Key bits are read most significant first. Because single-entry subtrees collapse
into their leaf, a proof only carries the siblings from the root down to the
point where the key's path leaves the populated part of the tree. The path then
ends in one of three ways, which is what a proof records:

- ``MEMBER``: the leaf for the key itself (the value is carried),
- ``EMPTY``: an empty subtree (the key is absent),
- ``FOREIGN``: the leaf of a different key sharing the path (the key is absent).

``lookup`` and ``update`` only need a digest and a proof. ``AuthenticatedMap`` is
the prover: it keeps every version it has produced until ``retain`` drops the
ones no longer needed, so proofs can be served against a digest the map has held
while new entries are being written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, IntFlag
from typing import Final, Iterable, Iterator, Optional, Union

from ..domain.errors import (
    MalformedInputError,
    ProofMismatchError,
    TreeModeViolationError,
)
from .key_utils import HASH_SIZE, blake2b256

EMPTY: Final[bytes] = bytes(HASH_SIZE)
KEY_BITS: Final[int] = HASH_SIZE * 8

_LEAF_PREFIX: Final[bytes] = b"\x00"
_NODE_PREFIX: Final[bytes] = b"\x01"


class TreeFlags(IntFlag):
    INSERT = 1
    UPDATE = 2
    INSERT_OR_UPDATE = INSERT | UPDATE


class ProofKind(IntEnum):
    MEMBER = 0
    EMPTY = 1
    FOREIGN = 2


def leaf_hash(key: bytes, value: bytes) -> bytes:
    return blake2b256(_LEAF_PREFIX + key + blake2b256(value))


def _leaf_hash_from_value_hash(key: bytes, value_hash: bytes) -> bytes:
    return blake2b256(_LEAF_PREFIX + key + value_hash)


def node_hash(left: bytes, right: bytes) -> bytes:
    return blake2b256(_NODE_PREFIX + left + right)


def key_bit(key: bytes, index: int) -> int:
    return (key[index // 8] >> (7 - index % 8)) & 1


def common_prefix_bits(a: bytes, b: bytes) -> int:
    """Number of leading bits shared by two keys."""
    for i, (x, y) in enumerate(zip(a, b)):
        diff = x ^ y
        if diff:
            return i * 8 + (8 - diff.bit_length())
    return min(len(a), len(b)) * 8


def _check_key(key: bytes) -> None:
    if len(key) != HASH_SIZE:
        raise MalformedInputError(f"Tree keys must be {HASH_SIZE} bytes, got {len(key)}")


@dataclass(frozen=True)
class TreeProof:
    """Path from the root to where *key*'s branch ends."""

    kind: ProofKind
    siblings: tuple[bytes, ...] = ()
    value: Optional[bytes] = None
    foreign_key: Optional[bytes] = None
    foreign_value_hash: Optional[bytes] = None

    def to_bytes(self) -> bytes:
        depth = len(self.siblings)
        bitmap = bytearray((depth + 7) // 8)
        packed = bytearray()
        for i, sibling in enumerate(self.siblings):
            if sibling != EMPTY:
                bitmap[i // 8] |= 0x80 >> (i % 8)
                packed += sibling
        out = bytearray([int(self.kind)])
        out += depth.to_bytes(2, "big")
        out += bitmap
        out += packed
        if self.kind == ProofKind.MEMBER:
            assert self.value is not None
            out += len(self.value).to_bytes(4, "big") + self.value
        elif self.kind == ProofKind.FOREIGN:
            assert self.foreign_key is not None and self.foreign_value_hash is not None
            out += self.foreign_key + self.foreign_value_hash
        return bytes(out)

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    @classmethod
    def from_bytes(cls, data: bytes) -> "TreeProof":
        try:
            kind = ProofKind(data[0])
        except (IndexError, ValueError) as e:
            raise MalformedInputError("Invalid tree proof header") from e
        if len(data) < 3:
            raise MalformedInputError("Truncated tree proof")
        depth = int.from_bytes(data[1:3], "big")
        if depth > KEY_BITS:
            raise MalformedInputError(f"Tree proof depth {depth} exceeds {KEY_BITS}")
        offset = 3
        bitmap_len = (depth + 7) // 8
        bitmap = data[offset : offset + bitmap_len]
        if len(bitmap) != bitmap_len:
            raise MalformedInputError("Truncated tree proof bitmap")
        offset += bitmap_len

        siblings: list[bytes] = []
        for i in range(depth):
            if bitmap[i // 8] & (0x80 >> (i % 8)):
                sibling = data[offset : offset + HASH_SIZE]
                if len(sibling) != HASH_SIZE:
                    raise MalformedInputError("Truncated tree proof sibling")
                siblings.append(sibling)
                offset += HASH_SIZE
            else:
                siblings.append(EMPTY)

        value = foreign_key = foreign_value_hash = None
        if kind == ProofKind.MEMBER:
            if len(data) < offset + 4:
                raise MalformedInputError("Truncated tree proof value length")
            value_len = int.from_bytes(data[offset : offset + 4], "big")
            offset += 4
            value = data[offset : offset + value_len]
            if len(value) != value_len:
                raise MalformedInputError("Truncated tree proof value")
            offset += value_len
        elif kind == ProofKind.FOREIGN:
            foreign_key = data[offset : offset + HASH_SIZE]
            foreign_value_hash = data[offset + HASH_SIZE : offset + 2 * HASH_SIZE]
            if len(foreign_value_hash) != HASH_SIZE:
                raise MalformedInputError("Truncated tree proof foreign leaf")
            offset += 2 * HASH_SIZE

        if offset != len(data):
            raise MalformedInputError("Trailing bytes after tree proof")
        return cls(
            kind=kind,
            siblings=tuple(siblings),
            value=value,
            foreign_key=foreign_key,
            foreign_value_hash=foreign_value_hash,
        )


def _fold(key: bytes, terminal: bytes, siblings: tuple[bytes, ...]) -> bytes:
    current = terminal
    for depth in range(len(siblings) - 1, -1, -1):
        if key_bit(key, depth):
            current = node_hash(siblings[depth], current)
        else:
            current = node_hash(current, siblings[depth])
    return current


def _terminal_hash(key: bytes, proof: TreeProof) -> bytes:
    if proof.kind == ProofKind.MEMBER:
        if proof.value is None:
            raise MalformedInputError("Membership proof without value")
        return leaf_hash(key, proof.value)
    if proof.kind == ProofKind.EMPTY:
        return EMPTY
    foreign_key = proof.foreign_key
    if foreign_key is None or proof.foreign_value_hash is None:
        raise MalformedInputError("Foreign-leaf proof without leaf")
    _check_key(foreign_key)
    if len(proof.foreign_value_hash) != HASH_SIZE:
        raise MalformedInputError("Foreign value hash must be 32 bytes")
    if foreign_key == key:
        raise ProofMismatchError("Foreign leaf carries the looked-up key")
    if common_prefix_bits(key, foreign_key) < len(proof.siblings):
        raise ProofMismatchError("Foreign leaf does not lie on the key's path")
    return _leaf_hash_from_value_hash(foreign_key, proof.foreign_value_hash)


def _check_proof(digest: bytes, key: bytes, proof: TreeProof) -> None:
    _check_key(key)
    if len(digest) != HASH_SIZE:
        raise MalformedInputError(f"Digest must be {HASH_SIZE} bytes")
    if len(proof.siblings) > KEY_BITS:
        raise MalformedInputError("Tree proof too deep")
    if _fold(key, _terminal_hash(key, proof), proof.siblings) != digest:
        raise ProofMismatchError("Tree proof does not match digest")


def lookup(digest: bytes, key: bytes, proof: TreeProof) -> Optional[bytes]:
    """Value under *key* in the map committed to by *digest*, or None if absent."""
    _check_proof(digest, key, proof)
    if proof.kind == ProofKind.MEMBER:
        return proof.value
    return None


def update(
    digest: bytes,
    key: bytes,
    new_value: bytes,
    proof: TreeProof,
    flags: TreeFlags = TreeFlags.INSERT_OR_UPDATE,
) -> bytes:
    """Digest after setting *key* to *new_value*, checked against *proof*."""
    _check_proof(digest, key, proof)
    depth = len(proof.siblings)
    new_leaf = leaf_hash(key, new_value)

    if proof.kind == ProofKind.MEMBER:
        if not flags & TreeFlags.UPDATE:
            raise TreeModeViolationError("Key already present in an insert-only tree")
        return _fold(key, new_leaf, proof.siblings)

    if not flags & TreeFlags.INSERT:
        raise TreeModeViolationError("Key absent from an update-only tree")

    if proof.kind == ProofKind.EMPTY:
        return _fold(key, new_leaf, proof.siblings)

    assert proof.foreign_key is not None and proof.foreign_value_hash is not None
    foreign_leaf = _leaf_hash_from_value_hash(proof.foreign_key, proof.foreign_value_hash)
    subtree = _join_leaves(depth, key, new_leaf, proof.foreign_key, foreign_leaf)
    return _fold(key, subtree, proof.siblings)


def _join_leaves(
    depth: int, key_a: bytes, hash_a: bytes, key_b: bytes, hash_b: bytes
) -> bytes:
    """Hash of the subtree at *depth* holding exactly the two given leaves."""
    split = common_prefix_bits(key_a, key_b)
    if key_bit(key_a, split):
        current = node_hash(hash_b, hash_a)
    else:
        current = node_hash(hash_a, hash_b)
    for d in range(split - 1, depth - 1, -1):
        if key_bit(key_a, d):
            current = node_hash(EMPTY, current)
        else:
            current = node_hash(current, EMPTY)
    return current


class CompactMerkleVerifier:
    """Stateless verifier bound to this module's proof format."""

    def lookup(self, digest: bytes, key: bytes, proof: bytes) -> Optional[bytes]:
        return lookup(digest, key, TreeProof.from_bytes(proof))

    def update(
        self,
        digest: bytes,
        key: bytes,
        new_value: bytes,
        proof: bytes,
        flags: TreeFlags = TreeFlags.INSERT_OR_UPDATE,
    ) -> bytes:
        return update(digest, key, new_value, TreeProof.from_bytes(proof), flags)


@dataclass(frozen=True)
class _Leaf:
    key: bytes
    value: bytes


@dataclass(frozen=True)
class _Node:
    left: bytes
    right: bytes


_Entry = Union[_Leaf, _Node]


@dataclass
class AuthenticatedMap:
    """Persistent prover for the compact sparse Merkle tree.

    Nodes are content-addressed and never mutated, so every digest the map has
    had stays readable through ``get`` and ``prove`` until ``retain`` prunes it.
    """

    flags: TreeFlags = TreeFlags.INSERT_OR_UPDATE
    _nodes: dict[bytes, _Entry] = field(default_factory=dict)
    _digest: bytes = EMPTY
    _size: int = 0

    @property
    def digest(self) -> bytes:
        return self._digest

    def __len__(self) -> int:
        return self._size

    def _store(self, entry: _Entry) -> bytes:
        if isinstance(entry, _Leaf):
            h = leaf_hash(entry.key, entry.value)
        else:
            h = node_hash(entry.left, entry.right)
        self._nodes[h] = entry
        return h

    def _root(self, digest: Optional[bytes]) -> bytes:
        root = self._digest if digest is None else digest
        if root != EMPTY and root not in self._nodes:
            raise ProofMismatchError(f"Unknown digest {root.hex()}")
        return root

    def get(self, key: bytes, digest: Optional[bytes] = None) -> Optional[bytes]:
        _check_key(key)
        current = self._root(digest)
        depth = 0
        while current != EMPTY:
            entry = self._nodes[current]
            if isinstance(entry, _Leaf):
                return entry.value if entry.key == key else None
            current = entry.right if key_bit(key, depth) else entry.left
            depth += 1
        return None

    def prove(self, key: bytes, digest: Optional[bytes] = None) -> TreeProof:
        """Proof of *key*'s value (or absence) against *digest* (default: current)."""
        _check_key(key)
        current = self._root(digest)
        siblings: list[bytes] = []
        depth = 0
        while current != EMPTY:
            entry = self._nodes[current]
            if isinstance(entry, _Leaf):
                if entry.key == key:
                    return TreeProof(
                        kind=ProofKind.MEMBER, siblings=tuple(siblings), value=entry.value
                    )
                return TreeProof(
                    kind=ProofKind.FOREIGN,
                    siblings=tuple(siblings),
                    foreign_key=entry.key,
                    foreign_value_hash=blake2b256(entry.value),
                )
            if key_bit(key, depth):
                siblings.append(entry.left)
                current = entry.right
            else:
                siblings.append(entry.right)
                current = entry.left
            depth += 1
        return TreeProof(kind=ProofKind.EMPTY, siblings=tuple(siblings))

    def put(self, key: bytes, value: bytes) -> TreeProof:
        """Insert or update *key*; returns the proof against the previous digest."""
        proof = self.prove(key)
        if proof.kind == ProofKind.MEMBER:
            if not self.flags & TreeFlags.UPDATE:
                raise TreeModeViolationError("Key already present in an insert-only tree")
        elif not self.flags & TreeFlags.INSERT:
            raise TreeModeViolationError("Key absent from an update-only tree")
        else:
            self._size += 1
        self._digest = self._insert(self._digest, 0, key, value)
        return proof

    def _insert(self, current: bytes, depth: int, key: bytes, value: bytes) -> bytes:
        if current == EMPTY:
            return self._store(_Leaf(key, value))
        entry = self._nodes[current]
        if isinstance(entry, _Leaf):
            new_leaf = self._store(_Leaf(key, value))
            if entry.key == key:
                return new_leaf
            return self._merge_leaves(depth, key, new_leaf, entry.key, current)
        if key_bit(key, depth):
            right = self._insert(entry.right, depth + 1, key, value)
            return self._store(_Node(entry.left, right))
        left = self._insert(entry.left, depth + 1, key, value)
        return self._store(_Node(left, entry.right))

    def _merge_leaves(
        self, depth: int, key_a: bytes, hash_a: bytes, key_b: bytes, hash_b: bytes
    ) -> bytes:
        split = common_prefix_bits(key_a, key_b)
        if key_bit(key_a, split):
            current = self._store(_Node(hash_b, hash_a))
        else:
            current = self._store(_Node(hash_a, hash_b))
        for d in range(split - 1, depth - 1, -1):
            if key_bit(key_a, d):
                current = self._store(_Node(EMPTY, current))
            else:
                current = self._store(_Node(current, EMPTY))
        return current

    def items(self, digest: Optional[bytes] = None) -> Iterator[tuple[bytes, bytes]]:
        """Entries of the map at *digest*, in key order."""
        stack = [self._root(digest)]
        while stack:
            current = stack.pop()
            if current == EMPTY:
                continue
            entry = self._nodes[current]
            if isinstance(entry, _Leaf):
                yield entry.key, entry.value
            else:
                stack.append(entry.right)
                stack.append(entry.left)

    def add_version(self, entries: Iterable[tuple[bytes, bytes]]) -> bytes:
        """Build the map holding exactly *entries* next to the current one.

        The current digest does not move; the returned digest can be passed to
        ``get`` and ``prove``.
        """
        root = EMPTY
        for key, value in entries:
            _check_key(key)
            root = self._insert(root, 0, key, value)
        return root

    def retain(self, digests: Iterable[bytes]) -> int:
        """Drop every node not reachable from *digests* or the current digest.

        Returns the number of nodes removed.
        """
        live: set[bytes] = set()
        stack = [self._digest, *digests]
        while stack:
            current = stack.pop()
            if current == EMPTY or current in live or current not in self._nodes:
                continue
            live.add(current)
            entry = self._nodes[current]
            if isinstance(entry, _Node):
                stack.append(entry.left)
                stack.append(entry.right)
        removed = len(self._nodes) - len(live)
        self._nodes = {h: self._nodes[h] for h in live}
        return removed
