"""Unit tests for the authenticated map (compact sparse Merkle tree)."""

from __future__ import annotations

import pytest

from basis.crypto.authenticated_map import (
    EMPTY,
    AuthenticatedMap,
    CompactMerkleVerifier,
    ProofKind,
    TreeFlags,
    TreeProof,
    leaf_hash,
    lookup,
    update,
)
from basis.crypto.key_utils import blake2b256
from basis.domain.errors import (
    MalformedInputError,
    ProofMismatchError,
    TreeModeViolationError,
)


def _key(i: int) -> bytes:
    return blake2b256(i.to_bytes(4, "big"))


def _filled(count: int, flags: TreeFlags = TreeFlags.INSERT_OR_UPDATE) -> AuthenticatedMap:
    tree = AuthenticatedMap(flags=flags)
    for i in range(count):
        tree.put(_key(i), f"value-{i}".encode())
    return tree


class TestDigest:
    def test_empty_tree_digest_is_zero(self) -> None:
        assert AuthenticatedMap().digest == EMPTY

    def test_single_entry_digest_is_its_leaf(self) -> None:
        tree = AuthenticatedMap()
        tree.put(_key(1), b"v")
        assert tree.digest == leaf_hash(_key(1), b"v")

    def test_digest_is_independent_of_insertion_order(self) -> None:
        forward = AuthenticatedMap()
        backward = AuthenticatedMap()
        for i in range(20):
            forward.put(_key(i), bytes([i]))
        for i in reversed(range(20)):
            backward.put(_key(i), bytes([i]))
        assert forward.digest == backward.digest

    def test_size_counts_distinct_keys(self) -> None:
        tree = _filled(10)
        tree.put(_key(3), b"updated")
        assert len(tree) == 10


class TestLookup:
    def test_member_proof_returns_value(self) -> None:
        tree = _filled(25)
        for i in range(25):
            proof = tree.prove(_key(i))
            assert proof.kind == ProofKind.MEMBER
            assert lookup(tree.digest, _key(i), proof) == f"value-{i}".encode()

    def test_absence_is_proven(self) -> None:
        tree = _filled(25)
        for i in range(100, 130):
            proof = tree.prove(_key(i))
            assert proof.kind in (ProofKind.EMPTY, ProofKind.FOREIGN)
            assert lookup(tree.digest, _key(i), proof) is None

    def test_absence_in_empty_tree(self) -> None:
        tree = AuthenticatedMap()
        proof = tree.prove(_key(1))
        assert proof.kind == ProofKind.EMPTY
        assert lookup(EMPTY, _key(1), proof) is None

    def test_proof_against_wrong_digest_raises(self) -> None:
        tree = _filled(5)
        proof = tree.prove(_key(1))
        with pytest.raises(ProofMismatchError):
            lookup(blake2b256(b"other"), _key(1), proof)

    def test_proof_for_other_key_raises(self) -> None:
        tree = _filled(5)
        proof = tree.prove(_key(1))
        with pytest.raises(ProofMismatchError):
            lookup(tree.digest, _key(2), proof)

    def test_forged_value_raises(self) -> None:
        tree = _filled(5)
        proof = tree.prove(_key(1))
        forged = TreeProof(kind=proof.kind, siblings=proof.siblings, value=b"forged")
        with pytest.raises(ProofMismatchError):
            lookup(tree.digest, _key(1), forged)

    def test_member_cannot_be_hidden_by_empty_proof(self) -> None:
        tree = _filled(5)
        proof = tree.prove(_key(1))
        hidden = TreeProof(kind=ProofKind.EMPTY, siblings=proof.siblings)
        with pytest.raises(ProofMismatchError):
            lookup(tree.digest, _key(1), hidden)

    def test_bad_key_length_raises(self) -> None:
        tree = _filled(2)
        with pytest.raises(MalformedInputError):
            lookup(tree.digest, b"\x01" * 31, tree.prove(_key(0)))


class TestUpdate:
    def test_update_matches_prover(self) -> None:
        tree = _filled(15)
        for i in (3, 40, 41):
            before = tree.digest
            proof = tree.put(_key(i), b"new")
            assert update(before, _key(i), b"new", proof) == tree.digest

    def test_insert_into_empty_tree(self) -> None:
        tree = AuthenticatedMap()
        proof = tree.put(_key(7), b"v")
        assert update(EMPTY, _key(7), b"v", proof) == tree.digest

    def test_insert_only_tree_rejects_existing_key(self) -> None:
        tree = _filled(4)
        proof = tree.prove(_key(1))
        with pytest.raises(TreeModeViolationError):
            update(tree.digest, _key(1), b"again", proof, TreeFlags.INSERT)

    def test_update_only_tree_rejects_fresh_key(self) -> None:
        tree = _filled(4)
        proof = tree.prove(_key(99))
        with pytest.raises(TreeModeViolationError):
            update(tree.digest, _key(99), b"fresh", proof, TreeFlags.UPDATE)

    def test_tree_mode_violation_is_a_proof_mismatch(self) -> None:
        assert issubclass(TreeModeViolationError, ProofMismatchError)

    def test_prover_enforces_flags(self) -> None:
        tree = _filled(2, flags=TreeFlags.INSERT)
        with pytest.raises(TreeModeViolationError):
            tree.put(_key(0), b"again")

    def test_update_with_stale_proof_raises(self) -> None:
        tree = _filled(6)
        stale = tree.prove(_key(2))
        tree.put(_key(2), b"moved on")
        with pytest.raises(ProofMismatchError):
            update(tree.digest, _key(2), b"again", stale)


class TestSnapshots:
    def test_old_digests_remain_provable(self) -> None:
        tree = _filled(8)
        old_digest = tree.digest
        tree.put(_key(1), b"changed")
        tree.put(_key(50), b"added")

        assert tree.get(_key(1), old_digest) == b"value-1"
        assert tree.get(_key(50), old_digest) is None
        proof = tree.prove(_key(1), old_digest)
        assert lookup(old_digest, _key(1), proof) == b"value-1"

    def test_unknown_digest_raises(self) -> None:
        tree = _filled(3)
        with pytest.raises(ProofMismatchError, match="Unknown digest"):
            tree.prove(_key(1), blake2b256(b"never held"))

    def test_items_lists_entries_of_a_snapshot(self) -> None:
        tree = _filled(4)
        snapshot = tree.digest
        tree.put(_key(9), b"later")
        assert {k for k, _ in tree.items(snapshot)} == {_key(i) for i in range(4)}

    def test_add_version_matches_incremental_build(self) -> None:
        tree = _filled(5)
        rebuilt = AuthenticatedMap()
        digest = rebuilt.add_version(tree.items())
        assert digest == tree.digest
        assert rebuilt.digest == EMPTY
        assert rebuilt.get(_key(3), digest) == b"value-3"

    def test_retain_drops_unlisted_versions(self) -> None:
        tree = _filled(4)
        kept = tree.digest
        tree.put(_key(1), b"intermediate")
        dropped = tree.digest
        tree.put(_key(1), b"latest")

        assert tree.retain([kept]) > 0

        assert tree.get(_key(1), kept) == b"value-1"
        assert tree.get(_key(1)) == b"latest"
        with pytest.raises(ProofMismatchError, match="Unknown digest"):
            tree.prove(_key(1), dropped)
        tree.put(_key(7), b"after prune")
        assert tree.get(_key(2)) == b"value-2"


class TestProofEncoding:
    def test_decoded_proofs_verify(self) -> None:
        tree = _filled(30)
        verifier = CompactMerkleVerifier()
        for i in (0, 5, 77):
            encoded = tree.prove(_key(i)).to_bytes()
            expected = f"value-{i}".encode() if i < 30 else None
            assert verifier.lookup(tree.digest, _key(i), encoded) == expected

    def test_empty_siblings_are_compressed(self) -> None:
        tree = AuthenticatedMap()
        # Keys sharing a long prefix force a deep path of empty siblings.
        a = b"\x00" * 31 + b"\x01"
        b = b"\x00" * 31 + b"\x02"
        tree.put(a, b"a")
        tree.put(b, b"b")
        proof = tree.prove(a)
        assert len(proof.siblings) > 200
        assert len(proof.to_bytes()) < 3 + 32 + 2 * 32 + 4 + 1

    def test_truncated_proof_raises(self) -> None:
        encoded = _filled(10).prove(_key(3)).to_bytes()
        with pytest.raises(MalformedInputError):
            TreeProof.from_bytes(encoded[:-1])

    def test_trailing_bytes_raise(self) -> None:
        encoded = _filled(10).prove(_key(3)).to_bytes()
        with pytest.raises(MalformedInputError, match="Trailing"):
            TreeProof.from_bytes(encoded + b"\x00")

    def test_unknown_kind_raises(self) -> None:
        with pytest.raises(MalformedInputError):
            TreeProof.from_bytes(b"\x07\x00\x00")
