"""Protocol for authenticated-map verifiers.

The redemption verifier only relies on the ``lookup``/``update``-with-proof
contract below, so any authenticated map construction that satisfies it can be
plugged in (the default is the compact sparse Merkle tree in
``basis.crypto.authenticated_map``).
"""

from __future__ import annotations

from typing import Optional, Protocol, TYPE_CHECKING

if TYPE_CHECKING:
    from ...crypto.authenticated_map import TreeFlags


class AuthenticatedMapVerifier(Protocol):
    def lookup(self, digest: bytes, key: bytes, proof: bytes) -> Optional[bytes]:
        """Return the value under *key*, or None when the proof shows absence.

        Raises:
            ProofMismatchError: If the proof does not hash to *digest*.
            MalformedInputError: If the proof cannot be decoded.
        """
        ...

    def update(
        self,
        digest: bytes,
        key: bytes,
        new_value: bytes,
        proof: bytes,
        flags: "TreeFlags",
    ) -> bytes:
        """Return the digest after writing *new_value* under *key*.

        Raises:
            ProofMismatchError: If the proof does not hash to *digest*.
            TreeModeViolationError: If *flags* forbid the insert or update.
        """
        ...
