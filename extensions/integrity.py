"""Integrity verification for downloaded source code.

Digests are computed over the exact downloaded bytes and compared with the
values declared in the manifest. A mismatch always blocks the install.
"""

from __future__ import annotations

import hashlib
import hmac
import logging

from extensions.manifest import Integrity
from plugins.errors import IntegrityError

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = ("sha256", "sha512")


def _as_bytes(code: bytes | str) -> bytes:
    return code.encode("utf-8") if isinstance(code, str) else code


def compute_digest(code: bytes | str, algorithm: str = "sha256") -> str:
    """Compute the hex digest of code.

    Args:
        code: Raw bytes, or text that is UTF-8 encoded first.
        algorithm: "sha256" or "sha512".

    Returns:
        Lowercase hex digest.
    """
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise ValueError(f"Unsupported digest algorithm: {algorithm}")
    return hashlib.new(algorithm, _as_bytes(code)).hexdigest()


def verify_integrity(code: bytes | str, expected_hex: str, algorithm: str = "sha256") -> bool:
    """Check code against an expected hex digest (case-insensitive)."""
    if not isinstance(expected_hex, str) or not expected_hex:
        return False
    actual = compute_digest(code, algorithm)
    return hmac.compare_digest(actual, expected_hex.strip().lower())


def integrity_for(code: bytes | str) -> dict[str, str]:
    """Integrity values a publisher should put in the manifest."""
    return {algorithm: compute_digest(code, algorithm) for algorithm in SUPPORTED_ALGORITHMS}


class IntegrityVerifier:
    """Verifies downloaded code against a manifest integrity block.

    Example:
        >>> verifier = IntegrityVerifier()
        >>> verifier.verify(code, entry.integrity, source_id=entry.id)
    """

    def verify(self, code: bytes | str, integrity: Integrity, source_id: str | None = None) -> None:
        """Verify sha256, and sha512 when declared.

        Raises:
            IntegrityError: On any mismatch.
        """
        checks = [("sha256", integrity.sha256)]
        if integrity.sha512:
            checks.append(("sha512", integrity.sha512))

        for algorithm, expected in checks:
            if not verify_integrity(code, expected, algorithm):
                actual = compute_digest(code, algorithm)
                raise IntegrityError(
                    f"Integrity check failed ({algorithm}): expected {expected.lower()}, got {actual}. "
                    "The code may have been tampered with.",
                    source_id=source_id,
                    context={"algorithm": algorithm, "expected": expected.lower(), "actual": actual},
                )

        logger.debug("Integrity verified for %s", source_id or "code")
