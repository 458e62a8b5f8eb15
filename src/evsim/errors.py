"""Exception hierarchy for evidence building, checking and submission.

Library code raises these; only the command line turns them into exit codes.
"""
from __future__ import annotations

from typing import List, Sequence, Tuple


class EvidenceError(Exception):
    """Base class for every failure surfaced by evsim."""


class ConfigError(EvidenceError):
    """Raised when configuration files or environment overrides are malformed."""


# --- keys -------------------------------------------------------------------

class KeyResolutionError(EvidenceError):
    """Raised when a key description cannot be turned into a signer/verifier."""


class MalformedKeyError(KeyResolutionError):
    """The key description could not be parsed."""


class UnsupportedKeyTypeError(KeyResolutionError):
    def __init__(self, key_type: str, message: str | None = None) -> None:
        super().__init__(message or f"unsupported key type: {key_type}")
        self.key_type = key_type


class UnsupportedCurveError(KeyResolutionError):
    def __init__(self, curve: str) -> None:
        super().__init__(f"unsupported elliptic curve: {curve}")
        self.curve = curve


# --- claims -----------------------------------------------------------------

class ClaimsError(EvidenceError):
    """Base class for claims decoding and validation failures."""


class ClaimsDecodeError(ClaimsError):
    """Claims are syntactically wrong (bad JSON/CBOR, unknown claim, bad type)."""


class NoMatchingProfileError(ClaimsDecodeError):
    """None of the known claim profiles accepted the input.

    ``attempts`` keeps one ``(profile, reason)`` pair per profile tried, in the
    order they were tried.
    """

    def __init__(self, attempts: Sequence[Tuple[str, str]]) -> None:
        self.attempts: List[Tuple[str, str]] = list(attempts)
        detail = "; ".join(f"{profile}: {reason}" for profile, reason in self.attempts)
        super().__init__(f"claims do not match any known profile ({detail})")


class ClaimsValidationError(ClaimsError):
    """Claims decoded fine but violate a mandatory-field or value-range rule."""


class ProfileMismatchError(ClaimsError):
    def __init__(self, declared: str, derived: str) -> None:
        super().__init__(f"profile mismatch: requested: {declared} loaded: {derived}")
        self.declared = declared
        self.derived = derived


class NonceError(ClaimsError):
    """The nonce could not be set on the claims (wrong size or target)."""


# --- evidence building ------------------------------------------------------

class NegotiationError(EvidenceError):
    def __init__(self, expected: str, offered: Sequence[str]) -> None:
        self.expected = expected
        self.offered = list(offered)
        super().__init__(f"expecting media type {expected}, got {', '.join(self.offered)}")


class NonceBindingError(EvidenceError):
    def __init__(self, expected: bytes, got: bytes) -> None:
        self.expected = bytes(expected)
        self.got = bytes(got)
        super().__init__(f"expecting nonce {self.expected.hex()}, got {self.got.hex()}")


class SigningError(EvidenceError):
    """The underlying signature operation failed."""


# --- tokens -----------------------------------------------------------------

class MalformedTokenError(EvidenceError):
    """The token could not be decoded, or its claims are invalid."""


class VerificationError(EvidenceError):
    """The token decoded fine but its signature (or key binding) does not verify."""


# --- protocol ---------------------------------------------------------------

class SessionError(EvidenceError):
    """The challenge-response exchange with the verification service failed."""
