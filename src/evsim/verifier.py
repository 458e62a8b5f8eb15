from __future__ import annotations

from .cca.model import CcaClaims
from .cca.token import CcaEvidence
from .crypto.keys import resolve_verifier
from .psa.model import PsaClaims
from .psa.token import PsaEvidence


def verify_psa_token(token: bytes, raw_key: bytes | str) -> PsaClaims:
    """Verify a PSA token against a JWK and return its claims.

    Raises KeyResolutionError, MalformedTokenError or VerificationError.
    """
    verifier = resolve_verifier(raw_key)
    evidence = PsaEvidence.decode(token)
    evidence.verify(verifier)
    return evidence.claims


def verify_cca_token(token: bytes, raw_key: bytes | str) -> CcaClaims:
    """Verify a CCA token: the platform half against the IAK in ``raw_key``,
    the realm half against the key it embeds, and the binding between them."""
    verifier = resolve_verifier(raw_key)
    evidence = CcaEvidence.decode(token)
    evidence.verify(verifier)
    return evidence.claims
