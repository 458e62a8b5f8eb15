"""Evidence builders: the one seam between the session driver and the core.

A session driver hands a builder the server's ``(nonce, accept)`` pair and
gets back ``(evidence, media_type)``. Attester builders mint fresh evidence
for that nonce; the relying-party builder replays a token that was bound to
a nonce earlier and only checks that the binding still holds.
"""
from __future__ import annotations

import hmac
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence, Tuple

from .cca.model import CCA_PLATFORM_PROFILE, CcaClaims
from .cca.token import CcaEvidence
from .crypto.keys import Signer
from .errors import NegotiationError, NonceBindingError, NonceError, ProfileMismatchError
from .psa.model import PsaClaims
from .psa.token import PsaEvidence
from .utils.logging import get_logger


PSA_MEDIA_TYPE = "application/psa-attestation-token"
CCA_MEDIA_TYPE = 'application/eat-collection; profile="http://arm.com/CCA-SSD/1.0.0"'

log = get_logger()


class EvidenceBuilder(Protocol):
    def build_evidence(self, nonce: bytes, accept: Sequence[str]) -> Tuple[bytes, str]:
        ...


def negotiate(media_type: str, accept: Sequence[str]) -> str:
    """Exact match of ``media_type`` in the offered list."""
    if media_type not in accept:
        raise NegotiationError(media_type, accept)
    return media_type


def _check_profile(declared: Optional[str], derived: Optional[str]) -> None:
    if declared is not None and declared != derived:
        raise ProfileMismatchError(declared, str(derived))


@dataclass(frozen=True)
class PsaAttesterEvidenceBuilder:
    claims: PsaClaims
    signer: Signer
    profile: Optional[str] = None

    def build_evidence(self, nonce: bytes, accept: Sequence[str]) -> Tuple[bytes, str]:
        media_type = negotiate(PSA_MEDIA_TYPE, accept)
        claims = self.claims.with_nonce(nonce)
        _check_profile(self.profile, claims.profile)
        evidence = PsaEvidence.sign(claims, self.signer)
        log.debug("signed PSA token (%s, %d bytes)", self.signer.algorithm.name, len(evidence.encoded))
        return evidence.encoded, media_type


@dataclass(frozen=True)
class CcaAttesterEvidenceBuilder:
    claims: CcaClaims
    platform_signer: Signer
    realm_signer: Signer
    profile: Optional[str] = CCA_PLATFORM_PROFILE

    def build_evidence(self, nonce: bytes, accept: Sequence[str]) -> Tuple[bytes, str]:
        media_type = negotiate(CCA_MEDIA_TYPE, accept)
        claims = self.claims.with_nonce(nonce)
        _check_profile(self.profile, claims.profile)
        evidence = CcaEvidence.sign(claims, self.platform_signer, self.realm_signer)
        log.debug("signed CCA token (%d bytes)", len(evidence.encoded))
        return evidence.encoded, media_type


@dataclass(frozen=True)
class RelyingPartyEvidenceBuilder:
    token: bytes
    nonce: bytes
    media_type: str

    @classmethod
    def from_psa_token(cls, token: bytes) -> "RelyingPartyEvidenceBuilder":
        evidence = PsaEvidence.decode(token)
        if evidence.nonce is None:
            raise NonceError("PSA token carries no nonce")
        return cls(bytes(token), evidence.nonce, PSA_MEDIA_TYPE)

    @classmethod
    def from_cca_token(cls, token: bytes) -> "RelyingPartyEvidenceBuilder":
        evidence = CcaEvidence.decode(token)
        if evidence.challenge is None:
            raise NonceError("CCA token carries no realm challenge")
        return cls(bytes(token), evidence.challenge, CCA_MEDIA_TYPE)

    def build_evidence(self, nonce: bytes, accept: Sequence[str]) -> Tuple[bytes, str]:
        media_type = negotiate(self.media_type, accept)
        if not hmac.compare_digest(self.nonce, bytes(nonce)):
            raise NonceBindingError(self.nonce, nonce)
        return self.token, media_type


__all__ = [
    "CCA_MEDIA_TYPE",
    "PSA_MEDIA_TYPE",
    "CcaAttesterEvidenceBuilder",
    "EvidenceBuilder",
    "PsaAttesterEvidenceBuilder",
    "RelyingPartyEvidenceBuilder",
    "negotiate",
]
