from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

import cbor2

from ..crypto.cose import Sign1Message, decode_sign1, sign1, verify1
from ..crypto.keys import Signer, Verifier
from ..errors import ClaimsError, MalformedTokenError
from .model import PROFILES, PsaClaims


@dataclass(frozen=True)
class PsaEvidence:
    """A signed PSA attestation token together with its decoded claims."""

    claims: PsaClaims
    message: Sign1Message
    encoded: bytes

    @property
    def nonce(self) -> bytes | None:
        return self.claims.nonce

    @classmethod
    def sign(cls, claims: PsaClaims, signer: Signer) -> "PsaEvidence":
        """Sign ``claims``; strict claims are validated before any signature is made."""
        if claims.strict:
            claims.validate(expect_nonce=True)
        tag = sign1(claims.to_cbor(), signer)
        encoded = cbor2.dumps(tag, canonical=True)
        return cls(claims, decode_sign1(tag), encoded)

    @classmethod
    def decode(cls, buf: bytes) -> "PsaEvidence":
        """Decode a token; the claims profile is worked out from the payload."""
        msg = decode_sign1(buf)
        try:
            payload = cbor2.loads(msg.payload)
        except (cbor2.CBORDecodeError, ValueError) as e:
            raise MalformedTokenError(f"claims payload is not valid CBOR: {e}") from e
        if not isinstance(payload, dict):
            raise MalformedTokenError("claims payload must be a CBOR map")
        attempts: List[Tuple[str, str]] = []
        for profile in PROFILES:
            try:
                claims = profile.from_cbor(payload)
                claims.validate(expect_nonce=True)
            except ClaimsError as e:
                attempts.append((profile.name, str(e)))
                continue
            return cls(claims, msg, bytes(buf))
        detail = "; ".join(f"{p}: {r}" for p, r in attempts)
        raise MalformedTokenError(f"claims do not match any known profile ({detail})")

    def verify(self, verifier: Verifier) -> None:
        verify1(self.message, verifier)


__all__ = ["PsaEvidence"]
