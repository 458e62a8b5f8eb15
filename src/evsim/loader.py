"""Claims loading for the command line and the attester builders.

``STRICT`` loads decode and then validate; ``PERMISSIVE`` loads only decode.
Either way the resulting claims remember the mode, which later decides
whether signing validates first.
"""
from __future__ import annotations

import enum
import json
from typing import Any, List, Tuple

from .cca.model import CcaClaims, PlatformClaims, RealmClaims
from .errors import ClaimsDecodeError, ClaimsError, NoMatchingProfileError
from .psa.model import PROFILES, PsaClaims
from .utils.logging import get_logger


log = get_logger()


class LoadMode(enum.Enum):
    STRICT = "strict"
    PERMISSIVE = "permissive"


def _parse_object(raw: bytes | str, what: str) -> dict:
    try:
        obj = json.loads(raw)
    except ValueError as e:
        raise ClaimsDecodeError(f"{what}: invalid JSON: {e}") from e
    if not isinstance(obj, dict):
        raise ClaimsDecodeError(f"{what}: expecting a JSON object, got {type(obj).__name__}")
    return obj


def load_psa_claims(
    raw: bytes | str,
    mode: LoadMode = LoadMode.STRICT,
    expect_nonce: bool = True,
) -> PsaClaims:
    """Decode PSA claims, trying each known profile in turn.

    The first profile that both decodes and (in strict mode) validates wins.
    When none does, the error lists every profile with its own reason.
    """
    obj = _parse_object(raw, "psa claims")
    strict = mode is LoadMode.STRICT
    attempts: List[Tuple[str, str]] = []
    for profile in PROFILES:
        try:
            claims = profile.from_json(obj, strict=strict)
            if strict:
                claims.validate(expect_nonce=expect_nonce)
        except ClaimsError as e:
            attempts.append((profile.name, str(e)))
            continue
        log.debug("psa claims matched profile %s (%s)", profile.name, mode.value)
        return claims
    raise NoMatchingProfileError(attempts)


def _load_side(obj: dict, member: str, cls: Any, what: str) -> Any:
    if member not in obj:
        raise ClaimsDecodeError(f"unmarshaling {what} claims: missing {member!r}")
    sub = obj[member]
    if not isinstance(sub, dict):
        raise ClaimsDecodeError(f"unmarshaling {what} claims: {member!r} must be a JSON object")
    try:
        return cls.from_json(sub)
    except ClaimsDecodeError as e:
        raise ClaimsDecodeError(f"unmarshaling {what} claims: {e}") from e


def load_cca_claims(
    raw: bytes | str,
    mode: LoadMode = LoadMode.STRICT,
    expect_nonce: bool = True,
) -> CcaClaims:
    obj = _parse_object(raw, "cca claims")
    extra = set(obj) - {"cca-platform-token", "cca-realm-delegated-token"}
    if extra:
        raise ClaimsDecodeError(f"cca claims: unknown member(s): {', '.join(sorted(extra))}")
    platform = _load_side(obj, "cca-platform-token", PlatformClaims, "platform")
    realm = _load_side(obj, "cca-realm-delegated-token", RealmClaims, "realm")
    claims = CcaClaims(platform=platform, realm=realm, strict=mode is LoadMode.STRICT)
    if claims.strict:
        claims.validate(expect_nonce=expect_nonce)
    return claims


__all__ = ["LoadMode", "load_cca_claims", "load_psa_claims"]
