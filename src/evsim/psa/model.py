"""PSA attestation token claims.

Two claim profiles share one ``PsaClaims`` value type; a ``PsaProfile``
descriptor carries the per-profile field table and validation rules.
``PROFILES`` is the order in which loaders try them.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

import cbor2

from ..errors import ClaimsDecodeError, ClaimsValidationError, NonceError
from ..fields import (
    BYTES,
    INT,
    PSA_COMPONENT_FIELDS,
    STR,
    SW_COMPONENTS,
    ClaimField,
    SoftwareComponent,
    as_values,
    check_components,
    check_size,
    decode_cbor_map,
    decode_json_object,
    encode_cbor_map,
    encode_json_object,
    lifecycle_is_valid,
    require,
)


PSA_PROFILE_1 = "PSA_IOT_PROFILE_1"
PSA_PROFILE_2 = "http://arm.com/psa/2.0.0"

NONCE_SIZES = (32, 48, 64)

_EAN13 = re.compile(r"^[0-9]{13}$")
_EAN13_5 = re.compile(r"^[0-9]{13}-[0-9]{5}$")


@dataclass(frozen=True)
class PsaClaims:
    profile: str
    partition_id: Optional[int] = None
    security_lifecycle: Optional[int] = None
    implementation_id: Optional[bytes] = None
    boot_seed: Optional[bytes] = None
    hardware_version: Optional[str] = None
    certification_reference: Optional[str] = None
    software_components: Optional[Tuple[SoftwareComponent, ...]] = None
    no_software_measurements: Optional[int] = None
    nonce: Optional[bytes] = None
    instance_id: Optional[bytes] = None
    verification_service_indicator: Optional[str] = None
    # whether these claims were loaded for strict use; not a claim
    strict: bool = field(default=True, compare=False)

    @property
    def descriptor(self) -> "PsaProfile":
        return profile_by_name(self.profile)

    def validate(self, expect_nonce: bool = True) -> None:
        self.descriptor.validator(self, expect_nonce)

    def with_nonce(self, nonce: bytes) -> "PsaClaims":
        if len(nonce) not in NONCE_SIZES:
            raise NonceError(
                f"setting nonce: length {len(nonce)} (expecting 32, 48 or 64 bytes)"
            )
        return replace(self, nonce=bytes(nonce))

    def to_json_dict(self) -> Dict[str, Any]:
        return encode_json_object(as_values(self), self.descriptor.fields)

    def to_json(self) -> str:
        return json.dumps(self.to_json_dict(), indent=2)

    def to_cbor(self) -> bytes:
        return cbor2.dumps(encode_cbor_map(as_values(self), self.descriptor.fields), canonical=True)


@dataclass(frozen=True)
class PsaProfile:
    name: str
    fields: Tuple[ClaimField, ...]
    profile_required: bool
    validator: Callable[[PsaClaims, bool], None]

    def _build(self, values: Dict[str, Any], strict: bool) -> PsaClaims:
        declared = values.pop("profile", None)
        if declared is None:
            if self.profile_required:
                raise ClaimsDecodeError("missing mandatory claim profile")
        elif declared != self.name:
            raise ClaimsDecodeError(f"wrong profile {declared!r}")
        return PsaClaims(profile=self.name, strict=strict, **values)

    def from_json(self, obj: Mapping[str, Any], strict: bool = True) -> PsaClaims:
        return self._build(decode_json_object(obj, self.fields, "psa claims"), strict)

    def from_cbor(self, obj: Mapping[Any, Any], strict: bool = True) -> PsaClaims:
        return self._build(decode_cbor_map(obj, self.fields, "psa claims"), strict)


def _common_checks(c: PsaClaims, expect_nonce: bool) -> None:
    if c.nonce is None:
        if expect_nonce:
            raise ClaimsValidationError("psa claims: missing mandatory claim(s): nonce")
    else:
        check_size("nonce", c.nonce, NONCE_SIZES)
    check_size("implementation-id", c.implementation_id, (32,))
    if c.instance_id is not None:
        if len(c.instance_id) != 33 or c.instance_id[0] != 0x01:
            raise ClaimsValidationError(
                "instance-id: expecting 33 bytes starting with 0x01 (EAT UEID of type RAND)"
            )
    if c.security_lifecycle is not None and not lifecycle_is_valid(c.security_lifecycle):
        raise ClaimsValidationError(
            f"security-life-cycle: value {c.security_lifecycle:#06x} is not a known lifecycle state"
        )


def _validate_p1(c: PsaClaims, expect_nonce: bool) -> None:
    require(
        c,
        ("partition_id", "security_lifecycle", "implementation_id", "boot_seed", "instance_id"),
        "psa claims",
    )
    _common_checks(c, expect_nonce)
    check_size("boot-seed", c.boot_seed, (32,))
    if c.hardware_version is not None and not _EAN13.match(c.hardware_version):
        raise ClaimsValidationError(
            f"hardware-version: {c.hardware_version!r} is not an EAN-13 number"
        )
    has_sw = c.software_components is not None
    has_no_sw = c.no_software_measurements is not None
    if has_sw == has_no_sw:
        raise ClaimsValidationError(
            "exactly one of software-components or no-software-measurements is required"
        )
    check_components("software-components", c.software_components)


def _validate_p2(c: PsaClaims, expect_nonce: bool) -> None:
    require(
        c,
        (
            "partition_id",
            "security_lifecycle",
            "implementation_id",
            "software_components",
            "instance_id",
        ),
        "psa claims",
    )
    _common_checks(c, expect_nonce)
    if c.boot_seed is not None and not 8 <= len(c.boot_seed) <= 32:
        raise ClaimsValidationError(
            f"boot-seed: length {len(c.boot_seed)} (expecting 8 to 32 bytes)"
        )
    ref = c.certification_reference
    if ref is not None and not (_EAN13.match(ref) or _EAN13_5.match(ref)):
        raise ClaimsValidationError(
            f"certification-reference: {ref!r} is not EAN-13 or EAN-13+5"
        )
    check_components("software-components", c.software_components)


_SW = ClaimField("software_components", "software-components", -75006, SW_COMPONENTS,
                 components=PSA_COMPONENT_FIELDS)

PROFILE_1 = PsaProfile(
    name=PSA_PROFILE_1,
    fields=(
        ClaimField("profile", "profile", -75000, STR),
        ClaimField("partition_id", "partition-id", -75001, INT),
        ClaimField("security_lifecycle", "security-life-cycle", -75002, INT),
        ClaimField("implementation_id", "implementation-id", -75003, BYTES),
        ClaimField("boot_seed", "boot-seed", -75004, BYTES),
        ClaimField("hardware_version", "hardware-version", -75005, STR),
        _SW,
        ClaimField("no_software_measurements", "no-software-measurements", -75007, INT),
        ClaimField("nonce", "nonce", -75008, BYTES),
        ClaimField("instance_id", "instance-id", -75009, BYTES),
        ClaimField("verification_service_indicator", "verification-service-indicator", -75010, STR),
    ),
    profile_required=False,
    validator=_validate_p1,
)

PROFILE_2 = PsaProfile(
    name=PSA_PROFILE_2,
    fields=(
        ClaimField("profile", "profile", 265, STR),
        ClaimField("partition_id", "partition-id", -75001, INT),
        ClaimField("security_lifecycle", "security-life-cycle", -75002, INT),
        ClaimField("implementation_id", "implementation-id", -75003, BYTES),
        ClaimField("boot_seed", "boot-seed", -75004, BYTES),
        # older claims files still call it hardware-version
        ClaimField("certification_reference", "certification-reference", -75005, STR,
                   aliases=("hardware-version",)),
        _SW,
        ClaimField("nonce", "nonce", 10, BYTES),
        ClaimField("instance_id", "instance-id", 256, BYTES),
        ClaimField("verification_service_indicator", "verification-service-indicator", -75010, STR),
    ),
    profile_required=True,
    validator=_validate_p2,
)

# tried in this order when the profile is not known up front
PROFILES: Tuple[PsaProfile, ...] = (PROFILE_2, PROFILE_1)


def profile_by_name(name: str) -> PsaProfile:
    for p in PROFILES:
        if p.name == name:
            return p
    raise ClaimsDecodeError(f"unknown PSA profile {name!r}")


def known_profiles() -> Tuple[str, ...]:
    return tuple(p.name for p in PROFILES)


__all__ = [
    "NONCE_SIZES",
    "PROFILES",
    "PROFILE_1",
    "PROFILE_2",
    "PSA_PROFILE_1",
    "PSA_PROFILE_2",
    "PsaClaims",
    "PsaProfile",
    "known_profiles",
    "profile_by_name",
]
