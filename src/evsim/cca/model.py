"""CCA platform and realm claims."""
from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional, Tuple

import cbor2

from ..errors import ClaimsDecodeError, ClaimsValidationError, NonceError
from ..fields import (
    BYTES,
    BYTES_LIST,
    CCA_COMPONENT_FIELDS,
    DIGEST_SIZES,
    INT,
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


CCA_PLATFORM_PROFILE = "http://arm.com/CCA-SSD/1.0.0"

REALM_CHALLENGE_SIZE = 64
PERSONALIZATION_VALUE_SIZE = 64
EXTENSIBLE_MEASUREMENT_COUNT = 4
# uncompressed SEC1 points for P-256, P-384 and P-521
REALM_PUBLIC_KEY_SIZES = (65, 97, 133)

HASH_ALGORITHMS = {
    "sha-256": hashlib.sha256,
    "sha-384": hashlib.sha384,
    "sha-512": hashlib.sha512,
}


PLATFORM_FIELDS: Tuple[ClaimField, ...] = (
    ClaimField("profile", "cca-platform-profile", 265, STR),
    ClaimField("challenge", "cca-platform-challenge", 10, BYTES),
    ClaimField("implementation_id", "cca-platform-implementation-id", 2396, BYTES),
    ClaimField("instance_id", "cca-platform-instance-id", 256, BYTES),
    ClaimField("config", "cca-platform-config", 2401, BYTES),
    ClaimField("lifecycle", "cca-platform-lifecycle", 2395, INT),
    ClaimField("software_components", "cca-platform-sw-components", 2399, SW_COMPONENTS,
               components=CCA_COMPONENT_FIELDS),
    ClaimField("verification_service", "cca-platform-service-indicator", 2400, STR),
    ClaimField("hash_algo_id", "cca-platform-hash-algo-id", 2402, STR),
)

REALM_FIELDS: Tuple[ClaimField, ...] = (
    ClaimField("challenge", "cca-realm-challenge", 10, BYTES),
    ClaimField("personalization_value", "cca-realm-personalization-value", 44235, BYTES),
    ClaimField("initial_measurement", "cca-realm-initial-measurement", 44238, BYTES),
    ClaimField("extensible_measurements", "cca-realm-extensible-measurements", 44239, BYTES_LIST),
    ClaimField("hash_algo_id", "cca-realm-hash-algo-id", 44236, STR),
    ClaimField("public_key", "cca-realm-public-key", 44237, BYTES),
    ClaimField("public_key_hash_algo_id", "cca-realm-public-key-hash-algo-id", 44240, STR),
)


def _to_cbor(obj: Any, table: Tuple[ClaimField, ...]) -> bytes:
    return cbor2.dumps(encode_cbor_map(as_values(obj), table), canonical=True)


@dataclass(frozen=True)
class PlatformClaims:
    profile: Optional[str] = None
    challenge: Optional[bytes] = None
    implementation_id: Optional[bytes] = None
    instance_id: Optional[bytes] = None
    config: Optional[bytes] = None
    lifecycle: Optional[int] = None
    software_components: Optional[Tuple[SoftwareComponent, ...]] = None
    verification_service: Optional[str] = None
    hash_algo_id: Optional[str] = None

    @classmethod
    def from_json(cls, obj: Mapping[str, Any]) -> "PlatformClaims":
        c = cls(**decode_json_object(obj, PLATFORM_FIELDS, "platform claims"))
        c._check_profile()
        return c

    @classmethod
    def from_cbor(cls, obj: Mapping[Any, Any]) -> "PlatformClaims":
        c = cls(**decode_cbor_map(obj, PLATFORM_FIELDS, "platform claims"))
        c._check_profile()
        return c

    def _check_profile(self) -> None:
        if self.profile is not None and self.profile != CCA_PLATFORM_PROFILE:
            raise ClaimsDecodeError(
                f"platform claims: wrong profile {self.profile!r} (want {CCA_PLATFORM_PROFILE})"
            )

    def validate(self) -> None:
        require(
            self,
            (
                "profile",
                "challenge",
                "implementation_id",
                "instance_id",
                "config",
                "lifecycle",
                "software_components",
                "hash_algo_id",
            ),
            "platform claims",
        )
        check_size("cca-platform-challenge", self.challenge, DIGEST_SIZES)
        check_size("cca-platform-implementation-id", self.implementation_id, (32,))
        if len(self.instance_id) != 33 or self.instance_id[0] != 0x01:
            raise ClaimsValidationError(
                "cca-platform-instance-id: expecting 33 bytes starting with 0x01"
            )
        if not lifecycle_is_valid(self.lifecycle):
            raise ClaimsValidationError(
                f"cca-platform-lifecycle: value {self.lifecycle:#06x} is not a known lifecycle state"
            )
        check_components("cca-platform-sw-components", self.software_components)

    def to_json_dict(self) -> Dict[str, Any]:
        return encode_json_object(as_values(self), PLATFORM_FIELDS)

    def to_cbor(self) -> bytes:
        return _to_cbor(self, PLATFORM_FIELDS)


@dataclass(frozen=True)
class RealmClaims:
    challenge: Optional[bytes] = None
    personalization_value: Optional[bytes] = None
    initial_measurement: Optional[bytes] = None
    extensible_measurements: Optional[Tuple[bytes, ...]] = None
    hash_algo_id: Optional[str] = None
    public_key: Optional[bytes] = None
    public_key_hash_algo_id: Optional[str] = None

    @classmethod
    def from_json(cls, obj: Mapping[str, Any]) -> "RealmClaims":
        return cls(**decode_json_object(obj, REALM_FIELDS, "realm claims"))

    @classmethod
    def from_cbor(cls, obj: Mapping[Any, Any]) -> "RealmClaims":
        return cls(**decode_cbor_map(obj, REALM_FIELDS, "realm claims"))

    def validate(self, expect_nonce: bool = True) -> None:
        attrs = [
            "personalization_value",
            "initial_measurement",
            "extensible_measurements",
            "hash_algo_id",
            "public_key",
            "public_key_hash_algo_id",
        ]
        if expect_nonce:
            attrs.insert(0, "challenge")
        require(self, attrs, "realm claims")
        check_size("cca-realm-challenge", self.challenge, (REALM_CHALLENGE_SIZE,))
        check_size(
            "cca-realm-personalization-value", self.personalization_value,
            (PERSONALIZATION_VALUE_SIZE,),
        )
        check_size("cca-realm-initial-measurement", self.initial_measurement, DIGEST_SIZES)
        if len(self.extensible_measurements) != EXTENSIBLE_MEASUREMENT_COUNT:
            raise ClaimsValidationError(
                f"cca-realm-extensible-measurements: {len(self.extensible_measurements)} entries "
                f"(expecting {EXTENSIBLE_MEASUREMENT_COUNT})"
            )
        for i, m in enumerate(self.extensible_measurements):
            check_size(f"cca-realm-extensible-measurements[{i}]", m, DIGEST_SIZES)
        if len(self.public_key) not in REALM_PUBLIC_KEY_SIZES or self.public_key[0] != 0x04:
            raise ClaimsValidationError(
                "cca-realm-public-key: expecting an uncompressed EC point (0x04 || X || Y)"
            )
        if self.public_key_hash_algo_id not in HASH_ALGORITHMS:
            raise ClaimsValidationError(
                f"cca-realm-public-key-hash-algo-id: unsupported {self.public_key_hash_algo_id!r}"
            )

    def public_key_digest(self) -> bytes:
        """Hash of the realm public key, as the platform challenge must carry it."""
        if self.public_key is None:
            raise ClaimsValidationError("realm claims: missing mandatory claim(s): public-key")
        h = HASH_ALGORITHMS.get(self.public_key_hash_algo_id or "")
        if h is None:
            raise ClaimsValidationError(
                f"cca-realm-public-key-hash-algo-id: unsupported {self.public_key_hash_algo_id!r}"
            )
        return h(self.public_key).digest()

    def to_json_dict(self) -> Dict[str, Any]:
        return encode_json_object(as_values(self), REALM_FIELDS)

    def to_cbor(self) -> bytes:
        return _to_cbor(self, REALM_FIELDS)


@dataclass(frozen=True)
class CcaClaims:
    platform: PlatformClaims
    realm: RealmClaims
    strict: bool = field(default=True, compare=False)

    @property
    def profile(self) -> Optional[str]:
        return self.platform.profile

    @property
    def challenge(self) -> Optional[bytes]:
        return self.realm.challenge

    def validate(self, expect_nonce: bool = True) -> None:
        self.platform.validate()
        self.realm.validate(expect_nonce)

    def with_nonce(self, nonce: bytes) -> "CcaClaims":
        if len(nonce) != REALM_CHALLENGE_SIZE:
            raise NonceError(
                f"setting realm challenge: length {len(nonce)} (expecting {REALM_CHALLENGE_SIZE} bytes)"
            )
        return replace(self, realm=replace(self.realm, challenge=bytes(nonce)))

    def to_json_dict(self) -> Dict[str, Any]:
        return {
            "cca-platform-token": self.platform.to_json_dict(),
            "cca-realm-delegated-token": self.realm.to_json_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_json_dict(), indent=2)


__all__ = [
    "CCA_PLATFORM_PROFILE",
    "HASH_ALGORITHMS",
    "REALM_CHALLENGE_SIZE",
    "CcaClaims",
    "PlatformClaims",
    "RealmClaims",
]
