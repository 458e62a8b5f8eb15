"""Table-driven codec shared by the PSA and CCA claim models.

Each claim model declares a tuple of ``ClaimField`` entries mapping a Python
attribute to its JSON member name and its CBOR integer key. The helpers here
walk those tables in both directions, so the models themselves only hold
values and validation rules.

JSON carries byte strings as standard (padded) base64, the way the claims
files handed to the command line are written.
"""
from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, fields as dc_fields
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

from .errors import ClaimsDecodeError, ClaimsValidationError


INT = "int"
STR = "str"
BYTES = "bytes"
BYTES_LIST = "bytes_list"
SW_COMPONENTS = "sw_components"


@dataclass(frozen=True)
class ClaimField:
    attr: str
    json_name: str
    cbor_key: int
    kind: str
    aliases: Tuple[str, ...] = ()
    # element table, only for SW_COMPONENTS
    components: Optional[Tuple["ClaimField", ...]] = None


@dataclass(frozen=True)
class SoftwareComponent:
    measurement_type: Optional[str] = None
    measurement_value: Optional[bytes] = None
    version: Optional[str] = None
    signer_id: Optional[bytes] = None
    measurement_description: Optional[str] = None
    hash_algo_id: Optional[str] = None


PSA_COMPONENT_FIELDS: Tuple[ClaimField, ...] = (
    ClaimField("measurement_type", "measurement-type", 1, STR),
    ClaimField("measurement_value", "measurement-value", 2, BYTES),
    ClaimField("version", "version", 4, STR),
    ClaimField("signer_id", "signer-id", 5, BYTES),
    ClaimField("measurement_description", "measurement-description", 6, STR),
)

CCA_COMPONENT_FIELDS: Tuple[ClaimField, ...] = (
    ClaimField("measurement_type", "measurement-type", 1, STR),
    ClaimField("measurement_value", "measurement-value", 2, BYTES),
    ClaimField("version", "version", 4, STR),
    ClaimField("signer_id", "signer-id", 5, BYTES),
    ClaimField("hash_algo_id", "hash-algo-id", 6, STR),
)

DIGEST_SIZES = (32, 48, 64)

# PSA and CCA share the lifecycle encoding: major state in the high byte,
# implementation-defined detail in the low byte.
_LIFECYCLE_STATES = (0x00, 0x10, 0x20, 0x30, 0x40, 0x50, 0x60)


def lifecycle_is_valid(value: int) -> bool:
    return 0 <= value <= 0xFFFF and (value >> 8) in _LIFECYCLE_STATES


# --- value codecs -----------------------------------------------------------

def _b64decode(name: str, value: Any) -> bytes:
    if not isinstance(value, str):
        raise ClaimsDecodeError(f"{name}: expected base64 string, got {type(value).__name__}")
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ClaimsDecodeError(f"{name}: invalid base64: {e}") from e


def _b64encode(value: bytes) -> str:
    return base64.b64encode(value).decode("ascii")


def _decode_value(f: ClaimField, name: str, value: Any, from_json: bool) -> Any:
    if f.kind == INT:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ClaimsDecodeError(f"{name}: expected integer, got {type(value).__name__}")
        return value
    if f.kind == STR:
        if not isinstance(value, str):
            raise ClaimsDecodeError(f"{name}: expected string, got {type(value).__name__}")
        return value
    if f.kind == BYTES:
        if from_json:
            return _b64decode(name, value)
        if not isinstance(value, (bytes, bytearray)):
            raise ClaimsDecodeError(f"{name}: expected byte string, got {type(value).__name__}")
        return bytes(value)
    if f.kind == BYTES_LIST:
        if not isinstance(value, list):
            raise ClaimsDecodeError(f"{name}: expected array, got {type(value).__name__}")
        inner = ClaimField(f.attr, f.json_name, f.cbor_key, BYTES)
        return tuple(_decode_value(inner, f"{name}[{i}]", v, from_json) for i, v in enumerate(value))
    if f.kind == SW_COMPONENTS:
        if not isinstance(value, list):
            raise ClaimsDecodeError(f"{name}: expected array, got {type(value).__name__}")
        table = f.components or ()
        out = []
        for i, item in enumerate(value):
            where = f"{name}[{i}]"
            if not isinstance(item, dict):
                raise ClaimsDecodeError(f"{where}: expected object, got {type(item).__name__}")
            if from_json:
                attrs = decode_json_object(item, table, where)
            else:
                attrs = decode_cbor_map(item, table, where)
            out.append(SoftwareComponent(**attrs))
        return tuple(out)
    raise ValueError(f"unknown claim kind {f.kind!r}")  # pragma: no cover


def _encode_value(f: ClaimField, value: Any, to_json: bool) -> Any:
    if f.kind == BYTES:
        return _b64encode(value) if to_json else bytes(value)
    if f.kind == BYTES_LIST:
        return [_b64encode(v) if to_json else bytes(v) for v in value]
    if f.kind == SW_COMPONENTS:
        table = f.components or ()
        attrs = [{c.attr: getattr(sc, c.attr) for c in table} for sc in value]
        if to_json:
            return [encode_json_object(a, table) for a in attrs]
        return [encode_cbor_map(a, table) for a in attrs]
    return value


# --- object codecs ----------------------------------------------------------

def decode_json_object(obj: Mapping[str, Any], table: Iterable[ClaimField], what: str) -> Dict[str, Any]:
    """Decode a JSON object into ``{attr: value}``; unknown members are errors."""
    by_name: Dict[str, ClaimField] = {}
    for f in table:
        by_name[f.json_name] = f
        for alias in f.aliases:
            by_name[alias] = f
    out: Dict[str, Any] = {}
    for name, value in obj.items():
        f = by_name.get(name)
        if f is None:
            raise ClaimsDecodeError(f"{what}: unknown claim {name!r}")
        if f.attr in out:
            raise ClaimsDecodeError(f"{what}: claim {f.json_name!r} given more than once")
        out[f.attr] = _decode_value(f, name, value, from_json=True)
    return out


def decode_cbor_map(obj: Mapping[Any, Any], table: Iterable[ClaimField], what: str) -> Dict[str, Any]:
    by_key = {f.cbor_key: f for f in table}
    out: Dict[str, Any] = {}
    for key, value in obj.items():
        f = by_key.get(key)
        if f is None:
            raise ClaimsDecodeError(f"{what}: unknown claim key {key!r}")
        out[f.attr] = _decode_value(f, f.json_name, value, from_json=False)
    return out


def encode_json_object(values: Mapping[str, Any], table: Iterable[ClaimField]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for f in table:
        v = values.get(f.attr)
        if v is not None:
            out[f.json_name] = _encode_value(f, v, to_json=True)
    return out


def encode_cbor_map(values: Mapping[str, Any], table: Iterable[ClaimField]) -> Dict[int, Any]:
    out: Dict[int, Any] = {}
    for f in table:
        v = values.get(f.attr)
        if v is not None:
            out[f.cbor_key] = _encode_value(f, v, to_json=False)
    return out


def as_values(obj: Any) -> Dict[str, Any]:
    """Dataclass instance -> ``{attr: value}`` without recursing into children."""
    return {f.name: getattr(obj, f.name) for f in dc_fields(obj)}


# --- validation helpers -----------------------------------------------------

def require(values: Any, attrs: Iterable[str], what: str) -> None:
    missing = [a for a in attrs if getattr(values, a) is None]
    if missing:
        names = ", ".join(a.replace("_", "-") for a in missing)
        raise ClaimsValidationError(f"{what}: missing mandatory claim(s): {names}")


def check_size(name: str, value: Optional[bytes], sizes: Iterable[int]) -> None:
    if value is None:
        return
    allowed = tuple(sizes)
    if len(value) not in allowed:
        want = "/".join(str(s) for s in allowed)
        raise ClaimsValidationError(f"{name}: length {len(value)} (expecting {want} bytes)")


def check_components(
    name: str,
    components: Optional[Tuple[SoftwareComponent, ...]],
    need_signer_id: bool = True,
) -> None:
    if components is None:
        return
    if not components:
        raise ClaimsValidationError(f"{name}: there MUST be at least one entry")
    for i, sc in enumerate(components):
        where = f"{name}[{i}]"
        if sc.measurement_value is None:
            raise ClaimsValidationError(f"{where}: missing mandatory measurement-value")
        check_size(f"{where} measurement-value", sc.measurement_value, DIGEST_SIZES)
        if sc.signer_id is None:
            if need_signer_id:
                raise ClaimsValidationError(f"{where}: missing mandatory signer-id")
        else:
            check_size(f"{where} signer-id", sc.signer_id, DIGEST_SIZES)
