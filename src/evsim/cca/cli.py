from __future__ import annotations

import argparse
from pathlib import Path

from ..builder import CcaAttesterEvidenceBuilder, RelyingPartyEvidenceBuilder
from ..common import (
    add_session_options,
    default_token_path,
    in_context,
    load_signer,
    read_file,
    run_session,
    session_settings,
)
from ..config import Settings
from ..loader import LoadMode, load_cca_claims
from ..verifier import verify_cca_token
from .model import REALM_CHALLENGE_SIZE
from .token import CcaEvidence


def cmd_create(args: argparse.Namespace, settings: Settings) -> int:
    mode = LoadMode.PERMISSIVE if args.allow_invalid else LoadMode.STRICT
    with in_context(f"loading claims from {args.claims}"):
        claims = load_cca_claims(read_file(args.claims), mode=mode)
    pak = load_signer(args.pak, "PAK signing key")
    rak = load_signer(args.rak, "RAK signing key")
    evidence = CcaEvidence.sign(claims, pak, rak)
    out = Path(args.token) if args.token else default_token_path(args.claims)
    out.write_bytes(evidence.encoded)
    print(f'>> "{out}" successfully created')
    return 0


def cmd_check(args: argparse.Namespace, settings: Settings) -> int:
    token, key = read_file(args.token), read_file(args.key)
    with in_context(f"verifying evidence from {args.token} using key from {args.key}"):
        claims = verify_cca_token(token, key)
    print(f'>> "{args.token}" verified')
    if args.claims:
        Path(args.claims).write_text(claims.to_json() + "\n", encoding="utf-8")
        print(f'>> claims saved to "{args.claims}"')
    else:
        print(">> embedded claims:")
        print(claims.to_json())
    return 0


def cmd_print(args: argparse.Namespace, settings: Settings) -> int:
    with in_context(f"loading evidence from {args.token}"):
        evidence = CcaEvidence.decode(read_file(args.token))
    print(evidence.claims.to_json())
    return 0


def cmd_attester(args: argparse.Namespace, settings: Settings) -> int:
    s = session_settings(args, settings)
    with in_context(f"loading claims from {args.claims}"):
        claims = load_cca_claims(read_file(args.claims), expect_nonce=False)
    pak = load_signer(args.pak, "PAK signing key")
    rak = load_signer(args.rak, "RAK signing key")
    builder = CcaAttesterEvidenceBuilder(claims, pak, rak)
    return run_session(builder, s, nonce_size=REALM_CHALLENGE_SIZE)


def cmd_relying_party(args: argparse.Namespace, settings: Settings) -> int:
    s = session_settings(args, settings)
    with in_context(f"loading evidence from {args.token}"):
        builder = RelyingPartyEvidenceBuilder.from_cca_token(read_file(args.token))
    return run_session(builder, s, nonce=builder.nonce)


def register(sub: argparse._SubParsersAction) -> None:
    p = sub.add_parser("cca", help="CCA attestation token manipulation")
    cca = p.add_subparsers(dest="cca_cmd", required=True)

    p_create = cca.add_parser("create", help="create a CCA token from claims, PAK and RAK")
    p_create.add_argument("-c", "--claims", required=True)
    p_create.add_argument("-p", "--pak", required=True, help="JWK file with the platform key")
    p_create.add_argument("-r", "--rak", required=True, help="JWK file with the realm key")
    p_create.add_argument("-t", "--token", help="output file (default: <claims basename>.cbor)")
    p_create.add_argument("-I", "--allow-invalid", dest="allow_invalid", action="store_true")
    p_create.set_defaults(func=cmd_create)

    p_check = cca.add_parser("check", help="syntactic and signature checks on a CCA token")
    p_check.add_argument("-t", "--token", required=True)
    p_check.add_argument("-k", "--key", required=True, help="JWK file with the public IAK")
    p_check.add_argument("-c", "--claims", help="save extracted claims here (default: stdout)")
    p_check.set_defaults(func=cmd_check)

    p_print = cca.add_parser("print", help="print CCA token claims without checking signatures")
    p_print.add_argument("-t", "--token", required=True)
    p_print.set_defaults(func=cmd_print)

    p_verify = cca.add_parser("verify-as", help="run a challenge-response session")
    roles = p_verify.add_subparsers(dest="role", required=True)

    p_att = roles.add_parser("attester")
    p_att.add_argument("-c", "--claims", required=True)
    p_att.add_argument("-p", "--pak", required=True)
    p_att.add_argument("-r", "--rak", required=True)
    add_session_options(p_att)
    p_att.set_defaults(func=cmd_attester)

    p_rp = roles.add_parser("relying-party")
    p_rp.add_argument("-t", "--token", required=True)
    add_session_options(p_rp)
    p_rp.set_defaults(func=cmd_relying_party)
