"""Helpers shared by the ``psa`` and ``cca`` command groups."""
from __future__ import annotations

import argparse
import contextlib
from pathlib import Path
from typing import Iterator

from .builder import EvidenceBuilder
from .config import Settings
from .crypto.keys import Signer, resolve_signer
from .errors import ConfigError, EvidenceError
from .session import ChallengeResponseSession


def read_file(path: str) -> bytes:
    return Path(path).read_bytes()


@contextlib.contextmanager
def in_context(what: str) -> Iterator[None]:
    """Prefix the message of any EvidenceError raised inside with ``what``.

    The exception keeps its class and attributes, so callers further up can
    still tell a key problem from a claims problem.
    """
    try:
        yield
    except EvidenceError as e:
        e.args = (f"{what}: {e}",)
        raise


def load_signer(path: str, what: str) -> Signer:
    raw = read_file(path)
    with in_context(f"error decoding {what} from {path}"):
        return resolve_signer(raw)


def default_token_path(claims_path: str) -> Path:
    """``dir/claims.json`` -> ``./claims.cbor``."""
    return Path(Path(claims_path).stem + ".cbor")


def add_session_options(p: argparse.ArgumentParser) -> None:
    p.add_argument("-s", "--api-server", dest="api_server",
                   help="URL of the verification API (or EVSIM_API_SERVER)")
    p.add_argument("--insecure", action="store_const", const=True, default=None,
                   help="skip TLS certificate verification (dev only)")
    p.add_argument("--ca-cert", dest="ca_cert", action="append",
                   help="extra CA certificate file; may be repeated")


def session_settings(args: argparse.Namespace, settings: Settings) -> Settings:
    s = settings.merged(
        api_server=args.api_server,
        insecure=args.insecure,
        ca_certs=tuple(args.ca_cert) if args.ca_cert else None,
    )
    if not s.api_server:
        raise ConfigError("no API server given: use --api-server or set EVSIM_API_SERVER")
    return s


def run_session(
    builder: EvidenceBuilder,
    settings: Settings,
    nonce: bytes | None = None,
    nonce_size: int | None = None,
) -> int:
    session = ChallengeResponseSession(
        session_uri=settings.api_server or "",
        evidence_builder=builder,
        nonce=nonce,
        nonce_size=nonce_size,
        delete_session=True,
        insecure=settings.insecure,
        ca_certs=settings.ca_certs,
        timeout=settings.timeout,
        poll_interval=settings.poll_interval,
        max_polls=settings.max_polls,
    )
    result = session.run()
    print(result.decode("utf-8", errors="replace"))
    return 0
