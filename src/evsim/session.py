"""Challenge-response session driver for a Veraison-style verification service.

    POST {new-session}?nonceSize=N | ?nonce=...  -> 201 + Location + session
    POST {session} (evidence, Content-Type)      -> 200 done | 202 processing
    GET  {session}                               -> poll until complete/failed
    DELETE {session}                             -> optional cleanup

The driver knows nothing about token formats; it only calls the evidence
builder it was given.
"""
from __future__ import annotations

import base64
import binascii
import contextlib
import ssl
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import httpx
from pydantic import BaseModel, ValidationError

from .builder import EvidenceBuilder
from .errors import SessionError
from .utils.logging import get_logger


SESSION_MEDIA_TYPE = "application/vnd.veraison.challenge-response-session+json"

log = get_logger()


class SessionResponse(BaseModel):
    nonce: str
    expiry: Optional[str] = None
    accept: List[str]
    status: str
    evidence: Optional[Dict[str, Any]] = None
    result: Optional[Any] = None

    def nonce_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.nonce, validate=True)
        except (binascii.Error, ValueError) as e:
            raise SessionError(f"session nonce is not valid base64: {e}") from e


def _parse_session(resp: httpx.Response) -> SessionResponse:
    try:
        return SessionResponse.model_validate_json(resp.content)
    except ValidationError as e:
        raise SessionError(f"malformed session object from {resp.request.url}: {e}") from e


def _check_uri(uri: str) -> httpx.URL:
    try:
        url = httpx.URL(uri)
    except (httpx.InvalidURL, TypeError) as e:
        raise SessionError(f"malformed session URI {uri!r}: {e}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise SessionError(f"malformed session URI {uri!r}: need an absolute http(s) URL")
    return url


def new_session_url(base: httpx.URL) -> httpx.URL:
    """The API root and its newSession endpoint are both accepted."""
    path = base.path.rstrip("/")
    if not path.endswith("/newSession"):
        path = f"{path}/newSession"
    return base.copy_with(path=path)


def build_ssl_context(ca_certs: Sequence[str]) -> ssl.SSLContext:
    ctx = ssl.create_default_context()
    for path in ca_certs:
        try:
            ctx.load_verify_locations(cafile=path)
        except (OSError, ssl.SSLError) as e:
            raise SessionError(f"loading CA certificate {path}: {e}") from e
    return ctx


@dataclass
class ChallengeResponseSession:
    session_uri: str
    evidence_builder: EvidenceBuilder
    nonce: Optional[bytes] = None
    nonce_size: Optional[int] = None
    delete_session: bool = True
    insecure: bool = False
    ca_certs: Tuple[str, ...] = ()
    timeout: float = 10.0
    poll_interval: float = 1.0
    max_polls: int = 10
    client: Optional[httpx.Client] = None

    def _check(self) -> httpx.URL:
        url = _check_uri(self.session_uri)
        if (self.nonce is None) == (self.nonce_size is None):
            raise SessionError("exactly one of nonce or nonce size must be set")
        if self.nonce_size is not None and self.nonce_size <= 0:
            raise SessionError(f"invalid nonce size {self.nonce_size}")
        return url

    @contextlib.contextmanager
    def _http(self) -> Iterator[httpx.Client]:
        if self.client is not None:
            yield self.client
            return
        verify: Any = True
        if self.insecure:
            verify = False
        elif self.ca_certs:
            verify = build_ssl_context(self.ca_certs)
        with httpx.Client(timeout=self.timeout, verify=verify) as client:
            yield client

    def run(self) -> bytes:
        """Run one exchange and return the final session object as JSON bytes."""
        base = self._check()
        with self._http() as client:
            try:
                return self._exchange(client, base)
            except httpx.HTTPError as e:
                raise SessionError(f"{type(e).__name__}: {e}") from e

    def _exchange(self, client: httpx.Client, base: httpx.URL) -> bytes:
        session_url, session = self._open(client, base)
        try:
            evidence, media_type = self.evidence_builder.build_evidence(
                session.nonce_bytes(), session.accept
            )
            result = self._submit(client, session_url, evidence, media_type)
        except BaseException:
            if self.delete_session:
                self._delete(client, session_url, quiet=True)
            raise
        if self.delete_session:
            self._delete(client, session_url)
        return result

    def _open(self, client: httpx.Client, base: httpx.URL) -> Tuple[httpx.URL, SessionResponse]:
        if self.nonce is not None:
            params = {"nonce": base64.urlsafe_b64encode(self.nonce).decode("ascii")}
        else:
            params = {"nonceSize": str(self.nonce_size)}
        url = new_session_url(base)
        r = client.post(url, params=params, headers={"Accept": SESSION_MEDIA_TYPE})
        if r.status_code != 201:
            raise SessionError(f"newSession response has unexpected status: {r.status_code} {r.text}")
        location = r.headers.get("location")
        if not location:
            raise SessionError("newSession response has no Location header")
        session = _parse_session(r)
        session_url = url.join(location)
        log.info("opened session %s (status %s)", session_url, session.status)
        return session_url, session

    def _submit(self, client: httpx.Client, url: httpx.URL, evidence: bytes, media_type: str) -> bytes:
        r = client.post(
            url,
            content=evidence,
            headers={"Content-Type": media_type, "Accept": SESSION_MEDIA_TYPE},
        )
        if r.status_code == 200:
            return self._final(r)
        if r.status_code != 202:
            raise SessionError(f"evidence submission has unexpected status: {r.status_code} {r.text}")
        for attempt in range(self.max_polls):
            time.sleep(self.poll_interval)
            r = client.get(url, headers={"Accept": SESSION_MEDIA_TYPE})
            if r.status_code != 200:
                raise SessionError(f"session poll has unexpected status: {r.status_code} {r.text}")
            status = _parse_session(r).status
            log.debug("poll %d: session status %s", attempt + 1, status)
            if status in ("complete", "failed"):
                return self._final(r)
        raise SessionError(f"session still processing after {self.max_polls} polls")

    def _final(self, r: httpx.Response) -> bytes:
        session = _parse_session(r)
        if session.status != "complete":
            raise SessionError(f"session finished with status {session.status!r}")
        return r.content

    def _delete(self, client: httpx.Client, url: httpx.URL, quiet: bool = False) -> None:
        try:
            r = client.delete(url)
            if r.status_code not in (200, 204):
                raise SessionError(f"session delete has unexpected status: {r.status_code}")
        except (httpx.HTTPError, SessionError) as e:
            if not quiet:
                raise
            log.warning("could not delete session %s: %s", url, e)


__all__ = ["ChallengeResponseSession", "SessionResponse", "SESSION_MEDIA_TYPE"]
