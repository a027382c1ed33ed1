"""HTTP receiver: accepts collections over HTTP or HTTPS, per-path handlers."""

from __future__ import annotations

import base64
import binascii
import json
import logging
import socket
import ssl
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from typing import Any, Iterable, Sequence
from urllib.parse import urlsplit

from metricchute.core import TRACE, Handler, Metric, MissingArgumentError

log = logging.getLogger("metricchute.receiver.http")


class AuthenticationError(Exception):
    """A request failed authentication."""


def _basic_credentials(authorization: str | None) -> tuple[str, str] | None:
    if not authorization:
        return None
    scheme, _, value = authorization.partition(" ")
    if scheme.lower() != "basic":
        return None
    try:
        decoded = base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        return None
    head, sep, tail = decoded.partition(":")
    if not sep:
        return None
    return head, tail


@dataclass
class HTTPAuth:
    """Authentication for one path: basic auth or a client certificate SAN."""

    username: str = ""
    password: str = ""
    san_dns_name: str = ""
    skip_certificate_verify: bool = False

    def authenticate(self, authorization: str | None, dns_names: Iterable[str] | None = None) -> None:
        """Check a request's Authorization value or its client certificate names.

        ``dns_names`` are the SAN DNS names of the client's leaf certificate,
        or None if no certificate was presented.
        """
        if self.username and self.password:
            if _basic_credentials(authorization) != (self.username, self.password):
                raise AuthenticationError("Invalid credentials")
            return
        if self.san_dns_name:
            log.log(TRACE, "verifying request using client certificates")
            chains = [] if dns_names is None else [[list(dns_names)]]
            self.verify_peer_certificate(chains)
            return
        raise AuthenticationError("no matching authentication method")

    def verify_peer_certificate(self, chains: Iterable[Sequence[Iterable[str]]]) -> None:
        """Accept if the leaf of any chain lists the expected SAN DNS name.

        Each chain is a sequence of certificates, leaf first; each
        certificate is given as its SAN DNS names.
        """
        if self.skip_certificate_verify or not self.san_dns_name:
            log.log(TRACE, "skipping verifying certificate")
            return
        wanted = self.san_dns_name.lower()
        for chain in chains:
            if not chain:
                continue
            if any(name.lower() == wanted for name in chain[0]):
                return
        raise AuthenticationError("failed to verify x509 SAN DNS Name")


def _answer(code: int, error: Exception | None) -> bytes:
    if code == 204:
        return b""
    message = "OK" if error is None else str(error)
    return (json.dumps({"Message": message}, separators=(",", ":"), ensure_ascii=False) + "\n").encode()


def _resolve(address: str) -> tuple[int, Any]:
    host, sep, port = address.rpartition(":")
    if not sep:
        raise OSError(f"unable to resolve address {address}: missing port")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    try:
        infos = socket.getaddrinfo(host or None, port or "0", type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE)
    except socket.gaierror as err:
        raise OSError(f"unable to resolve address {address}: {err}") from err
    family, _, _, _, sockaddr = infos[0]
    return family, sockaddr


def _peer_dns_names(conn: Any) -> list[str] | None:
    if not isinstance(conn, ssl.SSLSocket):
        return None
    try:
        cert = conn.getpeercert()
    except (ValueError, OSError):
        return None
    if not cert:
        return None
    return [value for kind, value in cert.get("subjectAltName", ()) if kind == "DNS"]


class _Server(ThreadingHTTPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, family: int, sockaddr: Any, handler_class: type) -> None:
        self.address_family = family
        super().__init__(sockaddr, handler_class)


_COUNTERS = ("received", "no_data", "read_failed", "handler_errors", "sent")


@dataclass(eq=False)
class HTTP:
    """Listen on ``address`` and pass request bodies to per-path handlers.

    Paths ending in "/" match every path below them; the longest match wins.
    Unmatched paths get 404, or 401 when any path requires authentication.
    """

    address: str = ""
    handlers: dict[str, Handler] = field(default_factory=dict)
    auth: dict[str, HTTPAuth] = field(default_factory=dict)
    certfile: str = ""
    keyfile: str = ""
    client_certificate_cas: list[str] = field(default_factory=list)
    log_204_ok: bool = False
    name: str = ""
    bound_address: Any = field(default=None, init=False)
    ready: threading.Event = field(default_factory=threading.Event, init=False, repr=False)
    _server: Any = field(default=None, init=False, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _counts: dict = field(default_factory=lambda: dict.fromkeys(_COUNTERS, 0), init=False, repr=False)

    def verify(self) -> None:
        if not self.handlers:
            raise MissingArgumentError("Handlers")
        if not self.address:
            log.warning("missing listen address for http receiver, using default")
        if not self.certfile and self.auth:
            log.warning("HTTP receiver configured with authentication but not with TLS! Auth will happen in the open!")
        if bool(self.certfile) != bool(self.keyfile):
            raise ValueError("Specify both Certfile AND Keyfile or none at all")
        for path in self.client_certificate_cas:
            try:
                Path(path).read_bytes()
            except OSError as err:
                raise ValueError(
                    f"unable to load client certificate CAs: failed to read certificate file: {err}"
                ) from err
        for auth in self.auth.values():
            if auth.username and not auth.password:
                raise ValueError("Username specified but no password.")
            if not auth.username and auth.password:
                raise ValueError("Password specified but no username.")
            if auth.san_dns_name and not self.client_certificate_cas:
                raise ValueError(
                    "No Client Certificate CAs defined, but DNS Name for SAN specified. "
                    "Specify ClientCertificateCAs configuration element."
                )

    def _bump(self, key: str) -> None:
        with self._lock:
            self._counts[key] += 1

    def _route(self, path: str) -> str | None:
        if path in self.handlers:
            return path
        best = None
        for pattern in self.handlers:
            if pattern.endswith("/") and path.startswith(pattern):
                if best is None or len(pattern) > len(best):
                    best = pattern
        return best

    def _handle(
        self,
        handler: Handler,
        auth: HTTPAuth | None,
        authorization: str | None,
        body: bytes,
        peer_dns_names: Iterable[str] | None,
        read_failed: bool,
    ) -> tuple[int, Exception | None]:
        if auth is not None:
            try:
                auth.authenticate(authorization, peer_dns_names)
            except AuthenticationError as err:
                return 401, err
        self._bump("received")
        if not body and not read_failed:
            self._bump("no_data")
            return 400, ValueError("no body in HTTP request")
        if read_failed:
            self._bump("read_failed")
            return 400, OSError("read error on http body: unexpected EOF")
        try:
            handler.handle(body)
        except Exception as err:
            self._bump("handler_errors")
            return 400, err
        self._bump("sent")
        return 204, None

    def _dispatch(
        self,
        path: str,
        authorization: str | None,
        body: bytes,
        peer_dns_names: Iterable[str] | None = None,
        read_failed: bool = False,
        remote: Any = None,
    ) -> tuple[int, bytes]:
        pattern = self._route(path)
        if pattern is None:
            code: int = 404
            error: Exception = FileNotFoundError("File not found")
            extra = " Authenticated handlers present, masking 404 as 401." if self.auth else ""
            log.warning(
                "HTTP request failed%s code=%d remoteAddress=%s requestUri=%s ContentLength=%d: %s",
                extra, code, remote, path, len(body), error,
            )
            if self.auth:
                code, error = 401, AuthenticationError("Invalid credentials")
            return code, _answer(code, error)
        code, err = self._handle(
            self.handlers[pattern], self.auth.get(pattern), authorization, body, peer_dns_names, read_failed
        )
        if err is not None:
            log.warning(
                "HTTP request failed code=%d remoteAddress=%s requestUri=%s ContentLength=%d: %s",
                code, remote, path, len(body), err,
            )
        elif self.log_204_ok:
            log.info(
                "HTTP request ok code=%d remoteAddress=%s requestUri=%s ContentLength=%d",
                code, remote, path, len(body),
            )
        return code, _answer(code, err)

    def dispatch(self, path: str, authorization: str | None, body: bytes) -> tuple[int, bytes]:
        """Serve one request without a network; returns status code and response body."""
        return self._dispatch(path, authorization, body)

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(self.certfile, self.keyfile)
        if self.client_certificate_cas:
            log.debug("loading client certificates from %d file(s)", len(self.client_certificate_cas))
            for path in self.client_certificate_cas:
                try:
                    context.load_verify_locations(cafile=path)
                except FileNotFoundError as err:
                    raise ValueError(f"failed to read certificate file: {err}") from err
                except ssl.SSLError as err:
                    log.warning("no usable certificates in %s: %s", path, err)
            context.verify_mode = ssl.CERT_OPTIONAL
            log.info("configured HTTP receiver with client certificate authentication")
            if any(a.san_dns_name for a in self.auth.values()):
                log.info("configured HTTP receiver with client certificate verification")
        return context

    def start(self) -> None:
        """Serve requests until stopped."""
        receiver = self

        class _RequestHandler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def _serve(self) -> None:
                try:
                    length = int(self.headers.get("Content-Length") or 0)
                except ValueError:
                    length = 0
                body = self.rfile.read(length) if length > 0 else b""
                code, payload = receiver._dispatch(
                    urlsplit(self.path).path,
                    self.headers.get("Authorization"),
                    body,
                    _peer_dns_names(self.connection),
                    read_failed=len(body) < length,
                    remote=self.client_address,
                )
                self.send_response(code)
                if code != 204:
                    self.send_header("Content-Type", "application/json")
                    self.send_header("Content-Length", str(len(payload)))
                self.end_headers()
                if payload:
                    self.wfile.write(payload)

            do_GET = do_POST = do_PUT = do_PATCH = do_DELETE = _serve

            def log_message(self, format: str, *args: Any) -> None:
                log.debug(format, *args)

        for path, handler in self.handlers.items():
            log.debug("adding handler %s (%s), hasAuth=%s", path, handler, path in self.auth)
        with self._lock:
            self._counts = dict.fromkeys(_COUNTERS, 0)
        family, sockaddr = _resolve(self.address or ":80")
        server = _Server(family, sockaddr, _RequestHandler)
        try:
            if self.certfile:
                server.socket = self._tls_context().wrap_socket(
                    server.socket, server_side=True, do_handshake_on_connect=False
                )
                log.info("starting http receiver with TLS on %s", self.address)
            else:
                log.info("starting INSECURE http receiver (no TLS) on %s", self.address)
            self.bound_address = server.server_address
            self._server = server
            self.ready.set()
            server.serve_forever(poll_interval=0.1)
        finally:
            server.server_close()

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()

    def get_stats(self) -> Metric:
        """Return the receiver's counters as a metric."""
        with self._lock:
            counts = dict(self._counts)
        return Metric(
            time=datetime.now(timezone.utc),
            metadata={"component": "receiver", "type": "HTTP", "identity": self.name},
            data=counts,
        )