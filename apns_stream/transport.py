# =============================================================================
# APNs Stream Client -- Transport
# =============================================================================
#
# The supervisor only needs something that hands back a connected stream
# pair. TLSTransport is the default: certificate-authenticated TLS over TCP.
# PKCS#12 bundles need the ``cryptography`` package
# (``pip install apns-stream[crypto]``).
# =============================================================================

from __future__ import annotations

import asyncio
import os
import ssl
import tempfile
from pathlib import Path
from typing import Protocol

from ._logging import logger
from .constants import CONNECTION_TIMEOUT, GATEWAY_HOST, GATEWAY_PORT
from .errors import APNsConnectionError, APNsTimeoutError

try:
    from cryptography.hazmat.primitives.serialization import (
        Encoding,
        NoEncryption,
        PrivateFormat,
    )
    from cryptography.hazmat.primitives.serialization.pkcs12 import (
        load_key_and_certificates,
    )

    _HAS_CRYPTO = True
except ImportError:
    _HAS_CRYPTO = False

_PKCS12_SUFFIXES = frozenset({".p12", ".pfx"})


class Transport(Protocol):
    """Opens one connected stream pair per call."""

    async def open(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]: ...


class TLSTransport:
    """Client-certificate TLS connection to a gateway.

    Args:
        host: Gateway hostname.
        port: Gateway port.
        certfile: PEM certificate chain, or a ``.p12``/``.pfx`` bundle.
        keyfile: PEM private key when not contained in *certfile*.
        password: Password for the key or the PKCS#12 bundle.
        ssl_context: Ready-made context; overrides the certificate arguments.
        connect_timeout: Seconds allowed for TCP connect plus handshake.
    """

    def __init__(
        self,
        host: str = GATEWAY_HOST,
        port: int = GATEWAY_PORT,
        *,
        certfile: str | os.PathLike[str] | None = None,
        keyfile: str | os.PathLike[str] | None = None,
        password: str | bytes | None = None,
        ssl_context: ssl.SSLContext | None = None,
        connect_timeout: float = CONNECTION_TIMEOUT,
    ) -> None:
        self._host = host
        self._port = port
        self._certfile = certfile
        self._keyfile = keyfile
        self._password = password
        self._ssl_context = ssl_context
        self._connect_timeout = connect_timeout

    def __repr__(self) -> str:
        return f"TLSTransport({self._host!r}, {self._port})"

    @property
    def address(self) -> tuple[str, int]:
        return self._host, self._port

    def ssl_context(self) -> ssl.SSLContext:
        """Build (once) the client TLS context."""
        if self._ssl_context is None:
            context = ssl.create_default_context(ssl.Purpose.SERVER_AUTH)
            if self._certfile is not None:
                _load_client_certificate(
                    context, self._certfile, self._keyfile, self._password
                )
            self._ssl_context = context
        return self._ssl_context

    async def open(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        try:
            context = self.ssl_context()
        except (OSError, ValueError, ssl.SSLError) as exc:
            raise APNsConnectionError(f"Cannot load client certificate: {exc}") from exc

        logger.debug("Connecting to %s:%d", self._host, self._port)
        try:
            return await asyncio.wait_for(
                asyncio.open_connection(
                    self._host,
                    self._port,
                    ssl=context,
                    server_hostname=self._host,
                ),
                timeout=self._connect_timeout,
            )
        except asyncio.TimeoutError:
            raise APNsTimeoutError(
                f"Connection to {self._host}:{self._port} timed out after "
                f"{self._connect_timeout}s"
            )
        except (OSError, ssl.SSLError) as exc:
            raise APNsConnectionError(
                f"Failed to connect to {self._host}:{self._port}: {exc}"
            ) from exc


def _load_client_certificate(
    context: ssl.SSLContext,
    certfile: str | os.PathLike[str],
    keyfile: str | os.PathLike[str] | None,
    password: str | bytes | None,
) -> None:
    path = Path(certfile)
    if path.suffix.lower() not in _PKCS12_SUFFIXES:
        context.load_cert_chain(path, keyfile, password)
        return

    if not _HAS_CRYPTO:
        raise ValueError(
            "cryptography package required for PKCS#12: "
            "pip install apns-stream[crypto]"
        )

    if isinstance(password, str):
        password = password.encode()
    key, cert, extra = load_key_and_certificates(path.read_bytes(), password)
    if key is None or cert is None:
        raise ValueError(f"{path} holds no private key and certificate")

    pem = key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption())
    pem += cert.public_bytes(Encoding.PEM)
    for ca in extra or ():
        pem += ca.public_bytes(Encoding.PEM)

    # load_cert_chain only reads from the filesystem
    fd, tmp = tempfile.mkstemp(suffix=".pem")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(pem)
        context.load_cert_chain(tmp)
    finally:
        os.unlink(tmp)
