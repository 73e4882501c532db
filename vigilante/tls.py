"""Creating and loading the TLS key pair of the RPC server."""

from __future__ import annotations

import contextlib
import ipaddress
import os
import socket
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

_ORGANIZATION = "Babylon vigilante autogenerated cert"
_VALIDITY = timedelta(days=365 * 10)


class TLSKeyExistsError(FileExistsError):
    """A one-time TLS key was requested but a key file already exists."""


def _spki(public_key: Any) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER, serialization.PublicFormat.SubjectPublicKeyInfo
    )


@dataclass(frozen=True)
class KeyPair:
    """A PEM certificate and the private key that belongs to it."""

    cert_pem: bytes
    key_pem: bytes
    certificate: x509.Certificate = field(init=False, repr=False, compare=False)
    private_key: Any = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        cert = x509.load_pem_x509_certificate(self.cert_pem)
        key = serialization.load_pem_private_key(self.key_pem, password=None)
        if _spki(cert.public_key()) != _spki(key.public_key()):
            raise ValueError("private key does not match public key")
        object.__setattr__(self, "certificate", cert)
        object.__setattr__(self, "private_key", key)


def _hostname() -> str:
    host = socket.gethostname() or "localhost"
    try:
        host.encode("ascii")
    except UnicodeEncodeError:
        return "localhost"
    return host


def _new_tls_cert_pair(organization: str, valid_until: datetime) -> Tuple[bytes, bytes]:
    now = datetime.now(timezone.utc)
    if valid_until < now:
        raise ValueError("validUntil would create an already-expired certificate")
    key = ec.generate_private_key(ec.SECP521R1())
    host = _hostname()
    dns_names = [host] if host == "localhost" else [host, "localhost"]
    alt_names = [x509.DNSName(n) for n in dns_names] + [
        x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
        x509.IPAddress(ipaddress.ip_address("::1")),
    ]
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
            x509.NameAttribute(NameOID.COMMON_NAME, host),
        ]
    )
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(valid_until)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.SubjectAlternativeName(alt_names), critical=False)
        .sign(key, hashes.SHA512())
    )
    cert_pem = cert.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.TraditionalOpenSSL,
        serialization.NoEncryption(),
    )
    return cert_pem, key_pem


def _make_parent_dir(path: str) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, mode=0o700, exist_ok=True)


def _write_private(path: str, data: bytes) -> None:
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "wb") as handle:
        handle.write(data)


def generate_rpc_key_pair(key_file: str, cert_file: str, write_key: bool) -> KeyPair:
    """Create a new self-signed key pair, write the cert and, if asked, the key."""
    key_file, cert_file = os.fspath(key_file), os.fspath(cert_file)
    _make_parent_dir(cert_file)
    cert_pem, key_pem = _new_tls_cert_pair(_ORGANIZATION, datetime.now(timezone.utc) + _VALIDITY)
    pair = KeyPair(cert_pem, key_pem)
    _write_private(cert_file, cert_pem)
    if write_key:
        _make_parent_dir(key_file)
        try:
            _write_private(key_file, key_pem)
        except OSError:
            with contextlib.suppress(OSError):
                os.remove(cert_file)
            raise
    return pair


def open_rpc_key_pair(one_time_tls_key: bool, key_file: str, cert_file: str) -> KeyPair:
    """Load the RPC key pair, or create it when the key file is missing.

    With ``one_time_tls_key`` a fresh pair is made whose key is never written;
    an existing key file is then an error, as it may have been copied elsewhere.
    """
    key_file, cert_file = os.fspath(key_file), os.fspath(cert_file)
    try:
        os.stat(key_file)
        key_exists = True
    except FileNotFoundError:
        key_exists = False
    except OSError:
        key_exists = True

    if one_time_tls_key and key_exists:
        raise TLSKeyExistsError(f"one time TLS keys are enabled, but TLS key `{key_file}` already exists")
    if one_time_tls_key:
        return generate_rpc_key_pair(key_file, cert_file, False)
    if not key_exists:
        return generate_rpc_key_pair(key_file, cert_file, True)
    with open(cert_file, "rb") as handle:
        cert_pem = handle.read()
    with open(key_file, "rb") as handle:
        key_pem = handle.read()
    return KeyPair(cert_pem, key_pem)