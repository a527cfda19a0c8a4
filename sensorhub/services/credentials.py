"""Device key management and short-lived JWT credentials for the MQTT bridge.

The bridge authenticates a device by a JWT passed as the MQTT password. The
token is signed with the device private key and its audience is the project id.
"""
from __future__ import annotations

import datetime as dt
import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, Union

import jwt
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from sensorhub.config import normalize_key_algorithm
from sensorhub.exceptions import CredentialError

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME = dt.timedelta(minutes=60)
RSA_KEY_SIZE = 2048
CERTIFICATE_VALIDITY = dt.timedelta(days=20 * 365)

PrivateKey = Union[rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey]


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


@dataclass(frozen=True)
class ConnectionCredential:
    token: str
    project_id: str
    issued_at: dt.datetime
    expires_at: dt.datetime

    def expired(self, now: Optional[dt.datetime] = None) -> bool:
        return (now or _utcnow()) >= self.expires_at


class CredentialSigner(Protocol):
    def sign(self, project_id: str) -> ConnectionCredential:
        ...


class JwtSigner:
    """Signs bridge credentials with an RSA (RS256) or P-256 (ES256) private key."""

    def __init__(
        self,
        private_key: PrivateKey,
        algorithm: str = "RS256",
        *,
        lifetime: dt.timedelta = DEFAULT_TOKEN_LIFETIME,
        clock: Callable[[], dt.datetime] = _utcnow,
    ) -> None:
        self.algorithm = normalize_key_algorithm(algorithm)
        _check_key_matches(private_key, self.algorithm)
        self._private_key = private_key
        self._lifetime = lifetime
        self._clock = clock

    def sign(self, project_id: str) -> ConnectionCredential:
        issued_at = self._clock().replace(microsecond=0)
        expires_at = issued_at + self._lifetime
        claims = {"iat": issued_at, "exp": expires_at, "aud": project_id}
        try:
            token = jwt.encode(claims, self._private_key, algorithm=self.algorithm)
        except jwt.PyJWTError as exc:
            raise CredentialError(f"Unable to sign {self.algorithm} token: {exc}") from exc
        return ConnectionCredential(
            token=token,
            project_id=project_id,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def public_key_pem(self) -> bytes:
        return self._private_key.public_key().public_bytes(
            serialization.Encoding.PEM,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )


def _check_key_matches(private_key: PrivateKey, algorithm: str) -> None:
    if algorithm == "RS256" and not isinstance(private_key, rsa.RSAPrivateKey):
        raise CredentialError("RS256 needs an RSA private key")
    if algorithm == "ES256":
        if not isinstance(private_key, ec.EllipticCurvePrivateKey):
            raise CredentialError("ES256 needs an EC private key")
        if not isinstance(private_key.curve, ec.SECP256R1):
            raise CredentialError(f"ES256 needs a P-256 key, not {private_key.curve.name}")


def generate_private_key(algorithm: str) -> PrivateKey:
    if normalize_key_algorithm(algorithm) == "ES256":
        return ec.generate_private_key(ec.SECP256R1())
    return rsa.generate_private_key(public_exponent=65537, key_size=RSA_KEY_SIZE)


def build_self_signed_certificate(private_key: PrivateKey, *, now: Optional[dt.datetime] = None) -> x509.Certificate:
    """Self-signed ``CN=unused`` certificate carrying the device public key for registry enrollment."""

    now = now or _utcnow()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "unused")])
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - dt.timedelta(days=1))
        .not_valid_after(now + CERTIFICATE_VALIDITY)
        .sign(private_key, hashes.SHA256())
    )


def export_certificate(private_key: PrivateKey, destination: Path) -> Path:
    certificate = build_self_signed_certificate(private_key)
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(certificate.public_bytes(serialization.Encoding.PEM))
    logger.info("Exported device certificate to %s", destination)
    return destination


def load_or_create_private_key(
    key_path: Path,
    algorithm: str,
    *,
    certificate_path: Optional[Path] = None,
) -> PrivateKey:
    """Load the device key from PEM, generating (and exporting a certificate) on first boot."""

    algorithm = normalize_key_algorithm(algorithm)
    if key_path.exists():
        try:
            private_key = serialization.load_pem_private_key(key_path.read_bytes(), password=None)
        except (ValueError, TypeError) as exc:
            raise CredentialError(f"Unable to load device key {key_path}: {exc}") from exc
        if not isinstance(private_key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
            raise CredentialError(f"Unsupported key type in {key_path}")
        _check_key_matches(private_key, algorithm)
        if certificate_path is not None and not certificate_path.exists():
            export_certificate(private_key, certificate_path)
        return private_key

    logger.warning("No device key at %s; generating a new %s key", key_path, algorithm)
    private_key = generate_private_key(algorithm)
    key_path.parent.mkdir(parents=True, exist_ok=True)
    key_path.write_bytes(
        private_key.private_bytes(
            serialization.Encoding.PEM,
            serialization.PrivateFormat.PKCS8,
            serialization.NoEncryption(),
        )
    )
    try:
        key_path.chmod(0o600)
    except OSError:
        logger.debug("Unable to set permissions on device key file")
    if certificate_path is not None:
        export_certificate(private_key, certificate_path)
    return private_key
