"""Certificate authority logic -- key pairs, self-signing, leaf issuance.

Pure crypto with no I/O.  A :class:`KeyPair` holds PEM-encoded material
exactly as it is stored in a secret; every operation parses what it needs
on demand so that a pair decoded from a secret and a freshly created one
behave identically.

Keys are EC P-256.  Certificates are renewed in place: same subject, same
key, same extensions, new serial and validity window.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from pg_autopilot.errors import CryptoError, ParseError

# Fraction of the validity window after which a certificate is renewed
RENEWAL_THRESHOLD = 0.9
DEFAULT_VALIDITY = timedelta(days=90)


def _now() -> datetime:
    return datetime.now(UTC)


def _generate_key() -> ec.EllipticCurvePrivateKey:
    try:
        return ec.generate_private_key(ec.SECP256R1())
    except Exception as exc:
        msg = f"Failed to generate EC private key: {exc}"
        raise CryptoError(msg) from exc


def _encode_key(key: ec.EllipticCurvePrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _sign(
    builder: x509.CertificateBuilder, signing_key: ec.EllipticCurvePrivateKey
) -> bytes:
    try:
        cert = builder.sign(signing_key, hashes.SHA256())
    except Exception as exc:
        msg = f"Failed to sign certificate: {exc}"
        raise CryptoError(msg) from exc
    return cert.public_bytes(serialization.Encoding.PEM)


@dataclass
class KeyPair:
    """A private key and its certificate, both PEM-encoded."""

    private_key: bytes
    certificate: bytes

    def parse_certificate(self) -> x509.Certificate:
        try:
            return x509.load_pem_x509_certificate(self.certificate)
        except ValueError as exc:
            msg = f"Malformed certificate: {exc}"
            raise ParseError(msg) from exc

    def parse_private_key(self) -> ec.EllipticCurvePrivateKey:
        try:
            key = serialization.load_pem_private_key(self.private_key, password=None)
        except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
            msg = f"Malformed private key: {exc}"
            raise ParseError(msg) from exc
        if not isinstance(key, ec.EllipticCurvePrivateKey):
            msg = f"Expected an EC private key, got {type(key).__name__}"
            raise ParseError(msg)
        return key

    @property
    def not_before(self) -> datetime:
        return self.parse_certificate().not_valid_before_utc

    @property
    def not_after(self) -> datetime:
        return self.parse_certificate().not_valid_after_utc

    def is_expiring(
        self,
        now: datetime | None = None,
        threshold: float = RENEWAL_THRESHOLD,
    ) -> bool:
        """Whether *threshold* of the validity window has elapsed.

        Renewal is proactive: a certificate is reported as expiring well
        before ``not_after`` so that the hourly maintenance has time to act.
        """
        cert = self.parse_certificate()
        now = now or _now()
        start = cert.not_valid_before_utc
        lifetime = (cert.not_valid_after_utc - start).total_seconds()
        if lifetime <= 0:
            return True
        return (now - start).total_seconds() / lifetime >= threshold

    def renew_certificate(
        self,
        signing_key: ec.EllipticCurvePrivateKey,
        now: datetime | None = None,
    ) -> None:
        """Re-issue the certificate with a new validity window anchored at now.

        Subject, issuer, public key, validity length and extensions are
        carried over from the current certificate.  For a leaf, *signing_key*
        must be the authority's current key.
        """
        old = self.parse_certificate()
        public_key = self.parse_private_key().public_key()
        now = now or _now()
        validity = old.not_valid_after_utc - old.not_valid_before_utc

        builder = (
            x509.CertificateBuilder()
            .subject_name(old.subject)
            .issuer_name(old.issuer)
            .public_key(public_key)
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + validity)
        )
        for ext in old.extensions:
            value = ext.value
            if isinstance(value, x509.AuthorityKeyIdentifier):
                value = x509.AuthorityKeyIdentifier.from_issuer_public_key(
                    signing_key.public_key()
                )
            builder = builder.add_extension(value, critical=ext.critical)
        self.certificate = _sign(builder, signing_key)

    def create_and_sign_pair(
        self,
        hostname: str,
        validity: timedelta = DEFAULT_VALIDITY,
        now: datetime | None = None,
    ) -> LeafKeyPair:
        """Issue a server certificate for *hostname* signed by this authority."""
        ca_cert = self.parse_certificate()
        ca_key = self.parse_private_key()
        leaf_key = _generate_key()
        now = now or _now()

        builder = (
            x509.CertificateBuilder()
            .subject_name(
                x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, hostname)])
            )
            .issuer_name(ca_cert.subject)
            .public_key(leaf_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + validity)
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None), critical=True
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=True,
                    content_commitment=False,
                    key_encipherment=True,
                    data_encipherment=False,
                    key_agreement=False,
                    key_cert_sign=False,
                    crl_sign=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]),
                critical=False,
            )
            .add_extension(
                x509.SubjectAlternativeName([x509.DNSName(hostname)]),
                critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_key.public_key()),
                critical=False,
            )
        )
        return LeafKeyPair(
            private_key=_encode_key(leaf_key),
            certificate=_sign(builder, ca_key),
            hostname=hostname,
        )


@dataclass
class LeafKeyPair(KeyPair):
    """A server key pair issued by a :class:`KeyPair` authority."""

    hostname: str = ""


def create_ca(
    name: str,
    organization: str = "pg-autopilot",
    validity: timedelta = DEFAULT_VALIDITY,
    now: datetime | None = None,
) -> KeyPair:
    """Create a new self-signed certificate authority."""
    key = _generate_key()
    now = now or _now()
    subject = x509.Name(
        [
            x509.NameAttribute(NameOID.COMMON_NAME, name),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization),
        ]
    )
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + validity)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=False,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=True,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(
            x509.SubjectKeyIdentifier.from_public_key(key.public_key()),
            critical=False,
        )
    )
    return KeyPair(private_key=_encode_key(key), certificate=_sign(builder, key))
