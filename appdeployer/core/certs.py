"""TLS certificate material for the app ingress."""

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Tuple

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from appdeployer.core.errors import ConfigurationError

logger = logging.getLogger(__name__)


def generate_self_signed(host: str, years: int = 1) -> Tuple[bytes, bytes]:
    """Generate a self-signed certificate for a host.

    Args:
        host: DNS name used as common name and subject alternative name
        years: Validity period in years

    Returns:
        Tuple of (certificate PEM, private key PEM)
    """
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, host)])
    now = datetime.now(timezone.utc)

    certificate = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + timedelta(days=365 * years))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(host)]), critical=False)
        .sign(key, hashes.SHA256())
    )
    logger.debug("Generated self-signed certificate for %s valid for %d year(s)", host, years)

    crt_pem = certificate.public_bytes(serialization.Encoding.PEM)
    key_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return crt_pem, key_pem


def load_certificate_pair(crt_path: Path, key_path: Path) -> Tuple[bytes, bytes]:
    """Read and check a PEM certificate and its unencrypted private key.

    Raises:
        ConfigurationError: If a file is missing or is not valid PEM
    """
    for path in (crt_path, key_path):
        if not path.is_file():
            raise ConfigurationError(f"{path} does not exist")

    crt_pem = crt_path.read_bytes()
    key_pem = key_path.read_bytes()

    try:
        x509.load_pem_x509_certificate(crt_pem)
    except ValueError as e:
        raise ConfigurationError(f"{crt_path} is not a PEM certificate: {e}") from e

    try:
        serialization.load_pem_private_key(key_pem, password=None)
    except (ValueError, TypeError) as e:
        raise ConfigurationError(f"{key_path} is not an unencrypted PEM private key: {e}") from e

    return crt_pem, key_pem
