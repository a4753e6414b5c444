"""Certificate authority and key material for cluster control planes.

This module generates the root certificate authority of a cluster and
derives the API server serving and kubelet client certificates from it.
All outputs are PEM encoded bytes ready to be stored in a secret.
"""

import datetime
import ipaddress
from collections.abc import Iterable, Sequence

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from kubeception.exceptions import CertificateError
from kubeception.models import KeyPair

# Key sizes and validity periods
_RSA_KEY_SIZE = 2048
_RSA_PUBLIC_EXPONENT = 65537
SERVICE_ACCOUNT_KEY_SIZE = 4096
_CA_VALIDITY = datetime.timedelta(days=365 * 10)
_LEAF_VALIDITY = datetime.timedelta(days=365)

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def _new_private_key(key_size: int = _RSA_KEY_SIZE) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=_RSA_PUBLIC_EXPONENT, key_size=key_size)


def _encode_private_key(key: rsa.RSAPrivateKey) -> bytes:
    # TraditionalOpenSSL is PKCS#1 for RSA keys ("RSA PRIVATE KEY")
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )


def _encode_cert(cert: x509.Certificate) -> bytes:
    return cert.public_bytes(serialization.Encoding.PEM)


def _now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def new_ca(common_name: str) -> KeyPair:
    """Create a self-signed certificate authority.

    Args:
        common_name: Subject common name of the CA.

    Returns:
        KeyPair with the PEM encoded CA certificate and RSA key.

    """
    key = _new_private_key()
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
    now = _now()
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + _CA_VALIDITY)
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
        .sign(key, hashes.SHA256())
    )
    return KeyPair(cert=_encode_cert(cert), key=_encode_private_key(key))


def load_key_pair(cert_pem: bytes, key_pem: bytes) -> tuple[x509.Certificate, rsa.RSAPrivateKey]:
    """Parse a stored CA certificate and key.

    Args:
        cert_pem: PEM encoded certificate. Only the first certificate is used.
        key_pem: PEM encoded RSA private key.

    Returns:
        Tuple of the parsed certificate and private key.

    Raises:
        CertificateError: If either value cannot be parsed or the key is not RSA.

    """
    try:
        cert = x509.load_pem_x509_certificate(cert_pem)
    except ValueError as err:
        raise CertificateError(f"failed to parse ca cert: {err}") from err

    try:
        key = serialization.load_pem_private_key(key_pem, password=None)
    except (TypeError, ValueError) as err:
        raise CertificateError(f"failed to parse ca key: {err}") from err

    if not isinstance(key, rsa.RSAPrivateKey):
        raise CertificateError("ca key is not an RSA private key")

    return cert, key


def _new_signed_key_pair(
    ca: KeyPair,
    common_name: str,
    usage: x509.ObjectIdentifier,
    *,
    dns_names: Iterable[str] = (),
    ips: Iterable[IPAddress] = (),
) -> KeyPair:
    ca_cert, ca_key = load_key_pair(ca.cert, ca.key)
    key = _new_private_key()

    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])

    alt_names: list[x509.GeneralName] = [x509.DNSName(dns) for dns in dns_names]
    alt_names.extend(x509.IPAddress(ip) for ip in ips)

    now = _now()
    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(ca_cert.subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + _LEAF_VALIDITY)
        .add_extension(x509.BasicConstraints(ca=False, path_length=None), critical=True)
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
        .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
    )
    if alt_names:
        builder = builder.add_extension(x509.SubjectAlternativeName(alt_names), critical=False)

    cert = builder.sign(ca_key, hashes.SHA256())
    return KeyPair(cert=_encode_cert(cert), key=_encode_private_key(key))


def new_server_key_pair(
    ca: KeyPair,
    common_name: str,
    service_name: str,
    service_namespace: str,
    dns_domain: str,
    alt_ips: Sequence[IPAddress],
    alt_dns_names: Sequence[str] = (),
) -> KeyPair:
    """Create an API server serving certificate signed by *ca*.

    The in-cluster service DNS names (``kubernetes``, ``kubernetes.default``,
    ``kubernetes.default.svc`` and ``kubernetes.default.svc.<domain>``) are
    always included as subject alternative names.

    Args:
        ca: Signing certificate authority.
        common_name: Subject common name.
        service_name: In-cluster API server service name.
        service_namespace: Namespace of the in-cluster service.
        dns_domain: Cluster DNS domain.
        alt_ips: IP subject alternative names.
        alt_dns_names: Additional DNS subject alternative names.

    Returns:
        KeyPair with the PEM encoded certificate and key.

    Raises:
        CertificateError: If the CA cannot be parsed.

    """
    dns_names = [
        *alt_dns_names,
        service_name,
        f"{service_name}.{service_namespace}",
        f"{service_name}.{service_namespace}.svc",
        f"{service_name}.{service_namespace}.svc.{dns_domain}",
    ]
    return _new_signed_key_pair(
        ca,
        common_name,
        ExtendedKeyUsageOID.SERVER_AUTH,
        dns_names=dns_names,
        ips=alt_ips,
    )


def new_client_key_pair(ca: KeyPair, common_name: str, alt_ips: Sequence[IPAddress]) -> KeyPair:
    """Create a client authentication certificate signed by *ca*.

    Args:
        ca: Signing certificate authority.
        common_name: Subject common name.
        alt_ips: IP subject alternative names.

    Returns:
        KeyPair with the PEM encoded certificate and key.

    """
    return _new_signed_key_pair(ca, common_name, ExtendedKeyUsageOID.CLIENT_AUTH, ips=alt_ips)


def new_service_account_signing_key(key_size: int = SERVICE_ACCOUNT_KEY_SIZE) -> bytes:
    """Generate a PKCS#1 PEM encoded RSA key for signing service account tokens."""
    return _encode_private_key(_new_private_key(key_size))


def compute_cluster_ip(cidr: str, last_byte: int) -> ipaddress.IPv4Address:
    """Return the network address of *cidr* with its last byte set to *last_byte*.

    For example ``100.64.0.0/11`` and ``10`` gives ``100.64.0.10``.

    Args:
        cidr: IPv4 network in CIDR notation. Host bits are ignored.
        last_byte: Value of the low-order byte, 0-255.

    Returns:
        The computed address.

    Raises:
        ValueError: If *cidr* is not an IPv4 network or *last_byte* is out of range.

    """
    if not 0 <= last_byte <= 255:
        raise ValueError(f"last byte out of range: {last_byte}")
    network = ipaddress.ip_network(cidr, strict=False)
    if not isinstance(network, ipaddress.IPv4Network):
        raise ValueError(f"not an IPv4 network: {cidr}")
    packed = bytearray(network.network_address.packed)
    packed[3] = last_byte
    return ipaddress.IPv4Address(bytes(packed))
