"""Shared pytest fixtures for integration and unit tests."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Callable

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from lite_idp.bootstrap.config import EffectiveConfig
from tests.utils.http import reserve_port

if TYPE_CHECKING:
    from _pytest.tmpdir import TempPathFactory

PROJECT_ROOT = Path(__file__).resolve().parent.parent
SERVER_ENTRYPOINT = PROJECT_ROOT / "main.py"


@dataclass(frozen=True)
class TlsMaterial:
    """Paths to a throwaway self-signed certificate and its key."""

    certificate: Path
    private_key: Path


def _write_self_signed(cert_file: Path, key_file: Path) -> None:
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "localhost")])
    san = x509.SubjectAlternativeName(
        [
            x509.DNSName("localhost"),
            x509.IPAddress(ipaddress.ip_address("127.0.0.1")),
        ]
    )
    not_before = datetime.now(timezone.utc) - timedelta(minutes=5)
    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_before + timedelta(days=1))
        .add_extension(san, critical=False)
        .sign(key, hashes.SHA256())
    )
    key_file.write_bytes(
        key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=serialization.NoEncryption(),
        )
    )
    cert_file.write_bytes(cert.public_bytes(serialization.Encoding.PEM))


@pytest.fixture(scope="session")
def tls_material(tmp_path_factory: "TempPathFactory") -> TlsMaterial:
    """Generate a self-signed certificate once per test session."""

    directory = tmp_path_factory.mktemp("tls")
    material = TlsMaterial(directory / "cert.pem", directory / "key.pem")
    _write_self_signed(material.certificate, material.private_key)
    return material


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Expose the repository root path to tests."""

    return PROJECT_ROOT


@pytest.fixture()
def make_config(tls_material: TlsMaterial) -> Callable[..., EffectiveConfig]:
    """Build an EffectiveConfig bound to a free local port and the test certificate."""

    def _make(**overrides: str) -> EffectiveConfig:
        values = {
            "listen-address": f"127.0.0.1:{reserve_port()}",
            "tls-certificate": str(tls_material.certificate),
            "tls-private-key": str(tls_material.private_key),
            "socket-timeout": "5",
        }
        values.update({key.replace("_", "-"): value for key, value in overrides.items()})
        return EffectiveConfig.from_mapping(values)

    return _make
