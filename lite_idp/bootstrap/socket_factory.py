"""TLS context construction and listening socket creation."""

import socket
import ssl
from typing import TYPE_CHECKING

from lite_idp.bootstrap.config import EffectiveConfig
from lite_idp.domain.correlation_id import get_logger

if TYPE_CHECKING:
    from lite_idp.application.contract import TlsTrust

SOCKET_LOGGER = get_logger("socket")

ACCEPT_TIMEOUT_SECONDS = 0.5


class ListenError(Exception):
    """Raised when the TLS listener cannot be configured or bound."""


def build_tls_context(config: EffectiveConfig, trust: "TlsTrust") -> ssl.SSLContext:
    """Create a server-side TLS context from the certificate, key and trust material.

    Raises:
        ListenError: the certificate, key or CA file is missing or invalid.
    """
    tls_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    tls_context.minimum_version = ssl.TLSVersion.TLSv1_2
    try:
        tls_context.load_cert_chain(config.tls_certificate, config.tls_private_key)
        if trust.ca_file:
            tls_context.load_verify_locations(cafile=trust.ca_file)
    except (OSError, ssl.SSLError) as error:
        SOCKET_LOGGER.critical(
            "Failed to load TLS certificates",
            extra={
                "event": "tls_load_failed",
                "error": str(error),
                "error_type": type(error).__name__,
            },
        )
        raise ListenError(f"failed to load TLS material: {error}") from error
    if trust.ca_file:
        tls_context.verify_mode = trust.verify_client
    return tls_context


def create_server_socket(config: EffectiveConfig) -> socket.socket:
    """Bind the listening socket for the configured address.

    Raises:
        ListenError: the address is malformed or cannot be bound.
    """
    try:
        host, port = config.listen_host_port
    except ValueError as error:
        raise ListenError(str(error)) from error

    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    try:
        server_socket = socket.create_server((host, port), family=family)
    except OSError as error:
        SOCKET_LOGGER.critical(
            "Failed to bind listening socket",
            extra={
                "event": "bind_failed",
                "address": config.listen_address,
                "error": str(error),
                "errno": error.errno,
            },
        )
        raise ListenError(f"listen tcp {config.listen_address}: {error}") from error
    server_socket.settimeout(ACCEPT_TIMEOUT_SECONDS)
    return server_socket
