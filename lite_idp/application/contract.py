"""Contract between the bootstrap and the request-handling application."""

import importlib
import ssl
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from lite_idp.bootstrap.config import EffectiveConfig
from lite_idp.domain.correlation_id import get_logger
from lite_idp.domain.http_types import Handler

APPLICATION_LOGGER = get_logger("application")


class HandlerConstructionError(Exception):
    """Raised when the application service cannot be loaded."""


@dataclass(frozen=True)
class TlsTrust:
    """Client-certificate trust material supplied by the application."""

    ca_file: Optional[str] = None
    verify_client: ssl.VerifyMode = ssl.CERT_OPTIONAL


@dataclass(frozen=True)
class ServiceComponents:
    handler: Handler
    trust: TlsTrust


class ApplicationService(Protocol):
    """Anything that can produce a request handler and its TLS trust."""

    def build(self) -> ServiceComponents:
        ...


ServiceFactory = Callable[[EffectiveConfig], ApplicationService]


def _import_factory(reference: str) -> ServiceFactory:
    module_name, separator, attribute = reference.partition(":")
    if not separator or not module_name or not attribute:
        raise HandlerConstructionError(
            f"application must look like 'module:factory', got {reference!r}"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as error:
        raise HandlerConstructionError(
            f"cannot import application module {module_name!r}: {error}"
        ) from error
    try:
        factory = getattr(module, attribute)
    except AttributeError as error:
        raise HandlerConstructionError(
            f"module {module_name!r} has no attribute {attribute!r}"
        ) from error
    if not callable(factory):
        raise HandlerConstructionError(f"{reference!r} is not callable")
    return factory


def load_application_service(config: EffectiveConfig) -> ApplicationService:
    """Return the configured application service, or the built-in default."""
    reference = config.application
    if not reference:
        from lite_idp.application.default_service import (  # pylint: disable=import-outside-toplevel
            DefaultApplicationService,
        )

        return DefaultApplicationService(config)

    factory = _import_factory(reference)
    APPLICATION_LOGGER.info(
        "Loading application service",
        extra={"event": "application_loading", "route": reference},
    )
    return factory(config)
