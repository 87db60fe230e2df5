"""Built-in application service used when no external one is configured.

It answers health checks and reserves the configured SAML endpoints with
``501 Not Implemented`` so the bootstrap can run on its own.
"""

import logging

from lite_idp.application.contract import ServiceComponents, TlsTrust
from lite_idp.bootstrap.config import SECURITY_HEADERS, EffectiveConfig
from lite_idp.domain.correlation_id import get_logger
from lite_idp.domain.http_types import HttpRequest, HttpResponse
from lite_idp.domain.response_builders import (
    healthz_response,
    not_found_response,
    not_implemented_response,
)

ROUTER_LOGGER = get_logger("application.router")

HEALTHZ_PATH = "/healthz"


class DefaultApplicationService:
    """Routes the health check and the configured service paths."""

    def __init__(self, config: EffectiveConfig) -> None:
        self.config = config
        self._service_routes = {
            path: name for name, path in config.service_paths.items()
        }

    def build(self) -> ServiceComponents:
        return ServiceComponents(
            handler=self.route_request,
            trust=TlsTrust(ca_file=self.config.tls_ca),
        )

    def route_request(self, request: HttpRequest) -> HttpResponse:
        """Route the request to the appropriate handler and return a response."""
        if request.path == HEALTHZ_PATH:
            return healthz_response(request, SECURITY_HEADERS)

        service = self._service_routes.get(request.path)
        if service is not None:
            if ROUTER_LOGGER.logger.isEnabledFor(logging.DEBUG):
                ROUTER_LOGGER.debug(
                    "Route matched",
                    extra={"event": "route_matched", "route": request.path},
                )
            return not_implemented_response(request, SECURITY_HEADERS)

        ROUTER_LOGGER.info(
            "No matching route found",
            extra={
                "event": "route_not_found",
                "route": request.path,
                "method": request.method,
            },
        )
        return not_found_response(request, SECURITY_HEADERS)
