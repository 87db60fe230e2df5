"""Application service whose handler outlives any reasonable grace period."""

import time

from lite_idp.application.contract import ServiceComponents, TlsTrust
from lite_idp.bootstrap.config import EffectiveConfig
from lite_idp.domain.http_types import HttpRequest, HttpResponse

HANDLER_SECONDS = 30.0


class SlowService:
    def __init__(self, config: EffectiveConfig) -> None:
        self.config = config

    def build(self) -> ServiceComponents:
        def stall(request: HttpRequest) -> HttpResponse:
            time.sleep(HANDLER_SECONDS)
            return HttpResponse("HTTP/1.1 200 OK", {}, b"late")

        return ServiceComponents(stall, TlsTrust())
