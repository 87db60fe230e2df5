"""lite-idp: SAML 2 identity provider process entry point."""

import sys
from typing import Optional, Sequence

from lite_idp.application.contract import ApplicationService, load_application_service
from lite_idp.bootstrap.config import EffectiveConfig, resolve_config
from lite_idp.bootstrap.logging_setup import configure_logging
from lite_idp.domain.correlation_id import get_logger
from lite_idp.lifecycle.manager import ServerLifecycleManager

MAIN_LOGGER = get_logger("main")


def _report_config_source(config: EffectiveConfig) -> None:
    if config.config_file:
        MAIN_LOGGER.info(
            f"using config file: {config.config_file}",
            extra={"event": "config_loaded", "config_file": config.config_file},
        )
    else:
        MAIN_LOGGER.warning(
            f"failed to load config file: {config.config_error}",
            extra={"event": "config_load_failed", "error": config.config_error},
        )
    for problem in config.setting_errors:
        MAIN_LOGGER.warning(
            f"invalid setting {problem}",
            extra={"event": "setting_invalid", "error": problem},
        )


def run(config: EffectiveConfig, service: Optional[ApplicationService] = None) -> int:
    """Run the server until shutdown; returns the process exit status."""
    try:
        if service is None:
            service = load_application_service(config)
        ServerLifecycleManager(config, service).run()
    except Exception as error:  # pylint: disable=broad-except
        MAIN_LOGGER.critical(
            "Server terminated with an error",
            extra={
                "event": "server_failed",
                "error_type": type(error).__name__,
                "error": str(error),
            },
        )
        print(error, file=sys.stderr)
        return 1
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Resolve configuration, configure logging and serve."""
    config = resolve_config(sys.argv[1:] if argv is None else argv)
    try:
        configure_logging(config.log_level, config.log_destination, config.log_json)
    except OSError as error:
        print(f"cannot open log destination: {error}", file=sys.stderr)
        return 1
    _report_config_source(config)
    MAIN_LOGGER.info(
        "Starting identity provider",
        extra={
            "event": "server_starting",
            "address": config.listen_address,
            "server_name": config.server_name,
            "entity_id": config.entity_id,
            "tls_ca": config.tls_ca or "",
        },
    )
    return run(config)


if __name__ == "__main__":
    sys.exit(main())
