"""Runtime configuration resolved from defaults, file, environment and flags.

Every setting has a kebab-case name. Values are looked up per key in four
sources, highest precedence first:

1. a command-line flag the caller actually supplied,
2. an environment variable (``tls-certificate`` -> ``TLS_CERTIFICATE``),
3. the YAML configuration file,
4. the declared default.

A missing or broken configuration file is never fatal; the problem is kept on
the resulting :class:`EffectiveConfig` so it can be logged once logging is
configured. Duration settings that do not parse fall back to their defaults
the same way.
"""

import argparse
import enum
import math
import os
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Optional, Sequence

import yaml

DEFAULT_CONFIG_DIR = Path("/etc/lite-idp")
DEFAULT_CONFIG_NAME = "lite-idp"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / f"{DEFAULT_CONFIG_NAME}.yaml"
CONFIG_EXTENSIONS = (".yaml", ".yml")

HEADER_DELIMITER = b"\r\n\r\n"
MAX_BODY_BYTES = 5 * 1024 * 1024

SECURITY_HEADERS = {
    "Strict-Transport-Security": "max-age=63072000; includeSubDomains",
}


class ConfigSourceError(Exception):
    """Raised when the configuration file cannot be located, read or parsed."""


class ConfigSource(enum.IntEnum):
    """Where a setting value came from, ordered by precedence."""

    DEFAULT = 0
    FILE = 1
    ENVIRONMENT = 2
    FLAG = 3


@dataclass(frozen=True)
class SettingDefinition:
    """A declared setting with its default and command-line help."""

    name: str
    default: str
    help: str
    short: Optional[str] = None


SETTINGS: tuple[SettingDefinition, ...] = (
    SettingDefinition(
        "tls-certificate", "/etc/lite-idp/cert.pem", "PEM encoded certificate file", "-c"
    ),
    SettingDefinition(
        "tls-private-key", "/etc/lite-idp/key.pem", "PEM encoded private key file", "-k"
    ),
    SettingDefinition(
        "tls-ca",
        "",
        "PEM encoded file containing trusted certificate authorities "
        '(default "OS trusted authorities")',
    ),
    SettingDefinition(
        "listen-address", "127.0.0.1:9443", "host:port to listen for connections"
    ),
    SettingDefinition(
        "server-name",
        "idp.example.com:9443",
        "FQDN and optional port used to construct URLs",
    ),
    SettingDefinition(
        "entity-id", "", 'SAML entityID (default "https://$SERVER_NAME/")'
    ),
    SettingDefinition("metadata-path", "/metadata", "server path for serving metadata"),
    SettingDefinition(
        "sso-service-path",
        "/SAML2/Redirect/SSO",
        "server path for redirect-based SSO service",
    ),
    SettingDefinition(
        "artifact-service-path",
        "/SAML2/SOAP/ArtifactResolution",
        "server path for artifact resolution service",
    ),
    SettingDefinition(
        "attribute-service-path",
        "/SAML2/SOAP/AttributeQuery",
        "server path for attribute query service",
    ),
    SettingDefinition(
        "log-level", "INFO", "DEBUG, INFO, WARNING, ERROR or CRITICAL"
    ),
    SettingDefinition("log-destination", "stdout", "stdout or a file path"),
    SettingDefinition("log-format", "json", "json or text"),
    SettingDefinition(
        "socket-timeout", "60", "socket timeout in seconds for client connections"
    ),
    SettingDefinition(
        "shutdown-grace-seconds",
        "0",
        "seconds to wait for in-flight requests on shutdown (0 waits indefinitely)",
    ),
    SettingDefinition(
        "application",
        "",
        "module:factory building the application service (default built-in)",
    ),
)

SETTING_NAMES = frozenset(definition.name for definition in SETTINGS)


def env_var_name(name: str) -> str:
    """Return the environment variable consulted for a setting."""
    return name.upper().replace("-", "_")


def _dest(name: str) -> str:
    return name.replace("-", "_")


def declared_defaults() -> dict[str, str]:
    """Return the declared default of every setting."""
    return {definition.name: definition.default for definition in SETTINGS}


def build_arg_parser() -> argparse.ArgumentParser:
    """Return the command-line parser.

    Setting flags default to ``argparse.SUPPRESS`` so that the parsed
    namespace only holds the flags the caller actually supplied.
    """
    parser = argparse.ArgumentParser(
        prog="lite-idp", description="SAML 2 Identity Provider"
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"config file (default {DEFAULT_CONFIG_FILE})",
    )
    for definition in SETTINGS:
        flags = [f"--{definition.name}"]
        if definition.short:
            flags.insert(0, definition.short)
        parser.add_argument(
            *flags,
            dest=_dest(definition.name),
            default=argparse.SUPPRESS,
            help=f"{definition.help} (default {definition.default!r})",
        )
    return parser


def parse_cli_args(argv: Sequence[str]) -> tuple[Optional[str], dict[str, str]]:
    """Return the explicit config path and the explicitly supplied flag values."""
    namespace = build_arg_parser().parse_args(list(argv))
    supplied = vars(namespace)
    config_path = supplied.pop("config", None)
    flags = {}
    for definition in SETTINGS:
        dest = _dest(definition.name)
        if dest in supplied:
            flags[definition.name] = supplied[dest]
    return config_path, flags


def locate_config_file(explicit_path: Optional[str]) -> Path:
    """Return the configuration file to read.

    Raises:
        ConfigSourceError: no explicit path was given and no file with the
            well-known name exists in the default directory.
    """
    if explicit_path:
        return Path(explicit_path)
    for extension in CONFIG_EXTENSIONS:
        candidate = DEFAULT_CONFIG_DIR / f"{DEFAULT_CONFIG_NAME}{extension}"
        if candidate.is_file():
            return candidate
    raise ConfigSourceError(
        f'config file "{DEFAULT_CONFIG_NAME}" not found in {DEFAULT_CONFIG_DIR}'
    )


def _scalar_to_str(key: str, value: object) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if value is None:
        return ""
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ConfigSourceError(f"value for {key!r} must be a scalar")


def load_config_file(path: Path) -> dict[str, str]:
    """Read declared settings from a YAML configuration file.

    Unknown keys are ignored.

    Raises:
        ConfigSourceError: the file is missing, unreadable, not valid YAML,
            not a mapping, or holds a non-scalar value for a declared key.
    """
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle)
    except OSError as error:
        raise ConfigSourceError(f"cannot read {path}: {error}") from error
    except yaml.YAMLError as error:
        raise ConfigSourceError(f"cannot parse {path}: {error}") from error

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigSourceError(f"{path} must contain a mapping of settings")

    values = {}
    for key, value in data.items():
        if key in SETTING_NAMES:
            values[key] = _scalar_to_str(key, value)
    return values


def read_environment(environ: Mapping[str, str]) -> dict[str, str]:
    """Return declared settings whose environment variable is set and non-empty."""
    values = {}
    for definition in SETTINGS:
        value = environ.get(env_var_name(definition.name))
        if value:
            values[definition.name] = value
    return values


def resolve_settings(
    defaults: Mapping[str, str],
    file_values: Mapping[str, str],
    env_values: Mapping[str, str],
    flag_values: Mapping[str, str],
) -> tuple[dict[str, str], dict[str, ConfigSource]]:
    """Pick each key's value from the highest-precedence source that has it."""
    layers = (
        (ConfigSource.FLAG, flag_values),
        (ConfigSource.ENVIRONMENT, env_values),
        (ConfigSource.FILE, file_values),
        (ConfigSource.DEFAULT, defaults),
    )
    keys = set(defaults) | set(file_values) | set(env_values) | set(flag_values)
    values: dict[str, str] = {}
    sources: dict[str, ConfigSource] = {}
    for key in sorted(keys):
        for source, layer in layers:
            if key in layer:
                values[key] = layer[key]
                sources[key] = source
                break
    return values, sources


def _parse_seconds(name: str, raw: str, allow_zero: bool) -> float:
    try:
        seconds = float(raw)
    except ValueError:
        raise ValueError(f"{name}: {raw!r} is not a number of seconds") from None
    if not math.isfinite(seconds) or seconds < 0 or (seconds == 0 and not allow_zero):
        bound = "zero or more" if allow_zero else "greater than zero"
        raise ValueError(f"{name}: {raw!r} must be {bound} seconds")
    return seconds


# name -> whether zero is accepted
DURATION_SETTINGS = {"socket-timeout": False, "shutdown-grace-seconds": True}


def validate_durations(
    values: dict[str, str], sources: dict[str, ConfigSource]
) -> list[str]:
    """Replace unusable duration values with their defaults, in place.

    Returns one message per replaced value.
    """
    defaults = declared_defaults()
    problems = []
    for name, allow_zero in DURATION_SETTINGS.items():
        try:
            _parse_seconds(name, values[name], allow_zero)
        except ValueError as error:
            problems.append(f"{error}; using default {defaults[name]}")
            values[name] = defaults[name]
            sources[name] = ConfigSource.DEFAULT
    return problems


@dataclass(frozen=True)
class EffectiveConfig:
    """Resolved settings consumed by the rest of the process."""

    values: Mapping[str, str]
    sources: Mapping[str, ConfigSource] = field(default_factory=dict)
    config_file: Optional[str] = None
    config_error: Optional[str] = None
    setting_errors: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))
        object.__setattr__(self, "sources", MappingProxyType(dict(self.sources)))

    @classmethod
    def from_mapping(cls, overrides: Optional[Mapping[str, str]] = None) -> "EffectiveConfig":
        """Build a config from the declared defaults plus explicit overrides."""
        values, sources = resolve_settings(declared_defaults(), {}, {}, overrides or {})
        problems = validate_durations(values, sources)
        return cls(values, sources, setting_errors=tuple(problems))

    def get(self, name: str) -> str:
        """Return a setting value by its kebab-case name."""
        return self.values[name]

    def source_of(self, name: str) -> ConfigSource:
        """Return the source a setting value was taken from."""
        return self.sources.get(name, ConfigSource.DEFAULT)

    @property
    def listen_address(self) -> str:
        return self.values["listen-address"]

    @property
    def listen_host_port(self) -> tuple[str, int]:
        """Split ``listen-address`` into host and port.

        Raises:
            ValueError: the address is not ``host:port`` or ``[v6]:port``.
        """
        host, separator, port = self.listen_address.rpartition(":")
        if not separator or not port.isdigit():
            raise ValueError(f"invalid listen address {self.listen_address!r}")
        if host.startswith("[") and host.endswith("]"):
            host = host[1:-1]
        port_number = int(port)
        if port_number > 65535:
            raise ValueError(f"invalid listen address {self.listen_address!r}")
        return host, port_number

    @property
    def tls_certificate(self) -> str:
        return self.values["tls-certificate"]

    @property
    def tls_private_key(self) -> str:
        return self.values["tls-private-key"]

    @property
    def tls_ca(self) -> Optional[str]:
        return self.values["tls-ca"] or None

    @property
    def server_name(self) -> str:
        return self.values["server-name"]

    @property
    def entity_id(self) -> str:
        return self.values["entity-id"] or f"https://{self.server_name}/"

    @property
    def metadata_path(self) -> str:
        return self.values["metadata-path"]

    @property
    def sso_service_path(self) -> str:
        return self.values["sso-service-path"]

    @property
    def artifact_service_path(self) -> str:
        return self.values["artifact-service-path"]

    @property
    def attribute_service_path(self) -> str:
        return self.values["attribute-service-path"]

    @property
    def service_paths(self) -> dict[str, str]:
        """Subordinate service paths keyed by service name."""
        return {
            "metadata": self.metadata_path,
            "sso": self.sso_service_path,
            "artifact": self.artifact_service_path,
            "attribute": self.attribute_service_path,
        }

    @property
    def log_level(self) -> str:
        return self.values["log-level"].upper()

    @property
    def log_destination(self) -> str:
        return self.values["log-destination"]

    @property
    def log_json(self) -> bool:
        return self.values["log-format"].lower() != "text"

    @property
    def socket_timeout(self) -> float:
        return float(self.values["socket-timeout"])

    @property
    def shutdown_grace_seconds(self) -> Optional[float]:
        """Bounded grace period, or None to wait for in-flight work indefinitely."""
        grace = float(self.values["shutdown-grace-seconds"])
        return grace if grace > 0 else None

    @property
    def application(self) -> str:
        return self.values["application"]


def resolve_config(
    argv: Sequence[str], environ: Optional[Mapping[str, str]] = None
) -> EffectiveConfig:
    """Resolve the effective configuration for this process."""
    if environ is None:
        environ = os.environ
    explicit_path, flag_values = parse_cli_args(argv)

    file_values: dict[str, str] = {}
    config_file = None
    config_error = None
    try:
        path = locate_config_file(explicit_path)
        file_values = load_config_file(path)
        config_file = str(path)
    except ConfigSourceError as error:
        config_error = str(error)

    values, sources = resolve_settings(
        declared_defaults(), file_values, read_environment(environ), flag_values
    )
    problems = validate_durations(values, sources)
    return EffectiveConfig(values, sources, config_file, config_error, tuple(problems))
