import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

from .exceptions import ConfigurationError
from .planka_client import DEFAULT_TIMEOUT

REQUIRED_VARIABLES = ("PLANKA_URL", "PLANKA_EMAIL", "PLANKA_PASSWORD")
DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"  # noqa: S104

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    planka_url: str
    planka_email: str
    planka_password: str = field(repr=False)
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    request_timeout: float = DEFAULT_TIMEOUT
    session_idle_timeout: float | None = None
    json_response: bool = False
    allowed_hosts: tuple[str, ...] = ()
    log_level: str = "INFO"


def _optional_float(value: str | None, name: str) -> float | None:
    if value is None or value.strip() == "":
        return None
    try:
        return float(value)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from e


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """
    Build settings from the environment, after loading any ``.env`` file.

    Args:
        environ: Mapping to read instead of ``os.environ`` (used by tests)

    Raises:
        ConfigurationError: If a required variable is missing or a value is malformed
    """
    if environ is None:
        load_dotenv()
        environ = dict(os.environ)

    if any(not environ.get(name) for name in REQUIRED_VARIABLES):
        raise ConfigurationError(
            f"Missing required environment variables: {', '.join(REQUIRED_VARIABLES)}"
        )

    try:
        port = int(environ.get("PORT") or DEFAULT_PORT)
    except ValueError as e:
        raise ConfigurationError(f"PORT must be an integer, got {environ['PORT']!r}") from e

    allowed_hosts = tuple(
        host.strip() for host in environ.get("MCP_ALLOWED_HOSTS", "").split(",") if host.strip()
    )

    return Settings(
        planka_url=environ["PLANKA_URL"].rstrip("/"),
        planka_email=environ["PLANKA_EMAIL"],
        planka_password=environ["PLANKA_PASSWORD"],
        port=port,
        host=environ.get("HOST") or DEFAULT_HOST,
        request_timeout=_optional_float(environ.get("PLANKA_TIMEOUT"), "PLANKA_TIMEOUT")
        or DEFAULT_TIMEOUT,
        session_idle_timeout=_optional_float(
            environ.get("MCP_SESSION_IDLE_TIMEOUT"), "MCP_SESSION_IDLE_TIMEOUT"
        ),
        json_response=environ.get("MCP_JSON_RESPONSE", "").lower() in _TRUE_VALUES,
        allowed_hosts=allowed_hosts,
        log_level=(environ.get("LOG_LEVEL") or "INFO").upper(),
    )
