"""
cas/config.py -- Immutable CAS client configuration and its validating builder.

CasConfig is constructed once at startup and shared read-only by every request
handler. It is a frozen dataclass: there is no way to mutate it after handoff,
so no locking is needed when requests run concurrently.

Two ways to build one:
  CasConfig(...)            strict -- any invalid field raises ConfigurationError.
  CasConfigBuilder(base)    lenient -- each setter validates its input, logs
                            and keeps the previous value on error. Only the
                            base URL is mandatory and raises immediately.

Normalization rules (applied by both paths):
  base_url         always ends with "/".
  *_prefix         no leading or trailing "/"; empty is rejected.
  app_url          absolute URL or ""; trailing "/" stripped.
  login_service_path  no leading or trailing "/"; "" means no sub-path.

The service URL ({app_url}/{login_service_path}) is derived here, in exactly
one place. login and serviceValidate must send the same value or the CAS
server rejects the ticket.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Optional, Union
from urllib.parse import urlsplit

from cas.errors import ConfigurationError
from cas.models import CasProtocol, NoAuthBehavior

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("casclient.config")

DEFAULT_LOGIN_PREFIX = "login"
DEFAULT_LOGOUT_PREFIX = "logout"
DEFAULT_SERVICE_VALIDATE_PREFIX = "serviceValidate"
DEFAULT_LOGIN_SERVICE_PATH = "auth/cas"


# ---------------------------------------------------------------------------
# Normalizers -- raise ConfigurationError, never log
# ---------------------------------------------------------------------------


def require_absolute_url(url: str, what: str) -> str:
    """Return url unchanged if it has a scheme and a host, else raise."""
    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise ConfigurationError(f"{what} is not a valid URL: {url!r}") from e
    if not parts.scheme or not parts.netloc:
        raise ConfigurationError(f"{what} must be an absolute URL: {url!r}")
    return url


def _normalize_base_url(url: str) -> str:
    if not url.endswith("/"):
        url = url + "/"
    return require_absolute_url(url, "CAS base URL")


def _strip_slashes(value: str) -> str:
    if value.startswith("/"):
        value = value[1:]
    if value.endswith("/"):
        value = value[:-1]
    return value


def _normalize_prefix(value: str, what: str) -> str:
    normalized = _strip_slashes(value) if value else ""
    if not normalized:
        raise ConfigurationError(f"{what} cannot be empty")
    return normalized


def _normalize_app_url(url: str) -> str:
    if not url:
        return ""
    require_absolute_url(url, "App URL")
    return url.rstrip("/")


def _normalize_login_service_path(value: str) -> str:
    return _strip_slashes(value) if value else ""


def _normalize_protocol(value: Union[CasProtocol, str]) -> CasProtocol:
    if isinstance(value, CasProtocol):
        return value
    try:
        return CasProtocol.parse(value)
    except ValueError as e:
        raise ConfigurationError(f"Unknown CAS protocol version: {value!r}") from e


# ---------------------------------------------------------------------------
# CasConfig
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CasConfig:
    """Validated, read-only CAS client configuration."""

    base_url: str
    login_prefix: str = DEFAULT_LOGIN_PREFIX
    logout_prefix: str = DEFAULT_LOGOUT_PREFIX
    service_validate_prefix: str = DEFAULT_SERVICE_VALIDATE_PREFIX
    protocol_version: CasProtocol = CasProtocol.V3
    app_url: str = ""
    login_service_path: str = DEFAULT_LOGIN_SERVICE_PATH
    default_after_login_path: Optional[str] = None

    def __post_init__(self) -> None:
        # frozen=True blocks normal assignment; normalization happens once here.
        set_ = object.__setattr__
        set_(self, "base_url", _normalize_base_url(self.base_url))
        set_(self, "login_prefix", _normalize_prefix(self.login_prefix, "Login prefix"))
        set_(self, "logout_prefix", _normalize_prefix(self.logout_prefix, "Logout prefix"))
        set_(
            self,
            "service_validate_prefix",
            _normalize_prefix(self.service_validate_prefix, "Service validate prefix"),
        )
        set_(self, "protocol_version", _normalize_protocol(self.protocol_version))
        set_(self, "app_url", _normalize_app_url(self.app_url))
        set_(self, "login_service_path", _normalize_login_service_path(self.login_service_path))
        set_(self, "default_after_login_path", self.default_after_login_path or None)

    @property
    def service_url(self) -> str:
        """The `service` parameter for both login and serviceValidate."""
        if not self.login_service_path:
            return self.app_url
        return f"{self.app_url}/{self.login_service_path}"


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


class CasConfigBuilder:
    """Chainable, forgiving construction of a CasConfig.

    Usage:
        config = (
            CasConfigBuilder("https://cas.example.org/cas")
            .app_url("https://app.example.org")
            .login_service_path("auth/cas")
            .build()
        )

    A rejected value is logged at ERROR and the previous value stays in place,
    so a single bad env var cannot leave the config half-updated.
    """

    def __init__(self, base_url: str) -> None:
        try:
            self._values: dict = {"base_url": _normalize_base_url(base_url)}
        except ConfigurationError:
            logger.error("CAS url is not valid: %r", base_url)
            raise
        self._values.update(
            login_prefix=DEFAULT_LOGIN_PREFIX,
            logout_prefix=DEFAULT_LOGOUT_PREFIX,
            service_validate_prefix=DEFAULT_SERVICE_VALIDATE_PREFIX,
            protocol_version=CasProtocol.V3,
            app_url="",
            login_service_path=DEFAULT_LOGIN_SERVICE_PATH,
            default_after_login_path=None,
        )

    @classmethod
    def from_config(cls, config: CasConfig) -> CasConfigBuilder:
        builder = cls(config.base_url)
        builder._values.update(dataclasses.asdict(config))
        return builder

    def _set(self, name: str, normalize: Callable[[object], object], value: object) -> CasConfigBuilder:
        try:
            self._values[name] = normalize(value)
        except ConfigurationError as e:
            logger.error("%s; keeping %s=%r", e, name, self._values[name])
        return self

    def login_prefix(self, value: str) -> CasConfigBuilder:
        return self._set("login_prefix", lambda v: _normalize_prefix(v, "Login prefix"), value)

    def logout_prefix(self, value: str) -> CasConfigBuilder:
        return self._set("logout_prefix", lambda v: _normalize_prefix(v, "Logout prefix"), value)

    def service_validate_prefix(self, value: str) -> CasConfigBuilder:
        return self._set(
            "service_validate_prefix",
            lambda v: _normalize_prefix(v, "Service validate prefix"),
            value,
        )

    def protocol_version(self, value: Union[CasProtocol, str]) -> CasConfigBuilder:
        return self._set("protocol_version", _normalize_protocol, value)

    def app_url(self, value: str) -> CasConfigBuilder:
        return self._set("app_url", _normalize_app_url, value)

    def login_service_path(self, value: str) -> CasConfigBuilder:
        return self._set("login_service_path", _normalize_login_service_path, value)

    def default_after_login_path(self, value: Optional[str]) -> CasConfigBuilder:
        self._values["default_after_login_path"] = value or None
        return self

    def build(self) -> CasConfig:
        return CasConfig(**self._values)


def config_from_settings(settings: Settings) -> CasConfig:
    """Build the CasConfig described by the environment.

    Raises ConfigurationError only for an invalid CAS_URL; every other bad
    value is logged and replaced by its default.
    """
    return (
        CasConfigBuilder(settings.cas_url)
        .login_prefix(settings.cas_login_prefix)
        .logout_prefix(settings.cas_logout_prefix)
        .service_validate_prefix(settings.cas_service_validate_prefix)
        .protocol_version(settings.cas_protocol)
        .app_url(settings.app_url)
        .login_service_path(settings.cas_login_service_path)
        .default_after_login_path(settings.cas_default_after_login_path)
        .build()
    )


def behavior_from_settings(settings: Settings) -> NoAuthBehavior:
    """The NoAuthBehavior for routes that do not pick one; AUTHENTICATE if unparseable."""
    try:
        return NoAuthBehavior.parse(settings.cas_no_auth_behavior)
    except ValueError:
        logger.error(
            "Unknown CAS_NO_AUTH_BEHAVIOR %r; using %s",
            settings.cas_no_auth_behavior,
            NoAuthBehavior.AUTHENTICATE.value,
        )
        return NoAuthBehavior.AUTHENTICATE
