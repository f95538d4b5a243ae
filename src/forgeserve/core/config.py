"""
Configuration management for the ForgeServe dev server

Raw user options are pydantic models so malformed input is rejected at the
edge; the normalized ``ServerConfiguration`` is an immutable dataclass that
the rest of the server reads.
"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from ..exceptions.base import ConfigurationError


DEFAULT_PORT = 9000
DEFAULT_HOST = "localhost"
DEFAULT_HMR_PORT = 9801
DEFAULT_HMR_PATH = "/__hmr"
DEFAULT_PORT_RETRIES = 20
DEFAULT_IGNORED = (
    "*.pyc", "__pycache__", ".git", "node_modules", ".DS_Store", "*.log", "*.swp"
)

# Bind addresses that listen on every interface and cannot be browsed to
WILDCARD_HOSTS = frozenset({"0.0.0.0", "::", "[::]"})

URL_REGEX = re.compile(r"^(https?:)?//[^/]+")


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", name) from None


class _UserModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )


class HmrUserOptions(_UserModel):
    """HMR options as written by the user"""
    port: Optional[int] = None
    host: Optional[str] = None
    path: Optional[str] = None
    debounce_ms: Optional[int] = None
    ignored: Optional[List[str]] = None


class ProxyUserOptions(_UserModel):
    """Proxy target as written by the user"""
    target: str
    change_origin: bool = True
    rewrite: Optional[str] = None


class UserServerConfig(_UserModel):
    """Raw, partially specified server options"""
    port: Optional[int] = None
    host: Optional[str] = None
    https: bool = False
    ssl_certfile: Optional[str] = None
    ssl_keyfile: Optional[str] = None
    open: bool = False
    strict_port: bool = False
    write_to_disk: bool = False
    hmr: Union[bool, HmrUserOptions] = True
    headers: Dict[str, str] = Field(default_factory=dict)
    cors: Union[bool, List[str]] = False
    proxy: Dict[str, Union[str, ProxyUserOptions]] = Field(default_factory=dict)
    lazy_compilation: bool = False
    records: bool = False
    port_retries: Optional[int] = None
    show_banner: bool = True
    plugins: List[Any] = Field(default_factory=list)


class OutputUserOptions(_UserModel):
    path: str = "dist"
    public_path: Optional[str] = None


class CompilationUserOptions(_UserModel):
    output: OutputUserOptions = Field(default_factory=OutputUserOptions)


class UserConfig(_UserModel):
    """Top level user configuration"""
    root: str = "."
    public_dir: Optional[str] = None
    compilation: CompilationUserOptions = Field(default_factory=CompilationUserOptions)
    server: UserServerConfig = Field(default_factory=UserServerConfig)


@dataclass(frozen=True)
class HmrOptions:
    """Normalized HMR channel options"""
    port: int = DEFAULT_HMR_PORT
    host: str = DEFAULT_HOST
    path: str = DEFAULT_HMR_PATH
    debounce_ms: int = 100
    ignored: Tuple[str, ...] = DEFAULT_IGNORED

    def __post_init__(self):
        if not 0 <= self.port <= 65535:
            raise ConfigurationError("hmr.port must be between 0 and 65535", "hmr.port")
        if not self.path.startswith("/"):
            raise ConfigurationError("hmr.path must start with '/'", "hmr.path")
        if self.debounce_ms < 0:
            raise ConfigurationError("hmr.debounce_ms must be non-negative", "hmr.debounce_ms")


@dataclass(frozen=True)
class ProxyRule:
    """A path prefix forwarded to an external target"""
    prefix: str
    target: str
    change_origin: bool = True
    rewrite: Optional[str] = None


@dataclass(frozen=True)
class ServerConfiguration:
    """Canonical dev server configuration"""

    port: int
    host: str
    protocol: str
    hostname: str
    open: bool = False
    strict_port: bool = False
    write_to_disk: bool = False
    hmr: Union[HmrOptions, bool] = False
    plugins: Tuple[Any, ...] = ()

    headers: Dict[str, str] = field(default_factory=dict)
    cors: Union[bool, Tuple[str, ...]] = False
    proxy: Tuple[ProxyRule, ...] = ()
    lazy_compilation: bool = False
    records: bool = False
    ssl_certfile: Optional[str] = None
    ssl_keyfile: Optional[str] = None
    port_retries: int = DEFAULT_PORT_RETRIES
    show_banner: bool = True
    profile: bool = False

    def __post_init__(self):
        """Validate configuration after initialization"""
        if not 0 <= self.port <= 65535:
            raise ConfigurationError("port must be between 0 and 65535", "port")
        if not self.host:
            raise ConfigurationError("host must not be empty", "host")
        if self.protocol not in ("http", "https"):
            raise ConfigurationError(f"Unsupported protocol: {self.protocol}", "protocol")
        if self.protocol == "https" and not (self.ssl_certfile and self.ssl_keyfile):
            raise ConfigurationError("https requires ssl_certfile and ssl_keyfile", "https")
        if self.protocol == "http" and (self.ssl_certfile or self.ssl_keyfile):
            raise ConfigurationError("ssl_certfile and ssl_keyfile are only used with https", "ssl_certfile")
        if self.hostname in WILDCARD_HOSTS:
            raise ConfigurationError("hostname must be browser navigable", "hostname")
        if self.port_retries <= 0:
            raise ConfigurationError("port_retries must be positive", "port_retries")
        if self.hmr is True:
            raise ConfigurationError("hmr must be normalized to HmrOptions or False", "hmr")

    @property
    def hmr_enabled(self) -> bool:
        return isinstance(self.hmr, HmrOptions)

    def url(self, public_path: str = "/", port: Optional[int] = None) -> str:
        """Browser facing URL for this server; ``port`` overrides the configured one"""
        return f"{self.protocol}://{self.hostname}:{self.port if port is None else port}{public_path}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary"""
        return {
            name: getattr(self, name)
            for name in self.__dataclass_fields__
            if name != "plugins"
        }


def display_hostname(host: str) -> str:
    """Host used for URLs shown to people and browsers"""
    return "localhost" if host in WILDCARD_HOSTS else host


def _config_key(error: ValidationError) -> Optional[str]:
    errors = error.errors()
    if not errors:
        return None
    return ".".join(str(part) for part in errors[0].get("loc", ()))


def _coerce_server_options(options: Union[UserServerConfig, Dict[str, Any], None]) -> UserServerConfig:
    if options is None:
        return UserServerConfig()
    if isinstance(options, UserServerConfig):
        return options
    try:
        return UserServerConfig.model_validate(options)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid server options: {e}", _config_key(e)) from e


def normalize_hmr_options(
    hmr: Union[bool, HmrUserOptions, Dict[str, Any], None],
    host: str = DEFAULT_HOST
) -> Union[HmrOptions, bool]:
    """Apply defaults to every absent HMR sub-option; the bind host defaults to the server's"""
    if hmr is None or hmr is False:
        return False
    if isinstance(hmr, dict):
        hmr = HmrUserOptions.model_validate(hmr)
    if hmr is True:
        hmr = HmrUserOptions()

    return HmrOptions(
        port=hmr.port if hmr.port is not None else _env_int("FORGESERVE_HMR_PORT", DEFAULT_HMR_PORT),
        host=hmr.host or host,
        path=hmr.path or DEFAULT_HMR_PATH,
        debounce_ms=hmr.debounce_ms if hmr.debounce_ms is not None else 100,
        ignored=tuple(hmr.ignored) if hmr.ignored is not None else DEFAULT_IGNORED,
    )


def _normalize_proxy(proxy: Dict[str, Union[str, ProxyUserOptions]]) -> Tuple[ProxyRule, ...]:
    rules = []
    for prefix, target in proxy.items():
        if not prefix.startswith("/"):
            raise ConfigurationError(f"Proxy prefix must start with '/': {prefix}", f"proxy.{prefix}")
        if isinstance(target, str):
            rules.append(ProxyRule(prefix=prefix, target=target.rstrip("/")))
        else:
            rules.append(ProxyRule(
                prefix=prefix,
                target=target.target.rstrip("/"),
                change_origin=target.change_origin,
                rewrite=target.rewrite,
            ))
    # Longest prefix wins when several rules match
    return tuple(sorted(rules, key=lambda rule: len(rule.prefix), reverse=True))


def normalize_dev_server_options(
    options: Union[UserServerConfig, Dict[str, Any], None] = None
) -> ServerConfiguration:
    """
    Validate and default raw server options.

    Args:
        options: Raw server options, any field may be absent

    Returns:
        Fully populated server configuration

    Raises:
        ConfigurationError: If the merged options are structurally invalid
    """
    options = _coerce_server_options(options)

    host = options.host or os.getenv("FORGESERVE_HOST", DEFAULT_HOST)
    port = options.port if options.port is not None else _env_int("FORGESERVE_PORT", DEFAULT_PORT)

    try:
        hmr = normalize_hmr_options(options.hmr, host)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid hmr options: {e}", "hmr") from e

    cors = options.cors if isinstance(options.cors, bool) else tuple(options.cors)

    return ServerConfiguration(
        port=port,
        host=host,
        protocol="https" if options.https else "http",
        hostname=display_hostname(host),
        open=options.open,
        strict_port=options.strict_port,
        write_to_disk=options.write_to_disk,
        hmr=hmr,
        plugins=tuple(options.plugins),
        headers=dict(options.headers),
        cors=cors,
        proxy=_normalize_proxy(options.proxy),
        lazy_compilation=options.lazy_compilation,
        records=options.records,
        ssl_certfile=options.ssl_certfile,
        ssl_keyfile=options.ssl_keyfile,
        port_retries=options.port_retries if options.port_retries is not None else DEFAULT_PORT_RETRIES,
        show_banner=options.show_banner,
        profile=_env_flag("FORGESERVE_PROFILE"),
    )


def normalize_public_path(public_path: Optional[str]) -> str:
    """Configured public path, defaulting to '/'"""
    return public_path or "/"


def runtime_public_path(public_path: Optional[str]) -> str:
    """
    Path the running server serves resources under.

    Absolute URLs (CDN hosting) are served from '/', anything else gets a
    leading slash.
    """
    public_path = normalize_public_path(public_path)
    if URL_REGEX.match(public_path):
        return "/"
    return public_path if public_path.startswith("/") else f"/{public_path}"


def disk_base_path(public_path: Optional[str]) -> str:
    """Base path used when flushing resources; absolute URLs contribute nothing"""
    public_path = normalize_public_path(public_path)
    if URL_REGEX.match(public_path):
        return ""
    return public_path


def normalize_public_dir(root: Union[str, Path], public_dir: Optional[str] = None) -> Path:
    """Resolve the static public directory against the project root"""
    root_path = Path(root).resolve()
    if not public_dir:
        return root_path / "public"
    public_path = Path(public_dir)
    if public_path.is_absolute():
        return public_path
    return root_path / public_path


def load_user_config(path: Union[str, Path]) -> UserConfig:
    """
    Load a YAML configuration file.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise ConfigurationError(f"Config file not found: {config_path}", "config")

    try:
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}", "config") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config file must contain a mapping: {config_path}", "config")

    try:
        config = UserConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}", _config_key(e)) from e

    # Relative roots are relative to the config file, not the cwd
    if not Path(config.root).is_absolute():
        config.root = str((config_path.parent / config.root).resolve())
    return config
