import json
import logging
import os
from dataclasses import dataclass
from dataclasses import field
from typing import Any
from typing import Dict
from typing import Optional
from typing import Tuple
from typing import Union

from calendula.lib import error
from calendula.secret import CommandSecret
from calendula.secret import InlineSecret
from calendula.secret import SecretSource

"""
Configuration reading.

The configuration file is a JSON (or, when pyyaml is installed, YAML)
object with one section per account:

    {
      "work": {
        "default": true,
        "caldav": {
          "server-uri": "https://dav.example.com/",
          "auth": {"basic": {"username": "me", "password": {"command": "pass show dav"}}}
        }
      },
      "local": {"vdir": {"path": "~/.calendars"}}
    }

A section may inherit keys from another one with "inherits".
"""

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class DiscoverConfig:
    """Where to look for the server when no server URI is configured"""

    host: str
    port: Optional[int] = None
    scheme: str = "https"
    method: str = "PROPFIND"
    dns: bool = False


@dataclass(frozen=True)
class BasicAuthConfig:
    username: str
    password: SecretSource


@dataclass(frozen=True)
class BearerAuthConfig:
    token: SecretSource


@dataclass(frozen=True)
class CaldavConfig:
    server_uri: Optional[str] = None
    principal_uri: Optional[str] = None
    home_uri: Optional[str] = None
    discover: Optional[DiscoverConfig] = None
    auth: Union[BasicAuthConfig, BearerAuthConfig, None] = None
    timeout: Optional[float] = 30.0
    ssl_verify_cert: Union[bool, str] = True
    ssl_cert: Union[str, Tuple[str, str], None] = None
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class VdirConfig:
    path: str


@dataclass(frozen=True)
class AccountConfig:
    name: str
    default: bool = False
    caldav: Optional[CaldavConfig] = None
    vdir: Optional[VdirConfig] = None


def config_section(config, section="default"):
    if section in config and "inherits" in config[section]:
        ret = config_section(config, config[section]["inherits"])
    else:
        ret = {}
    if section in config:
        ret.update(config[section])
    return ret


def read_config(fn=None):
    """
    Reads a configuration file.  With no file name given,
    $CALENDULA_CONFIG_FILE and the usual locations below ~/.config
    are tried in turn.

    Returns an empty dict when nothing usable was found.
    """
    if not fn:
        env_fn = os.environ.get("CALENDULA_CONFIG_FILE")
        if env_fn:
            return read_config(env_fn)
        cfgdir = f"{os.environ.get('HOME', '/')}/.config"
        for config_file in (
            f"{cfgdir}/calendula/config.json",
            f"{cfgdir}/calendula/config.yaml",
        ):
            cfg = read_config(config_file)
            if cfg:
                return cfg
        return {}

    try:
        try:
            with open(fn, "rb") as config_file:
                return json.load(config_file)
        except json.decoder.JSONDecodeError:
            ## Late import, yaml is an external module and not included
            ## in the requirements.
            try:
                import yaml

                try:
                    with open(fn, "rb") as config_file:
                        return yaml.load(config_file, yaml.SafeLoader) or {}
                except yaml.YAMLError:
                    log.error(
                        f"config file {fn} exists but is neither valid json nor yaml.  Check the syntax."
                    )
            except ImportError:
                log.error(
                    f"config file {fn} exists but is not valid json, and pyyaml is not installed."
                )
    except FileNotFoundError:
        log.info(f"no config file found at {fn}")
    return {}


def _secret(value: Any, what: str) -> SecretSource:
    if isinstance(value, str):
        return InlineSecret(value)
    if isinstance(value, dict):
        if "command" in value:
            return CommandSecret(str(value["command"]))
        if "raw" in value:
            return InlineSecret(str(value["raw"]))
    raise error.ConfigurationError(
        reason=f"{what} should be a string, or a mapping with 'command' or 'raw'"
    )


def _auth_config(auth: Optional[dict]) -> Union[BasicAuthConfig, BearerAuthConfig, None]:
    if not auth:
        return None
    if "basic" in auth:
        basic = auth["basic"]
        if "username" not in basic or "password" not in basic:
            raise error.ConfigurationError(
                reason="basic auth needs both username and password"
            )
        return BasicAuthConfig(
            username=basic["username"],
            password=_secret(basic["password"], "auth.basic.password"),
        )
    if "bearer" in auth:
        bearer = auth["bearer"]
        if "command" in bearer:
            return BearerAuthConfig(token=CommandSecret(str(bearer["command"])))
        if "token" in bearer:
            return BearerAuthConfig(token=_secret(bearer["token"], "auth.bearer.token"))
        raise error.ConfigurationError(reason="bearer auth needs a command or a token")
    raise error.ConfigurationError(reason=f"unknown auth type(s): {', '.join(auth)}")


def _caldav_config(section: dict) -> CaldavConfig:
    discover = None
    if section.get("discover"):
        d = section["discover"]
        if "host" not in d:
            raise error.ConfigurationError(reason="discover needs a host")
        discover = DiscoverConfig(
            host=d["host"],
            port=int(d["port"]) if d.get("port") is not None else None,
            scheme=d.get("scheme", "https"),
            method=d.get("method", "PROPFIND").upper(),
            dns=bool(d.get("dns", False)),
        )

    if not (section.get("server-uri") or section.get("home-uri") or discover):
        raise error.ConfigurationError(
            reason="missing one of `discover`, `server-uri` or `home-uri`"
        )

    ssl_cert = section.get("ssl-cert")
    if isinstance(ssl_cert, list):
        ssl_cert = tuple(ssl_cert)

    return CaldavConfig(
        server_uri=section.get("server-uri"),
        principal_uri=section.get("principal-uri"),
        home_uri=section.get("home-uri"),
        discover=discover,
        auth=_auth_config(section.get("auth")),
        timeout=section.get("timeout", 30.0),
        ssl_verify_cert=section.get("ssl-verify-cert", True),
        ssl_cert=ssl_cert,
        headers=dict(section.get("headers", {})),
    )


def account_config(section: dict, name: str = "default") -> AccountConfig:
    """
    Builds a typed account configuration out of a (resolved) config
    section.

    Raises:
      ConfigurationError
    """
    caldav = None
    vdir = None
    if section.get("caldav") is not None:
        caldav = _caldav_config(section["caldav"])
    if section.get("vdir") is not None:
        path = section["vdir"].get("path")
        if not path:
            raise error.ConfigurationError(reason="vdir needs a path")
        vdir = VdirConfig(path=os.path.expanduser(path))
    return AccountConfig(
        name=name,
        default=bool(section.get("default", False)),
        caldav=caldav,
        vdir=vdir,
    )


def find_account(config: dict, name: Optional[str] = None) -> AccountConfig:
    """
    Picks the named account, or the one marked as default.  A
    configuration with a single account needs no default marker.
    """
    if name is None:
        defaults = [x for x in config if config_section(config, x).get("default")]
        if defaults:
            name = defaults[0]
        elif len(config) == 1:
            name = next(iter(config))
        else:
            raise error.ConfigurationError(reason="no default account configured")
    if name not in config:
        raise error.ConfigurationError(reason=f"no account named {name!r}")
    return account_config(config_section(config, name), name)
