"""
Secret sources for credentials.

A password or token is either given inline in the configuration, or
as a shell command printing it on the first line of its standard
output (i.e. ``pass show caldav/work``).  Commands are only run when
the secret is actually needed.
"""
import logging
import subprocess
from dataclasses import dataclass
from typing import Callable
from typing import Union

from calendula.lib import error

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class InlineSecret:
    value: str

    def __repr__(self) -> str:
        ## never leak the secret into logs or tracebacks
        return "InlineSecret(***)"


@dataclass(frozen=True)
class CommandSecret:
    command: str


SecretSource = Union[InlineSecret, CommandSecret]
SecretResolver = Callable[[SecretSource], str]


def resolve_secret(source: SecretSource) -> str:
    """
    Resolve a secret source into the secret itself.

    Args:
        source: an InlineSecret or a CommandSecret

    Returns:
        The inline value, or the first line of the command output

    Raises:
        SecretUnavailable: the command failed or printed nothing
    """
    if isinstance(source, InlineSecret):
        return source.value

    if isinstance(source, CommandSecret):
        log.debug(f"running secret command {source.command!r}")
        try:
            proc = subprocess.run(
                source.command,
                shell=True,
                capture_output=True,
                text=True,
            )
        except OSError as e:
            raise error.SecretUnavailable(reason=f"cannot run {source.command!r}: {e}")
        if proc.returncode != 0:
            raise error.SecretUnavailable(
                reason=f"{source.command!r} exited with status {proc.returncode}"
            )
        lines = proc.stdout.splitlines()
        secret = lines[0].strip() if lines else ""
        if not secret:
            raise error.SecretUnavailable(reason=f"{source.command!r} printed nothing")
        return secret

    raise error.SecretUnavailable(reason=f"unknown secret source {source!r}")
