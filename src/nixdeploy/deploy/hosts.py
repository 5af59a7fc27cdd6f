"""
HostTopology - Parse host strings into typed host references.

Format-based parsing:
    (unset)                → local
    host                   → remote, login user from ssh config
    user@host              → remote
    user@host:2222         → remote with custom SSH port
    user@[fe80::1]         → remote with IPv6
    user@[fe80::1]:2222    → remote with IPv6 and custom port
    ssh://user@host        → same as user@host

No network access happens here; reachability is discovered by the first
stage that actually connects.
"""

import re
from dataclasses import dataclass
from typing import Optional

from .exceptions import ConfigResolutionError

ROLE_DEPLOYER = "deployer"
ROLE_BUILD = "build"
ROLE_TARGET = "target"

LOCAL = "local"
REMOTE = "remote"

DEFAULT_SSH_PORT = 22

_USER_RE = re.compile(r'^[A-Za-z0-9._][A-Za-z0-9._-]*$')
_HOST_RE = re.compile(r'^[A-Za-z0-9._-]+$')
_IPV6_RE = re.compile(r'^[0-9A-Fa-f:.%A-Za-z]+$')


@dataclass(frozen=True)
class HostRef:
    """
    One machine role in a deployment.

    Attributes:
        role: deployer, build or target
        locality: local or remote
        address: Hostname or IP (remote only)
        user: SSH login user (None = ssh default)
        port: SSH port (remote only)
    """
    role: str
    locality: str
    address: Optional[str] = None
    user: Optional[str] = None
    port: int = DEFAULT_SSH_PORT

    @property
    def is_local(self) -> bool:
        return self.locality == LOCAL

    @property
    def destination(self) -> str:
        """ssh destination, ``user@address`` or ``address``."""
        if self.is_local:
            return "localhost"
        return f"{self.user}@{self.address}" if self.user else self.address

    @property
    def store_uri(self) -> str:
        """Nix store URI for nix copy (``ssh://...`` or ``local``).

        Custom ports travel via NIX_SSHOPTS, not the URI.
        """
        if self.is_local:
            return "local"
        return f"ssh://{self.destination}"

    def same_machine(self, other: 'HostRef') -> bool:
        """Locality + address equality; roles and login users are ignored."""
        if self.is_local or other.is_local:
            return self.is_local and other.is_local
        return self.address == other.address and self.port == other.port

    def __str__(self) -> str:
        if self.is_local:
            return f"{self.role}=local"
        suffix = f":{self.port}" if self.port != DEFAULT_SSH_PORT else ""
        return f"{self.role}={self.destination}{suffix}"


def local_host(role: str) -> HostRef:
    return HostRef(role=role, locality=LOCAL)


def parse_host(spec: Optional[str], role: str) -> HostRef:
    """
    Parse a host string into a HostRef for the given role.

    Args:
        spec: Host string, or None/"" for local
        role: Role the host plays in this run

    Returns:
        HostRef (local when spec is unset)

    Raises:
        ConfigResolutionError: If spec is malformed
    """
    if spec is None or spec == "":
        return local_host(role)

    raw = spec
    if spec.startswith("ssh://"):
        spec = spec[len("ssh://"):]

    if not spec.strip() or any(c.isspace() for c in spec):
        raise ConfigResolutionError(f"Malformed --{role}-host '{raw}': must not contain whitespace")

    user = None
    host_part = spec
    if '@' in spec:
        user, host_part = spec.rsplit('@', 1)
        if not user or not _USER_RE.match(user):
            raise ConfigResolutionError(f"Malformed --{role}-host '{raw}': invalid user '{user}'")

    port = DEFAULT_SSH_PORT
    if host_part.startswith('['):
        # IPv6: [fe80::1] or [fe80::1]:2222
        bracket_end = host_part.find(']')
        if bracket_end == -1:
            raise ConfigResolutionError(f"Malformed IPv6 address in --{role}-host: {raw}")
        address = host_part[1:bracket_end]
        remainder = host_part[bracket_end + 1:]
        if remainder:
            if not remainder.startswith(':'):
                raise ConfigResolutionError(f"Malformed --{role}-host '{raw}': unexpected '{remainder}'")
            port = _parse_port(remainder[1:], raw, role)
        if not address or not _IPV6_RE.match(address):
            raise ConfigResolutionError(f"Malformed IPv6 address in --{role}-host: {raw}")
    else:
        if host_part.count(':') > 1:
            raise ConfigResolutionError(
                f"Malformed --{role}-host '{raw}': IPv6 addresses must be bracketed, e.g. root@[fe80::1]"
            )
        if ':' in host_part:
            address, port_str = host_part.rsplit(':', 1)
            port = _parse_port(port_str, raw, role)
        else:
            address = host_part
        if not address or not _HOST_RE.match(address):
            raise ConfigResolutionError(f"Malformed --{role}-host '{raw}': invalid address '{address}'")

    return HostRef(role=role, locality=REMOTE, address=address, user=user, port=port)


def _parse_port(port_str: str, raw: str, role: str) -> int:
    if not port_str.isdigit():
        raise ConfigResolutionError(f"Malformed --{role}-host '{raw}': port '{port_str}' is not a number")
    port = int(port_str)
    if not 1 <= port <= 65535:
        raise ConfigResolutionError(f"Malformed --{role}-host '{raw}': port {port} out of range")
    return port


@dataclass(frozen=True)
class HostTopology:
    """The three host roles of one run, resolved once and never mutated."""
    deployer: HostRef
    build: HostRef
    target: HostRef

    @property
    def builds_remotely(self) -> bool:
        return not self.build.is_local

    @property
    def needs_transfer(self) -> bool:
        return not self.build.same_machine(self.target)

    @classmethod
    def resolve(cls, build_host: Optional[str], target_host: Optional[str]) -> 'HostTopology':
        """
        Resolve raw --build-host / --target-host values.

        An unset build host builds on the deployer. An unset target host
        activates on the deployer, also when building remotely: the artifact
        is then copied back from the build host before activation.

        Raises:
            ConfigResolutionError: If either host string is malformed
        """
        return cls(
            deployer=local_host(ROLE_DEPLOYER),
            build=parse_host(build_host, ROLE_BUILD),
            target=parse_host(target_host, ROLE_TARGET),
        )

    def describe(self) -> str:
        if self.build.same_machine(self.target):
            where = "locally" if self.build.is_local else f"on {self.build.destination}"
            return f"Building and activating {where}"
        build = "locally" if self.build.is_local else f"on {self.build.destination}"
        target = "locally" if self.target.is_local else f"on {self.target.destination}"
        return f"Building {build}, activating {target}"
