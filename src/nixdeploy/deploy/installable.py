"""
BuildTarget - what to build, in the shape nix's new CLI understands.

Kinds (reference: https://nix.dev/manual/nix/latest/command-ref/new-cli/nix):
    flake   FLAKEREF[#ATTRPATH]      e.g. /etc/nixos#nixosConfigurations.box
    file    -f FILE [ATTRPATH]       e.g. -f '<nixpkgs/nixos>'
    expr    -E EXPR [ATTRPATH]
"""

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Tuple

from .exceptions import ConfigResolutionError

KIND_FLAKE = "flake"
KIND_FILE = "file"
KIND_EXPR = "expr"


def parse_attribute(s: str) -> List[str]:
    """Split an attribute path on dots, honouring double-quoted segments.

    >>> parse_attribute('foo."bar.baz".qux')
    ['foo', 'bar.baz', 'qux']
    """
    res = []
    if not s:
        return res

    current = ""
    in_quotes = False
    for ch in s:
        if ch == '"':
            in_quotes = not in_quotes
        elif ch == '.' and not in_quotes:
            res.append(current)
            current = ""
        else:
            current += ch
    if in_quotes:
        raise ConfigResolutionError(f"Unterminated quote in attribute path: {s}")
    res.append(current)
    return res


def join_attribute(attribute: List[str]) -> str:
    return ".".join(f'"{elem}"' if "." in elem else elem for elem in attribute)


@dataclass(frozen=True)
class BuildTarget:
    """
    A configuration source plus attribute path.

    Attributes:
        kind: flake, file or expr
        source: Flake reference, file path or expression text
        attribute: Attribute path segments (unquoted)
    """
    kind: str
    source: str
    attribute: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_flake(self) -> bool:
        return self.kind == KIND_FLAKE

    def with_attribute(self, *segments: str) -> 'BuildTarget':
        return replace(self, attribute=tuple(self.attribute) + tuple(segments))

    def to_args(self) -> List[str]:
        """Arguments identifying this target to ``nix build`` / ``nix eval``."""
        attr = join_attribute(list(self.attribute))
        if self.kind == KIND_FLAKE:
            return [f"{self.source}#{attr}"]
        if self.kind == KIND_FILE:
            return ["--file", self.source, attr]
        return ["--expr", self.source, attr]

    def __str__(self) -> str:
        attr = join_attribute(list(self.attribute))
        if self.kind == KIND_FLAKE:
            return f"{self.source}#{attr}"
        flag = "-f" if self.kind == KIND_FILE else "-E"
        return f"{flag} {self.source} {attr}".rstrip()


def _split_flake(ref: str) -> BuildTarget:
    reference, _, attr = ref.partition('#')
    return BuildTarget(KIND_FLAKE, reference, tuple(parse_attribute(attr)))


def resolve_build_target(
    installable: Optional[str],
    file: Optional[str],
    expr: Optional[str],
    environ: Dict[str, str],
    flake_env_vars: Tuple[str, ...] = ("NIXDEPLOY_FLAKE",),
) -> BuildTarget:
    """
    Resolve CLI arguments into a BuildTarget, falling back to the environment.

    Args:
        installable: Positional argument (flake ref, or attribute path with -f/-E)
        file: -f/--file value
        expr: -E/--expr value
        environ: Environment variables
        flake_env_vars: Flake variables to try in order (command-specific first)

    Raises:
        ConfigResolutionError: If nothing identifies a configuration
    """
    if file and expr:
        raise ConfigResolutionError("--file and --expr are mutually exclusive")

    if file:
        return BuildTarget(KIND_FILE, file, tuple(parse_attribute(installable or "")))

    if expr:
        return BuildTarget(KIND_EXPR, expr, tuple(parse_attribute(installable or "")))

    if installable:
        return _split_flake(installable)

    # Environment fallbacks
    for var in flake_env_vars:
        if environ.get(var):
            return _split_flake(environ[var])

    if environ.get("NIXDEPLOY_FILE"):
        return BuildTarget(
            KIND_FILE,
            environ["NIXDEPLOY_FILE"],
            tuple(parse_attribute(environ.get("NIXDEPLOY_ATTR", ""))),
        )

    raise ConfigResolutionError(
        "No configuration given.\n"
        "Pass a flake reference (e.g. /etc/nixos), -f <file>, or set NIXDEPLOY_FLAKE."
    )


def toplevel_for_nixos(target: BuildTarget, hostname: Optional[str]) -> BuildTarget:
    """Attribute path of the NixOS system derivation for target.

    A flake with no attribute selects ``nixosConfigurations.<hostname>``.
    """
    if target.is_flake and not target.attribute:
        if not hostname:
            raise ConfigResolutionError("A hostname is required to select from nixosConfigurations")
        target = target.with_attribute("nixosConfigurations", hostname)
    return target.with_attribute("config", "system", "build", "toplevel")


def toplevel_for_home(target: BuildTarget, configuration: Optional[str]) -> BuildTarget:
    """Attribute path of the home-manager activation package for target."""
    if target.is_flake and not target.attribute:
        if not configuration:
            raise ConfigResolutionError("A configuration name is required to select from homeConfigurations")
        target = target.with_attribute("homeConfigurations", configuration)
    return target.with_attribute("config", "home", "activationPackage")
