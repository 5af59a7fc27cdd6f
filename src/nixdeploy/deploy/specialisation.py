"""
SpecialisationResolver - pick the configuration variant to activate.

NixOS records the active specialisation in /etc/specialisation and
home-manager in ~/.local/share/home-manager/specialisation. Both files hold a
single line with the name. The marker is best-effort metadata: a missing,
empty or stale marker selects the base configuration.
"""

import posixpath
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from nixdeploy.core.protocols import Logger
from .base import HostExecutor, StageResult
from .builder import Artifact
from .exceptions import STAGE_SPECIALISATION
from .hosts import HostRef

SYSTEM_MARKER = "/etc/specialisation"
USER_MARKER = ".local/share/home-manager/specialisation"  # relative to $HOME

SPECIALISATION_DIR = "specialisation"


def user_marker_path(home: str) -> str:
    return posixpath.join(home, USER_MARKER)


@dataclass(frozen=True)
class TargetSnapshot:
    """
    What the resolver needs to know about the target.

    Attributes:
        marker: Raw marker file contents (None if missing or unreadable)
        available: Specialisation names the artifact ships
    """
    marker: Optional[str]
    available: Tuple[str, ...] = ()


def resolve_specialisation(
    snapshot: TargetSnapshot,
    explicit: Optional[str] = None,
    ignore: bool = False,
) -> Optional[str]:
    """
    Choose a specialisation name, or None for the base configuration.

    Args:
        snapshot: Marker contents and names available in the artifact
        explicit: --specialisation value, overrides the marker
        ignore: --no-specialisation, always base

    Returns:
        A name present in snapshot.available, or None
    """
    if ignore:
        return None

    name = explicit if explicit else (snapshot.marker or "").strip()
    if not name:
        return None

    if name not in snapshot.available:
        # Stale marker or a variant this artifact doesn't define
        return None

    return name


class SpecialisationResolver:
    """
    Reads the marker on the target and resolves it against the artifact.

    Args:
        executor_for: Returns the HostExecutor for a HostRef
        logger: Logging abstraction
    """

    def __init__(self, executor_for: Callable[[HostRef], HostExecutor], logger: Logger):
        self.executor_for = executor_for
        self.log = logger

    def snapshot(self, target: HostRef, artifact: Artifact, marker_path: str) -> TargetSnapshot:
        executor = self.executor_for(target)
        marker = executor.read_file(marker_path)
        available = executor.list_dir(posixpath.join(artifact.path, SPECIALISATION_DIR))
        return TargetSnapshot(marker=marker, available=tuple(available))

    def resolve(
        self,
        target: HostRef,
        artifact: Artifact,
        marker_path: str = SYSTEM_MARKER,
        explicit: Optional[str] = None,
        ignore: bool = False,
    ) -> StageResult:
        """
        Resolve the specialisation for target. Never fails.

        Returns:
            StageResult whose value is the name, or None for base
        """
        if ignore:
            return StageResult.ok(STAGE_SPECIALISATION, None)

        snapshot = self.snapshot(target, artifact, marker_path)
        name = resolve_specialisation(snapshot, explicit=explicit)

        requested = explicit or (snapshot.marker or "").strip()
        if requested and name is None:
            self.log.warning(
                f"Specialisation '{requested}' not found in {artifact.path}, using the base configuration"
            )
        elif name:
            self.log.info(f"Using specialisation '{name}'")

        return StageResult.ok(STAGE_SPECIALISATION, name)
