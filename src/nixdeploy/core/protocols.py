"""Protocol definitions for dependency injection.

This module defines Protocol-based abstractions for all external dependencies
of the deployment core: console output, child processes, the process
environment, the local filesystem and configuration files.

Protocols use structural typing, so any class implementing these methods
satisfies the Protocol without explicit inheritance. Tests substitute
``Mock(spec=...)`` objects or small fakes.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol, Dict, Any, Optional, List, Union


@dataclass
class ProcessResult:
    """Outcome of one finished child process.

    Attributes:
        returncode: Exit status (negative when killed by a signal)
        stdout: Captured standard output, decoded as UTF-8
        stderr: Captured standard error, decoded as UTF-8
    """
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def diagnostic(self) -> str:
        """Best available error text: stderr, else stdout."""
        text = self.stderr.strip() or self.stdout.strip()
        return text or f"exit code {self.returncode}"


class Logger(Protocol):
    """Abstraction for logging operations.

    Replaces direct print() statements throughout the codebase.
    """

    def info(self, message: str) -> None:
        """Log informational message."""
        ...

    def warning(self, message: str) -> None:
        """Log warning message."""
        ...

    def error(self, message: str) -> None:
        """Log error message."""
        ...

    def debug(self, message: str) -> None:
        """Log debug message."""
        ...


class FileSystemService(Protocol):
    """Abstraction for local filesystem reads."""

    def exists(self, path: Union[str, Path]) -> bool:
        """Check if path exists."""
        ...

    def is_dir(self, path: Union[str, Path]) -> bool:
        """Check if path is a directory."""
        ...

    def read_file(self, path: Union[str, Path]) -> str:
        """Read entire file as string."""
        ...

    def listdir(self, path: Union[str, Path]) -> List[str]:
        """Names of the entries in a directory."""
        ...


class ProcessExecutor(Protocol):
    """Abstraction for process execution.

    Wraps subprocess.Popen so the deployment core can be tested without
    spawning nix or ssh.
    """

    def run(
        self,
        cmd: List[str],
        env: Optional[Dict[str, str]] = None,
        stream: bool = False,
    ) -> ProcessResult:
        """Run a command to completion.

        Args:
            cmd: Argument vector
            env: Full environment for the child (None inherits ours)
            stream: Echo the child's stderr to the terminal while capturing it

        Raises:
            KeyboardInterrupt: After terminating the child on operator interrupt
        """
        ...


class EnvironmentProvider(Protocol):
    """Abstraction for process identity and environment access."""

    def get_environ(self) -> Dict[str, str]:
        """Get copy of environment variables."""
        ...

    def get_euid(self) -> int:
        """Effective user id of this process."""
        ...

    def get_user(self) -> str:
        """Login name of the invoking user."""
        ...

    def get_home(self) -> str:
        """Home directory of the invoking user."""
        ...

    def get_hostname(self) -> str:
        """Hostname of this machine."""
        ...


class ToolLocator(Protocol):
    """Abstraction for external tool discovery (nix, ssh, sudo)."""

    def find_tool(self, tool_name: str) -> Optional[str]:
        """Find tool in PATH and return absolute path, or None if not found."""
        ...

    def has_tool(self, tool_name: str) -> bool:
        """Check if tool exists in PATH."""
        ...


class ConfigLoader(Protocol):
    """Abstraction for configuration file loading.

    Wraps YAML loading to enable testing with mock configurations
    without requiring actual config files.
    """

    def load_yaml(self, path: str) -> Dict[str, Any]:
        """Load YAML file and return parsed dictionary."""
        ...
