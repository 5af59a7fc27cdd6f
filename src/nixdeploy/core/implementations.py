"""Production implementations of dependency injection protocols.

This module provides real implementations that wrap actual external
dependencies (console, subprocess, os, filesystem, YAML). These are used in
production code. For testing, use mocks or test doubles instead.
"""

import getpass
import os
import shutil
import socket
import subprocess
import sys
import threading
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List, Union

from nixdeploy.core.protocols import ProcessResult

# Seconds a terminated child gets before SIGKILL
TERMINATE_GRACE_SECONDS = 5


class ConsoleLogger:
    """Production logger that prints to console (stdout/stderr)."""

    def __init__(self, verbose: bool = False):
        self.verbose = verbose

    def info(self, message: str) -> None:
        """Print info message to stdout."""
        print(message)

    def warning(self, message: str) -> None:
        """Print warning message to stderr."""
        print(f"Warning: {message}", file=sys.stderr)

    def error(self, message: str) -> None:
        """Print error message to stderr."""
        print(f"Error: {message}", file=sys.stderr)

    def debug(self, message: str) -> None:
        """Print debug message to stdout (verbose mode only)."""
        if self.verbose:
            print(f"Debug: {message}")


class RealFileSystemService:
    """Production filesystem service using real pathlib operations."""

    def exists(self, path: Union[str, Path]) -> bool:
        return Path(path).exists()

    def is_dir(self, path: Union[str, Path]) -> bool:
        return Path(path).is_dir()

    def read_file(self, path: Union[str, Path]) -> str:
        with open(path, 'r') as f:
            return f.read()

    def listdir(self, path: Union[str, Path]) -> List[str]:
        return sorted(os.listdir(path))


def _pump(pipe, chunks: List[bytes], sink) -> None:
    """Copy a child's pipe into a buffer (and optionally a terminal) until EOF."""
    for line in iter(pipe.readline, b''):
        chunks.append(line)
        if sink is not None:
            sink.write(line)
            sink.flush()
    pipe.close()


class SubprocessExecutor:
    """Production process executor using real subprocess.Popen.

    Output is drained by one reader thread per pipe so a chatty child never
    blocks on a full pipe. With ``stream`` set the child's stderr (nix
    progress) reaches the terminal as it arrives; stdout is only captured,
    since it carries results such as store paths.
    """

    def run(
        self,
        cmd: List[str],
        env: Optional[Dict[str, str]] = None,
        stream: bool = False,
    ) -> ProcessResult:
        try:
            proc = subprocess.Popen(
                cmd,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=env,
            )
        except FileNotFoundError as e:
            return ProcessResult(returncode=127, stderr=f"{cmd[0]}: {e.strerror}")

        out_chunks: List[bytes] = []
        err_chunks: List[bytes] = []
        err_sink = sys.stderr.buffer if stream else None
        readers = [
            threading.Thread(target=_pump, args=(proc.stdout, out_chunks, None), daemon=True),
            threading.Thread(target=_pump, args=(proc.stderr, err_chunks, err_sink), daemon=True),
        ]
        for reader in readers:
            reader.start()

        try:
            returncode = proc.wait()
        except KeyboardInterrupt:
            self._terminate(proc)
            raise

        for reader in readers:
            reader.join()

        return ProcessResult(
            returncode=returncode,
            stdout=b''.join(out_chunks).decode('utf-8', errors='replace'),
            stderr=b''.join(err_chunks).decode('utf-8', errors='replace'),
        )

    @staticmethod
    def _terminate(proc: subprocess.Popen) -> None:
        """SIGTERM the child, escalating to SIGKILL after the grace period."""
        proc.terminate()
        try:
            proc.wait(timeout=TERMINATE_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            proc.kill()
            proc.wait()


class SystemEnvironmentProvider:
    """Production environment provider using real os and socket modules."""

    def get_environ(self) -> Dict[str, str]:
        return dict(os.environ)

    def get_euid(self) -> int:
        return os.geteuid()

    def get_user(self) -> str:
        return os.environ.get('USER') or getpass.getuser()

    def get_home(self) -> str:
        return os.path.expanduser('~')

    def get_hostname(self) -> str:
        return socket.gethostname()


class SystemToolLocator:
    """Production tool locator using real shutil.which."""

    def find_tool(self, tool_name: str) -> Optional[str]:
        return shutil.which(tool_name)

    def has_tool(self, tool_name: str) -> bool:
        return self.find_tool(tool_name) is not None


class YamlConfigLoader:
    """Production config loader using real YAML parser."""

    def __init__(self, filesystem: 'RealFileSystemService'):
        """Initialize with filesystem service for reading files."""
        self.fs = filesystem

    def load_yaml(self, path: str) -> Dict[str, Any]:
        """Load YAML file and return parsed dictionary (empty file -> {})."""
        content = self.fs.read_file(path)
        return yaml.safe_load(content) or {}
