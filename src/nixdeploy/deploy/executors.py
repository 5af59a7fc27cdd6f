"""
Host executors - run commands on the deployer or over SSH.

LocalExecutor:  direct process invocation
SSHExecutor:    ``ssh [-p port] user@host <quoted command>``

Both satisfy the HostExecutor protocol in base.py.
"""

import shlex
import uuid
from typing import Dict, List, Optional

from nixdeploy.core.protocols import (
    EnvironmentProvider,
    FileSystemService,
    Logger,
    ProcessExecutor,
    ProcessResult,
)
from .hosts import HostRef

# ssh exits with 255 when the connection or authentication fails
SSH_CONNECTION_FAILED = 255

REMOTE_PID_DIR = "/tmp"


class LocalExecutor:
    """Runs commands on the deployer itself."""

    def __init__(
        self,
        host: HostRef,
        process_executor: ProcessExecutor,
        env_provider: EnvironmentProvider,
        filesystem: FileSystemService,
    ):
        self.host = host
        self.process = process_executor
        self.env = env_provider
        self.fs = filesystem

    def run(
        self,
        argv: List[str],
        stream: bool = False,
        elevate: bool = False,
        env: Optional[Dict[str, str]] = None,
    ) -> ProcessResult:
        cmd = list(argv)
        child_env = None
        if env:
            child_env = self.env.get_environ()
            child_env.update(env)
        if elevate and self.env.get_euid() != 0:
            # sudo scrubs the environment, so pass extras explicitly
            prefix = ["sudo"]
            if env:
                prefix += ["env"] + [f"{k}={v}" for k, v in sorted(env.items())]
            cmd = prefix + cmd
        return self.process.run(cmd, env=child_env, stream=stream)

    def is_reachable(self) -> bool:
        return True

    def read_file(self, path: str) -> Optional[str]:
        try:
            return self.fs.read_file(path)
        except OSError:
            return None

    def is_dir(self, path: str) -> bool:
        return self.fs.is_dir(path)

    def list_dir(self, path: str) -> List[str]:
        try:
            return self.fs.listdir(path)
        except OSError:
            return []

    def hostname(self) -> str:
        return self.env.get_hostname()


class SSHExecutor:
    """
    Runs commands on a remote host via the system ssh client.

    Requirements: key-based SSH (agent or key file) and known_hosts already
    set up by the operator. BatchMode is always on, so a missing key fails
    fast with exit 255 instead of prompting.

    Cancellation: every command is wrapped in a small shell that records its
    PID under /tmp. If the operator interrupts, the local ssh client is
    terminated and the recorded remote process tree is killed so no build or
    activation is left running orphaned.
    """

    def __init__(self, host: HostRef, process_executor: ProcessExecutor, logger: Logger):
        self.host = host
        self.process = process_executor
        self.log = logger

    def _ssh_cmd(self, command: str) -> List[str]:
        """Build SSH command with custom port."""
        cmd = ["ssh", "-o", "BatchMode=yes"]
        if self.host.port != 22:
            cmd += ["-p", str(self.host.port)]
        cmd += [self.host.destination, command]
        return cmd

    def _needs_sudo(self) -> bool:
        return self.host.user != "root"

    def _remote_command(self, argv: List[str], elevate: bool, env: Optional[Dict[str, str]]) -> str:
        cmd = list(argv)
        if env:
            cmd = ["env"] + [f"{k}={v}" for k, v in sorted(env.items())] + cmd
        if elevate and self._needs_sudo():
            cmd = ["sudo"] + cmd
        return shlex.join(cmd)

    def run(
        self,
        argv: List[str],
        stream: bool = False,
        elevate: bool = False,
        env: Optional[Dict[str, str]] = None,
    ) -> ProcessResult:
        command = self._remote_command(argv, elevate, env)
        pid_file = f"{REMOTE_PID_DIR}/nixdeploy-{uuid.uuid4().hex[:12]}.pid"
        wrapped = (
            f"echo $$ > {pid_file}; {command}; rc=$?; "
            f"rm -f {pid_file}; exit $rc"
        )
        self.log.debug(f"[{self.host.destination}] {command}")
        try:
            return self.process.run(self._ssh_cmd(wrapped), stream=stream)
        except KeyboardInterrupt:
            self._kill_remote(pid_file)
            raise

    def _kill_remote(self, pid_file: str) -> None:
        """Kill the remote process tree recorded in pid_file (best effort)."""
        kill = (
            f"pid=$(cat {pid_file} 2>/dev/null) && "
            f"pkill -TERM -P $pid 2>/dev/null; kill -TERM $pid 2>/dev/null; "
            f"rm -f {pid_file}; true"
        )
        self.log.warning(f"Interrupted, stopping remote command on {self.host.destination}")
        self.process.run(self._ssh_cmd(kill))

    def check_connection(self) -> ProcessResult:
        """
        Verify passwordless SSH works.

        Returns:
            ProcessResult of ``echo OK``; returncode 255 means the
            connection or authentication failed
        """
        cmd = [
            "ssh",
            "-o", "PasswordAuthentication=no",
            "-o", "BatchMode=yes",  # Fail immediately if password needed
            "-o", "ConnectTimeout=5",
        ]
        if self.host.port != 22:
            cmd += ["-p", str(self.host.port)]
        cmd += [self.host.destination, "echo OK"]
        return self.process.run(cmd)

    def is_reachable(self) -> bool:
        return self.check_connection().returncode == 0

    def read_file(self, path: str) -> Optional[str]:
        result = self.run(["cat", path])
        return result.stdout if result.ok else None

    def is_dir(self, path: str) -> bool:
        return self.run(["test", "-d", path]).ok

    def list_dir(self, path: str) -> List[str]:
        result = self.run(["ls", "-1", path])
        if not result.ok:
            return []
        return [line for line in result.stdout.splitlines() if line]

    def hostname(self) -> str:
        result = self.run(["uname", "-n"])
        if not result.ok:
            raise OSError(f"Could not read hostname of {self.host.destination}: {result.diagnostic()}")
        return result.stdout.strip()


def ssh_setup_hint(host: HostRef) -> str:
    """Operator instructions for fixing passwordless SSH to host."""
    port = f"-p {host.port} " if host.port != 22 else ""
    return (
        f"Passwordless SSH is not configured for {host.destination}\n\n"
        f"Setup Instructions:\n"
        f"  1. Copy your key:   ssh-copy-id {port}{host.destination}\n"
        f"  2. Test it worked:  ssh {port}{host.destination} \"echo OK\"\n"
        f"     (should NOT ask for password)\n"
        f"  3. Make sure the host key is in ~/.ssh/known_hosts\n"
        f"  4. Re-run your nixdeploy command"
    )


class ExecutorFactory:
    """Create the right HostExecutor for a HostRef."""

    def __init__(
        self,
        process_executor: ProcessExecutor,
        env_provider: EnvironmentProvider,
        filesystem: FileSystemService,
        logger: Logger,
    ):
        self.process = process_executor
        self.env = env_provider
        self.fs = filesystem
        self.log = logger

    def __call__(self, host: HostRef):
        if host.is_local:
            return LocalExecutor(host, self.process, self.env, self.fs)
        return SSHExecutor(host, self.process, self.log)
