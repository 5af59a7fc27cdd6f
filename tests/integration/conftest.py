"""
Simulated machines for end-to-end deployment tests.

Every command nixdeploy would hand to a real process goes through
SimulatedProcessExecutor instead. Local commands run against the machine the
operator sits at; ``ssh`` invocations are unwrapped and run against the
machine they address. Each machine keeps a Nix store, a system profile,
an activated system and a few files, so tests can assert on observable
host state instead of on command strings.
"""
import hashlib
import re
import shlex

import pytest

from nixdeploy.core.protocols import ProcessResult
from nixdeploy.deploy import ExecutorFactory, Orchestrator

STORE = "/nix/store"
SYSTEM_MARKER = "/etc/specialisation"

_WRAPPED_RE = re.compile(r'^echo \$\$ > (\S+); (.*); rc=\$\?; rm -f \S+; exit \$rc$', re.S)


def ok(stdout=""):
    return ProcessResult(0, stdout, "")


def fail(stderr, returncode=1):
    return ProcessResult(returncode, "", stderr)


class Machine:
    """One simulated NixOS host."""

    def __init__(self, address, hostname=None, reachable=True):
        self.address = address
        self.hostname = hostname or address
        self.reachable = reachable
        self.store = set()
        self.files = {}
        self.links = {}
        self.system_profile = None
        self.current_system = None
        self.built = []
        self.activations = []

    def __repr__(self):
        return f"Machine({self.address})"


class SimulatedWorld:
    """
    A set of machines plus the NixOS configurations a flake defines.

    Args:
        machines: Machines reachable by address
        configurations: name -> {"hostname": str, "specialisations": [str]}
    """

    def __init__(self, machines, configurations):
        self.machines = {m.address: m for m in machines}
        self.configurations = configurations
        self.commands = []
        self.copies = []

    # Store paths

    def out_path(self, config):
        digest = hashlib.sha1(config.encode()).hexdigest()[:32]
        return f"{STORE}/{digest}-nixos-system-{config}"

    def drv_path(self, config):
        return self.out_path(config) + ".drv"

    def config_of(self, path):
        for name in self.configurations:
            if path in (self.out_path(name), self.drv_path(name)):
                return name
        return None

    def _config_from_installable(self, installable):
        match = re.search(r'#nixosConfigurations\.([^.]+)\.config\.system\.build\.toplevel', installable)
        if match and match.group(1) in self.configurations:
            return match.group(1)
        return None

    # Host lookups

    def machine_for(self, destination):
        address = destination.split("@")[-1]
        if address.startswith("ssh://"):
            address = address[len("ssh://"):]
        return self.machines.get(address)

    def is_dir(self, machine, path):
        base, sep, rest = path.partition("/specialisation")
        config = self.config_of(base)
        if config is None or base not in machine.store:
            return False
        if not sep:
            return True
        specialisations = self.configurations[config].get("specialisations", [])
        if rest == "":
            return bool(specialisations)
        return rest.startswith("/") and rest[1:] in specialisations

    def list_dir(self, machine, path):
        if not path.endswith("/specialisation") or not self.is_dir(machine, path):
            return None
        config = self.config_of(path[:-len("/specialisation")])
        return sorted(self.configurations[config]["specialisations"])

    # Command interpretation

    def ssh(self, argv):
        i = 1
        login_user = None
        while argv[i].startswith("-"):
            i += 2 if argv[i] in ("-o", "-p") else 1
        destination, command = argv[i], argv[i + 1]
        if "@" in destination:
            login_user = destination.split("@")[0]
        machine = self.machine_for(destination)
        if machine is None or not machine.reachable:
            return fail(f"ssh: connect to host {destination} port 22: Connection refused", 255)
        if command == "echo OK":
            return ok("OK\n")
        match = _WRAPPED_RE.match(command)
        if not match:
            # PID-file cleanup after an interrupt
            return ok()
        sudo, env, inner = _strip_wrappers(shlex.split(match.group(2)))
        return self.execute(machine, inner, privileged=sudo or login_user == "root")

    def execute(self, machine, argv, privileged):
        self.commands.append((machine.address, argv))

        if argv[:3] == ["nix", "eval", "--raw"]:
            config = self._config_from_installable(argv[3])
            if config is None:
                return fail(f"error: flake does not provide attribute '{argv[3]}'")
            drv = self.drv_path(config)
            machine.store.add(drv)
            return ok(drv)

        if argv[:2] == ["nix", "build"]:
            return self._nix_build(machine, argv[2:])

        if argv[0] == "nix-copy-closure":
            direction, destination, path = argv[1:4]
            other = self.machine_for(destination)
            if other is None or not other.reachable:
                return fail(f"ssh: connect to host {destination}: Connection refused", 255)
            source, dest = (machine, other) if direction == "--to" else (other, machine)
            return self._copy(source, dest, path)

        if argv[:2] == ["nix", "copy"]:
            source = self.machine_for(argv[argv.index("--from") + 1])
            dest = self.machine_for(argv[argv.index("--to") + 1])
            return self._copy(source, dest, argv[-1])

        if argv[:2] == ["nix", "path-info"]:
            if argv[2] in machine.store:
                return ok(argv[2] + "\n")
            return fail(f"error: path '{argv[2]}' is not valid")

        if argv[0] == "nix-env":
            if not privileged:
                return fail("error: opening lock file '/nix/var/nix/profiles/system.lock': Permission denied")
            path = argv[argv.index("--set") + 1]
            if path not in machine.store:
                return fail(f"error: path '{path}' is not valid")
            machine.system_profile = path
            return ok()

        if argv[0].endswith("/bin/switch-to-configuration"):
            return self._switch(machine, argv[0][:-len("/bin/switch-to-configuration")], argv[1], privileged)

        if argv[0] == "cat":
            if argv[1] in machine.files:
                return ok(machine.files[argv[1]])
            return fail(f"cat: {argv[1]}: No such file or directory")

        if argv[:2] == ["test", "-d"]:
            return ok() if self.is_dir(machine, argv[2]) else fail("", 1)

        if argv[:2] == ["ls", "-1"]:
            entries = self.list_dir(machine, argv[2])
            if entries is None:
                return fail(f"ls: cannot access '{argv[2]}': No such file or directory", 2)
            return ok("".join(e + "\n" for e in entries))

        if argv == ["uname", "-n"]:
            return ok(machine.hostname + "\n")

        return fail(f"{argv[0]}: command not found", 127)

    def _nix_build(self, machine, args):
        if args[0] == "--out-link":
            link, path = args[1], args[2]
            if path not in machine.store:
                return fail(f"error: path '{path}' is not valid")
            machine.links[link] = path
            return ok()

        installable = args[0]
        if installable.endswith("^*"):
            drv = installable[:-2]
            if drv not in machine.store:
                return fail(f"error: path '{drv}' is not valid")
            out = drv[:-len(".drv")]
        else:
            config = self._config_from_installable(installable)
            if config is None:
                return fail(f"error: flake does not provide attribute '{installable}'")
            out = self.out_path(config)

        machine.store.add(out)
        machine.built.append(out)
        if "--out-link" in args:
            machine.links[args[args.index("--out-link") + 1]] = out
        return ok(out + "\n")

    def _copy(self, source, dest, path):
        if path not in source.store:
            return fail(f"error: path '{path}' is not valid on {source.address}")
        dest.store.add(path)
        self.copies.append((source.address, dest.address, path))
        return ok()

    def _switch(self, machine, profile, mode, privileged):
        if not privileged:
            return fail("switch-to-configuration: must be run as root")
        base, _, specialisation = profile.partition("/specialisation/")
        config = self.config_of(base)
        if base not in machine.store or config is None:
            return fail(f"{profile}/bin/switch-to-configuration: No such file or directory", 127)
        machine.activations.append((profile, mode))
        if mode in ("switch", "test"):
            machine.current_system = profile
            machine.hostname = self.configurations[config]["hostname"]
            if specialisation:
                machine.files[SYSTEM_MARKER] = specialisation + "\n"
            else:
                machine.files.pop(SYSTEM_MARKER, None)
        return ok("activating the configuration...\n")


def _strip_wrappers(argv):
    """Remove ``sudo`` and ``env K=V`` prefixes, returning (sudo, env, argv)."""
    sudo = False
    env = {}
    if argv and argv[0] == "sudo":
        sudo = True
        argv = argv[1:]
    if argv and argv[0] == "env":
        argv = argv[1:]
        while argv and "=" in argv[0] and not argv[0].startswith("/"):
            key, _, value = argv[0].partition("=")
            env[key] = value
            argv = argv[1:]
    return sudo, env, argv


class SimulatedProcessExecutor:
    """ProcessExecutor for the machine the operator is logged in to."""

    def __init__(self, world, local, euid):
        self.world = world
        self.local = local
        self.euid = euid

    def run(self, cmd, env=None, stream=False):
        if cmd[0] == "ssh":
            return self.world.ssh(cmd)
        sudo, _, argv = _strip_wrappers(list(cmd))
        return self.world.execute(self.local, argv, privileged=sudo or self.euid == 0)


class SimulatedEnvironment:

    def __init__(self, machine, euid):
        self.machine = machine
        self.euid = euid

    def get_environ(self):
        return {"PATH": "/run/current-system/sw/bin"}

    def get_euid(self):
        return self.euid

    def get_user(self):
        return "root" if self.euid == 0 else "alice"

    def get_home(self):
        return "/root" if self.euid == 0 else "/home/alice"

    def get_hostname(self):
        return self.machine.hostname


class SimulatedFileSystem:

    def __init__(self, world, machine):
        self.world = world
        self.machine = machine

    def exists(self, path):
        return str(path) in self.machine.files or self.is_dir(path)

    def is_dir(self, path):
        return self.world.is_dir(self.machine, str(path))

    def read_file(self, path):
        if str(path) not in self.machine.files:
            raise FileNotFoundError(str(path))
        return self.machine.files[str(path)]

    def listdir(self, path):
        entries = self.world.list_dir(self.machine, str(path))
        if entries is None:
            raise FileNotFoundError(str(path))
        return entries


class SilentLogger:
    """Logger that records messages for assertions."""

    def __init__(self):
        self.messages = []

    def info(self, message):
        self.messages.append(("info", message))

    def warning(self, message):
        self.messages.append(("warning", message))

    def error(self, message):
        self.messages.append(("error", message))

    def debug(self, message):
        self.messages.append(("debug", message))


def orchestrator_on(world, machine, euid=1000):
    """Orchestrator as run by an operator sitting at machine."""
    logger = SilentLogger()
    env = SimulatedEnvironment(machine, euid)
    process = SimulatedProcessExecutor(world, machine, euid)
    factory = ExecutorFactory(process, env, SimulatedFileSystem(world, machine), logger)
    return Orchestrator(factory, env, logger)


@pytest.fixture
def world():
    """Deployer laptop, a target server and a dedicated build machine."""
    machines = [
        Machine("laptop"),
        Machine("target", hostname="installer"),
        Machine("builder"),
    ]
    configurations = {
        "config-1": {"hostname": "alpha", "specialisations": []},
        "config-2": {"hostname": "bravo", "specialisations": ["gaming"]},
        "config-3": {"hostname": "charlie", "specialisations": []},
    }
    return SimulatedWorld(machines, configurations)


@pytest.fixture
def orchestrator_for(world):
    """orchestrator_for(machine, euid=1000) -> Orchestrator running on machine."""
    def make(machine, euid=1000):
        return orchestrator_on(world, machine, euid)
    return make
