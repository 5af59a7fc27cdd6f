"""Unit tests for ArtifactBuilder."""
from unittest.mock import Mock

from nixdeploy.core.protocols import ProcessResult
from nixdeploy.deploy.builder import Artifact, ArtifactBuilder, nix_sshopts, parse_out_path
from nixdeploy.deploy.exceptions import BuildFailure
from nixdeploy.deploy.hosts import local_host, parse_host
from nixdeploy.deploy.installable import BuildTarget, KIND_FLAKE

OUT = "/nix/store/3h1b6nn2x9h6x-nixos-system-web01-24.11"
DRV = "/nix/store/8k2c1xh0a7-nixos-system-web01-24.11.drv"
TARGET = BuildTarget(KIND_FLAKE, "/etc/nixos", ("nixosConfigurations", "web01", "config", "system", "build", "toplevel"))


def ok(stdout=""):
    return ProcessResult(0, stdout, "")


def fail(returncode=1, stderr="error: boom"):
    return ProcessResult(returncode, "", stderr)


class TestParseOutPath:

    def test_last_store_path(self):
        assert parse_out_path(f"warning: dirty tree\n{OUT}\n") == OUT

    def test_no_store_path(self):
        assert parse_out_path("nothing here\n") is None


class TestNixSshopts:

    def test_default_port_needs_nothing(self):
        assert nix_sshopts(parse_host("root@web01", "target")) is None
        assert nix_sshopts(local_host("target")) is None

    def test_custom_port(self):
        assert nix_sshopts(parse_host("root@web01:2222", "target")) == {"NIX_SSHOPTS": "-p 2222"}


class TestArtifactEquality:

    def test_same_path_is_same_artifact(self):
        a = Artifact(OUT, built_on=local_host("build"))
        b = Artifact(OUT, built_on=parse_host("builder", "build"), out_link="result")

        assert a == b


class TestLocalBuild:

    def setup_method(self):
        self.local = Mock()
        self.builder = ArtifactBuilder(lambda host: self.local, Mock())
        self.host = local_host("build")

    def test_builds_with_out_link(self):
        self.local.run.return_value = ok(OUT + "\n")

        result = self.builder.build(TARGET, self.host, local_host("deployer"), out_link="result")

        assert result.success
        assert result.value == Artifact(OUT)
        assert result.value.out_link == "result"
        cmd = self.local.run.call_args[0][0]
        assert cmd[:3] == ["nix", "build", "/etc/nixos#nixosConfigurations.web01.config.system.build.toplevel"]
        assert ["--out-link", "result"] == cmd[3:5]
        assert "--print-out-paths" in cmd
        assert self.local.run.call_args[1]["stream"] is True

    def test_no_link(self):
        self.local.run.return_value = ok(OUT)

        self.builder.build(TARGET, self.host, local_host("deployer"))

        assert "--no-link" in self.local.run.call_args[0][0]

    def test_extra_args_appended(self):
        self.local.run.return_value = ok(OUT)

        self.builder.build(TARGET, self.host, local_host("deployer"), extra_args=["--show-trace"])

        assert self.local.run.call_args[0][0][-1] == "--show-trace"

    def test_failure_carries_diagnostic(self):
        self.local.run.return_value = fail(stderr="error: undefined variable 'foo'")

        result = self.builder.build(TARGET, self.host, local_host("deployer"))

        assert not result.success
        assert isinstance(result.error, BuildFailure)
        assert "undefined variable 'foo'" in result.error.diagnostic

    def test_missing_out_path_fails(self):
        self.local.run.return_value = ok("")

        result = self.builder.build(TARGET, self.host, local_host("deployer"))

        assert isinstance(result.error, BuildFailure)

    def test_rebuild_yields_same_artifact(self):
        self.local.run.return_value = ok(OUT)

        first = self.builder.build(TARGET, self.host, local_host("deployer"))
        second = self.builder.build(TARGET, self.host, local_host("deployer"))

        assert first.value == second.value


class TestRemoteBuild:

    def setup_method(self):
        self.deployer = local_host("deployer")
        self.build_host = parse_host("builder:2222", "build")
        self.local = Mock()
        self.remote = Mock()
        executors = {self.deployer: self.local, self.build_host: self.remote}
        self.builder = ArtifactBuilder(lambda host: executors[host], Mock())

    def test_eval_copy_build(self):
        self.local.run.side_effect = [ok(DRV), ok()]
        self.remote.run.return_value = ok(OUT + "\n")

        result = self.builder.build(TARGET, self.build_host, self.deployer, out_link="ignored")

        assert result.success
        assert result.value.path == OUT
        assert result.value.built_on == self.build_host
        assert result.value.out_link is None

        eval_cmd = self.local.run.call_args_list[0][0][0]
        assert eval_cmd[:3] == ["nix", "eval", "--raw"]
        assert eval_cmd[3].endswith(".toplevel.drvPath")

        copy_call = self.local.run.call_args_list[1]
        assert copy_call[0][0] == ["nix-copy-closure", "--to", "builder", DRV]
        assert copy_call[1]["env"] == {"NIX_SSHOPTS": "-p 2222"}

        assert self.remote.run.call_args[0][0][:3] == ["nix", "build", f"{DRV}^*"]

    def test_eval_failure(self):
        self.local.run.return_value = fail(stderr="error: attribute 'web01' missing")

        result = self.builder.build(TARGET, self.build_host, self.deployer)

        assert isinstance(result.error, BuildFailure)
        assert "attribute 'web01' missing" in result.error.diagnostic
        self.remote.run.assert_not_called()

    def test_unreachable_build_host_gets_ssh_hint(self):
        self.local.run.side_effect = [ok(DRV), fail(255, "ssh: connect to host builder port 2222: Connection refused")]

        result = self.builder.build(TARGET, self.build_host, self.deployer)

        assert isinstance(result.error, BuildFailure)
        assert "ssh-copy-id -p 2222 builder" in result.error.diagnostic

    def test_remote_build_failure(self):
        self.local.run.side_effect = [ok(DRV), ok()]
        self.remote.run.return_value = fail(stderr="builder for '...' failed")

        result = self.builder.build(TARGET, self.build_host, self.deployer)

        assert isinstance(result.error, BuildFailure)
        assert "builder" in str(result.error)


class TestLinkResult:

    def test_links_copied_artifact(self):
        local = Mock()
        local.run.return_value = ok()
        builder = ArtifactBuilder(lambda host: local, Mock())

        result = builder.link_result(Artifact(OUT), local_host("deployer"), "result")

        assert result.success
        assert result.value.out_link == "result"
        local.run.assert_called_once_with(["nix", "build", "--out-link", "result", OUT])
