"""
End-to-end deployments over simulated machines.

Scenario: a laptop (deployer), a target server and a dedicated builder.
The flake defines config-1/2/3 with hostnames alpha/bravo/charlie.
"""

from nixdeploy.deploy import DeployRequest
from nixdeploy.deploy.exceptions import STAGE_GUARDING
from nixdeploy.deploy.installable import BuildTarget, KIND_FLAKE
from nixdeploy.deploy.orchestrator import STATE_DONE

FLAKE = "/srv/flake"


def config(name):
    return BuildTarget(KIND_FLAKE, FLAKE, ("nixosConfigurations", name))


def commands_on(world, address, since=0):
    return [argv for host, argv in world.commands[since:] if host == address]


class TestDeploymentScenario:
    """The full sequence of deployments, run in order."""

    def test_scenario(self, world, orchestrator_for):
        laptop = world.machines["laptop"]
        target = world.machines["target"]
        builder = world.machines["builder"]

        # 1. config-1, run locally on the target
        report = orchestrator_for(target).run(DeployRequest(target=config("config-1"), mode="switch"))

        assert report.state == STATE_DONE, report.failure
        assert report.transfer.copied is False
        assert target.hostname == "alpha"
        assert target.system_profile == world.out_path("config-1")
        assert world.copies == []

        # 2. config-2, built on the laptop, pushed to the target
        report = orchestrator_for(laptop).run(
            DeployRequest(target=config("config-2"), mode="switch", target_host="root@target")
        )

        assert report.succeeded, report.failure
        assert report.transfer.copied is True
        assert target.hostname == "bravo"
        assert target.current_system == world.out_path("config-2")
        assert world.out_path("config-2") in laptop.store

        # 3. config-3, built on the builder, copied builder -> target
        report = orchestrator_for(laptop).run(
            DeployRequest(
                target=config("config-3"),
                mode="switch",
                build_host="builder",
                target_host="root@target",
            )
        )

        out3 = world.out_path("config-3")
        assert report.succeeded, report.failure
        assert target.hostname == "charlie"
        assert out3 in builder.built
        assert out3 not in laptop.store
        assert ("builder", "target", out3) in world.copies

        # 4. config-2 again, built on the target itself: nothing to transfer
        copies_before = len(world.copies)
        report = orchestrator_for(laptop).run(
            DeployRequest(
                target=config("config-2"),
                mode="switch",
                build_host="root@target",
                target_host="root@target",
            )
        )

        out2 = world.out_path("config-2")
        assert report.succeeded, report.failure
        assert report.transfer.copied is False
        assert report.transfer.reason == "same host"
        assert all(path != out2 for _, _, path in world.copies[copies_before:])
        assert target.hostname == "bravo"

        # 5. build-only on the builder: target untouched, ./result on the laptop
        commands_before = len(world.commands)
        profile_before = target.system_profile
        report = orchestrator_for(laptop).run(
            DeployRequest(target=config("config-1"), mode="build", build_host="builder")
        )

        out1 = world.out_path("config-1")
        assert report.succeeded, report.failure
        assert not report.activated
        assert target.hostname == "bravo"
        assert target.system_profile == profile_before
        assert commands_on(world, "target", commands_before) == []
        assert out1 in laptop.store
        assert laptop.links["result"] == out1
        assert report.artifact.out_link == "result"


class TestProperties:

    def test_same_build_twice_moves_nothing(self, world, orchestrator_for):
        laptop = world.machines["laptop"]
        request = DeployRequest(target=config("config-2"), mode="switch", target_host="root@target")

        first = orchestrator_for(laptop).run(request)
        copies = len(world.copies)
        second = orchestrator_for(laptop).run(request)

        assert first.artifact == second.artifact
        assert second.transfer.copied is False
        assert second.transfer.reason == "already present"
        assert len(world.copies) == copies

    def test_root_without_bypass_never_builds(self, world, orchestrator_for):
        report = orchestrator_for(world.machines["laptop"], euid=0).run(
            DeployRequest(target=config("config-1"), mode="switch", target_host="root@target")
        )

        assert report.exit_code == 3
        assert report.failure.stage == STAGE_GUARDING
        assert world.commands == []

    def test_root_with_bypass(self, world, orchestrator_for):
        target = world.machines["target"]

        report = orchestrator_for(target, euid=0).run(
            DeployRequest(target=config("config-1"), mode="switch", bypass_root_check=True)
        )

        assert report.succeeded, report.failure
        assert target.hostname == "alpha"

    def test_marker_selects_specialisation(self, world, orchestrator_for):
        target = world.machines["target"]
        target.files["/etc/specialisation"] = "gaming\n"

        report = orchestrator_for(world.machines["laptop"]).run(
            DeployRequest(target=config("config-2"), mode="switch", target_host="root@target")
        )

        assert report.specialisation == "gaming"
        assert target.current_system == world.out_path("config-2") + "/specialisation/gaming"
        assert target.files["/etc/specialisation"] == "gaming\n"

    def test_stale_marker_activates_base(self, world, orchestrator_for):
        target = world.machines["target"]
        target.files["/etc/specialisation"] = "gaming\n"

        report = orchestrator_for(world.machines["laptop"]).run(
            DeployRequest(target=config("config-3"), mode="test", target_host="root@target")
        )

        assert report.succeeded
        assert report.specialisation is None
        assert target.current_system == world.out_path("config-3")

    def test_boot_does_not_activate(self, world, orchestrator_for):
        target = world.machines["target"]

        report = orchestrator_for(world.machines["laptop"]).run(
            DeployRequest(target=config("config-3"), mode="boot", target_host="root@target")
        )

        assert report.succeeded
        assert target.system_profile == world.out_path("config-3")
        assert target.current_system is None
        assert target.hostname == "installer"

    def test_unreachable_target_fails_transfer(self, world, orchestrator_for):
        world.machines["target"].reachable = False
        laptop = world.machines["laptop"]

        report = orchestrator_for(laptop).run(
            DeployRequest(target=config("config-2"), mode="switch", target_host="root@target")
        )

        assert report.exit_code == 5
        assert report.completed_stages()[-1] == "building"
        assert world.out_path("config-2") in laptop.store

    def test_unreachable_build_host_fails_build(self, world, orchestrator_for):
        world.machines["builder"].reachable = False

        report = orchestrator_for(world.machines["laptop"]).run(
            DeployRequest(target=config("config-1"), mode="switch", build_host="builder", target_host="root@target")
        )

        assert report.exit_code == 4
        assert "ssh-copy-id" in report.failure.error.diagnostic

    def test_unknown_configuration_fails_build(self, world, orchestrator_for):
        report = orchestrator_for(world.machines["laptop"]).run(
            DeployRequest(target=config("config-9"), mode="switch", target_host="root@target")
        )

        assert report.exit_code == 4

    def test_hostname_selects_configuration(self, world, orchestrator_for):
        target = world.machines["target"]
        target.hostname = "config-1"

        report = orchestrator_for(world.machines["laptop"]).run(
            DeployRequest(target=BuildTarget(KIND_FLAKE, FLAKE), mode="switch", target_host="root@target")
        )

        assert report.succeeded, report.failure
        assert target.hostname == "alpha"
