"""Build and activate NixOS configurations."""
from nixdeploy.commands.common import add_common_arguments, execute_deploy
from nixdeploy.deploy.activation import NIXOS_MODES, PROFILE_NIXOS

FLAKE_ENV_VARS = ('NIXDEPLOY_OS_FLAKE', 'NIXDEPLOY_FLAKE')


def setup_parser(parser):
    """Setup argument parser for os command"""
    parser.add_argument(
        'mode',
        choices=NIXOS_MODES,
        help='build: only build; switch: activate and make boot default; '
             'boot: boot default only; test: activate only; dry-activate: preview'
    )
    add_common_arguments(parser)
    parser.add_argument(
        '--build-host',
        metavar='USER@HOST[:PORT]',
        help='Build on this host over SSH (default: locally)'
    )
    parser.add_argument(
        '--target-host',
        metavar='USER@HOST[:PORT]',
        help='Activate on this host over SSH (default: locally)'
    )
    parser.add_argument(
        '--hostname', '-H',
        help='Select nixosConfigurations.<NAME> (default: the target\'s hostname)'
    )
    parser.add_argument(
        '--install-bootloader',
        action='store_true',
        help='Reinstall the bootloader (switch and boot only)'
    )


def execute(args):
    """Execute os command"""
    return execute_deploy(args, PROFILE_NIXOS, FLAKE_ENV_VARS)
