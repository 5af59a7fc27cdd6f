"""Build and activate home-manager configurations (activation is always local)."""
from nixdeploy.commands.common import add_common_arguments, execute_deploy
from nixdeploy.deploy.activation import HOME_MODES, PROFILE_HOME

FLAKE_ENV_VARS = ('NIXDEPLOY_HOME_FLAKE', 'NIXDEPLOY_FLAKE')


def setup_parser(parser):
    """Setup argument parser for home command"""
    parser.add_argument(
        'mode',
        choices=HOME_MODES,
        help='build: only build; switch: build and activate'
    )
    add_common_arguments(parser)
    parser.add_argument(
        '--configuration', '-c',
        help='Select homeConfigurations.<NAME> (default: user@hostname, then user)'
    )
    parser.add_argument(
        '--build-host',
        metavar='USER@HOST[:PORT]',
        help='Build on this host over SSH and copy the result back (default: locally)'
    )
    parser.add_argument(
        '--backup-extension', '-b',
        metavar='EXT',
        help='Back up files home-manager would overwrite, with this extension'
    )


def execute(args):
    """Execute home command"""
    return execute_deploy(args, PROFILE_HOME, FLAKE_ENV_VARS)
