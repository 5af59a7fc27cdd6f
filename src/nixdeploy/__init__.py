"""
nixdeploy - Build and activate NixOS and home-manager configurations

Builds on the local machine or a remote build host, copies the closure to
the target host and activates it there.
"""
import argparse
import sys

__version__ = "0.1.0"


def split_extra_args(argv):
    """Split argv at the first ``--``; everything after goes to nix."""
    if '--' in argv:
        index = argv.index('--')
        return argv[:index], argv[index + 1:]
    return argv, []


def main(argv=None):
    """Main CLI entry point"""
    from nixdeploy.commands import nixos, home

    parser = argparse.ArgumentParser(
        prog='nixdeploy',
        description='nixdeploy: build and activate NixOS and home-manager configurations',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  nixdeploy os switch /etc/nixos                          # Build and switch locally
  nixdeploy os boot .#web --target-host root@web.lan      # Build here, activate there
  nixdeploy os switch . --build-host builder --target-host root@web.lan
  nixdeploy os build . --build-host builder               # Remote build, ./result here
  nixdeploy home switch ~/dotfiles                        # home-manager switch
  nixdeploy os switch . -- --show-trace                   # Extra nix arguments
        '''
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    # OS command
    os_parser = subparsers.add_parser('os', help='Deploy a NixOS configuration')
    nixos.setup_parser(os_parser)

    # Home command
    home_parser = subparsers.add_parser('home', help='Deploy a home-manager configuration')
    home.setup_parser(home_parser)

    own_args, extra_args = split_extra_args(sys.argv[1:] if argv is None else list(argv))
    args = parser.parse_args(own_args)
    args.extra_args = extra_args

    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Dispatch to command handler
    try:
        if args.command == 'os':
            sys.exit(nixos.execute(args))
        elif args.command == 'home':
            sys.exit(home.execute(args))
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if getattr(args, 'verbose', False):
            import traceback
            traceback.print_exc()
        sys.exit(1)
