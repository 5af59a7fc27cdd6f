"""Arguments and execution shared by the os and home commands."""
from typing import Dict, Tuple

from nixdeploy.core import (
    ConsoleLogger,
    RealFileSystemService,
    SubprocessExecutor,
    SystemEnvironmentProvider,
    SystemToolLocator,
    YamlConfigLoader,
)
from nixdeploy.deploy import (
    ConfigResolutionError,
    DeployRequest,
    ExecutorFactory,
    Orchestrator,
    RunReport,
    resolve_build_target,
)
from nixdeploy.deploy.activation import MODE_BUILD, PROFILE_NIXOS
from nixdeploy.deploy.safety import check_not_root
from nixdeploy.utils.checks import PreflightChecker
from nixdeploy.utils.config import (
    default_config_path,
    effective_environ,
    load_settings,
    migrate_legacy_flake_var,
    resolve_flag,
    resolve_option,
)
from nixdeploy.utils.update import update_flake_inputs


def add_common_arguments(parser):
    """Flags accepted by every deploy command"""
    parser.add_argument(
        'installable',
        nargs='?',
        help='Flake reference (e.g. /etc/nixos#myhost), or an attribute path with -f/-E'
    )
    source = parser.add_mutually_exclusive_group()
    source.add_argument(
        '--file', '-f',
        help='Build from a Nix file instead of a flake'
    )
    source.add_argument(
        '--expr', '-E',
        help='Build from a Nix expression instead of a flake'
    )
    parser.add_argument(
        '--bypass-root-check', '-R',
        action='store_true',
        help='Allow running as root'
    )
    parser.add_argument(
        '--specialisation', '-s',
        help='Activate this specialisation instead of the one recorded on the target'
    )
    parser.add_argument(
        '--no-specialisation', '-S',
        action='store_true',
        help='Ignore specialisations and activate the base configuration'
    )
    parser.add_argument(
        '--out-link', '-o',
        help='Path of the result symlink (default: ./result in build mode)'
    )
    parser.add_argument(
        '--ask', '-a',
        action='store_true',
        help='Ask for confirmation before activating'
    )
    parser.add_argument(
        '--update', '-u',
        action='store_true',
        help='Update all flake inputs before building'
    )
    parser.add_argument(
        '--update-input', '-U',
        action='append',
        default=[],
        metavar='INPUT',
        help='Update a single flake input (repeatable)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Show debug output'
    )


def confirm_activation() -> bool:
    try:
        answer = input("Apply the configuration? [y/N] ")
    except EOFError:
        return False
    return answer.strip().lower() in ('y', 'yes')


def build_request(args, environ: Dict[str, str], profile_kind: str, flake_env_vars: Tuple[str, ...]) -> DeployRequest:
    """Turn parsed arguments plus environment fallbacks into a DeployRequest.

    Raises:
        ConfigResolutionError: If no configuration can be identified
    """
    target = resolve_build_target(args.installable, args.file, args.expr, environ, flake_env_vars)

    build_host = args.build_host
    target_host = None
    hostname = None
    if profile_kind == PROFILE_NIXOS:
        build_host = resolve_option(build_host, environ, 'build_host')
        target_host = resolve_option(getattr(args, 'target_host', None), environ, 'target_host')
        hostname = resolve_option(getattr(args, 'hostname', None), environ, 'hostname')

    return DeployRequest(
        target=target,
        mode=args.mode,
        build_host=build_host,
        target_host=target_host,
        bypass_root_check=resolve_flag(args.bypass_root_check, environ, 'bypass_root_check'),
        hostname=hostname,
        configuration=getattr(args, 'configuration', None),
        specialisation=args.specialisation,
        no_specialisation=args.no_specialisation,
        out_link=args.out_link,
        extra_args=list(getattr(args, 'extra_args', None) or []),
        install_bootloader=getattr(args, 'install_bootloader', False),
        backup_extension=getattr(args, 'backup_extension', None),
        profile_kind=profile_kind,
        confirm=confirm_activation if args.ask and args.mode != MODE_BUILD else None,
    )


def print_summary(report: RunReport, logger) -> None:
    artifact = report.artifact
    if report.mode == MODE_BUILD:
        where = f" -> {artifact.out_link}" if artifact.out_link else ""
        logger.info(f"Built {artifact.path}{where}")
    elif report.activated:
        spec = f" (specialisation {report.specialisation})" if report.specialisation else ""
        logger.info(f"Activated {artifact.path}{spec} with {report.mode}")


def execute_deploy(args, profile_kind: str, flake_env_vars: Tuple[str, ...]) -> int:
    """Resolve configuration, check for root, run preflight checks and the deployment.

    Returns:
        Process exit code
    """
    logger = ConsoleLogger(verbose=args.verbose)
    env_provider = SystemEnvironmentProvider()
    filesystem = RealFileSystemService()
    process = SubprocessExecutor()

    try:
        environ = migrate_legacy_flake_var(env_provider.get_environ(), logger)
        config_path = default_config_path(environ, env_provider.get_home())
        settings = load_settings(YamlConfigLoader(filesystem), filesystem, config_path, logger)
        environ = effective_environ(environ, settings)

        request = build_request(args, environ, profile_kind, flake_env_vars)

        # Before any nix command, flake update included
        guard = check_not_root(env_provider, request.bypass_root_check)
        if not guard.success:
            logger.error(str(guard.error))
            return guard.error.exit_code

        if not resolve_flag(False, environ, 'no_checks'):
            PreflightChecker(process, SystemToolLocator(), logger).run(request.target)

        if args.update or args.update_input:
            update_flake_inputs(request.target, args.update_input, process, logger)
    except ConfigResolutionError as e:
        logger.error(str(e))
        if e.diagnostic:
            logger.error(e.diagnostic)
        return e.exit_code

    orchestrator = Orchestrator(
        ExecutorFactory(process, env_provider, filesystem, logger),
        env_provider,
        logger,
    )
    report = orchestrator.run(request)
    if report.succeeded:
        print_summary(report, logger)
    return report.exit_code
