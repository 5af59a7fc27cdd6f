"""Configuration file and environment fallbacks.

Precedence for every option: command-line flag, then environment variable,
then the YAML config file, then the built-in default.

Example ``~/.config/nixdeploy/config.yaml``::

    flake: /etc/nixos
    target_host: root@192.168.1.20
    bypass_root_check: false
"""
import os
from typing import Any, Dict, Optional

import yaml

from nixdeploy.core.protocols import ConfigLoader, FileSystemService, Logger
from nixdeploy.deploy.exceptions import ConfigResolutionError

CONFIG_ENV_VAR = 'NIXDEPLOY_CONFIG'

# config file key -> environment variable
ENV_VARS = {
    'flake': 'NIXDEPLOY_FLAKE',
    'file': 'NIXDEPLOY_FILE',
    'attr': 'NIXDEPLOY_ATTR',
    'build_host': 'NIXDEPLOY_BUILD_HOST',
    'target_host': 'NIXDEPLOY_TARGET_HOST',
    'hostname': 'NIXDEPLOY_HOSTNAME',
    'bypass_root_check': 'NIXDEPLOY_BYPASS_ROOT_CHECK',
    'no_checks': 'NIXDEPLOY_NO_CHECKS',
}

TRUTHY = ('1', 'true', 'yes', 'on')


def default_config_path(environ: Dict[str, str], home: str) -> str:
    """$NIXDEPLOY_CONFIG, else $XDG_CONFIG_HOME/nixdeploy/config.yaml, else ~/.config/..."""
    if environ.get(CONFIG_ENV_VAR):
        return environ[CONFIG_ENV_VAR]
    config_home = environ.get('XDG_CONFIG_HOME') or os.path.join(home, '.config')
    return os.path.join(config_home, 'nixdeploy', 'config.yaml')


def load_settings(
    config_loader: ConfigLoader,
    filesystem: FileSystemService,
    path: str,
    logger: Logger,
) -> Dict[str, Any]:
    """Load the config file at path; a missing file yields no settings.

    Raises:
        ConfigResolutionError: If the file is not valid YAML or not a mapping
    """
    if not filesystem.exists(path):
        return {}

    try:
        settings = config_loader.load_yaml(path)
    except yaml.YAMLError as e:
        raise ConfigResolutionError(f"Invalid YAML in {path}: {e}")

    if not isinstance(settings, dict):
        raise ConfigResolutionError(f"{path} must contain a mapping of settings")

    for key in list(settings):
        if key not in ENV_VARS:
            logger.warning(f"Ignoring unknown setting '{key}' in {path}")
            del settings[key]

    logger.debug(f"Loaded settings from {path}: {sorted(settings)}")
    return settings


def migrate_legacy_flake_var(environ: Dict[str, str], logger: Logger) -> Dict[str, str]:
    """Honour a bare FLAKE variable as NIXDEPLOY_FLAKE, with a warning.

    Returns:
        A copy of environ with NIXDEPLOY_FLAKE filled in when applicable
    """
    environ = dict(environ)
    if environ.get('FLAKE') and not environ.get('NIXDEPLOY_FLAKE'):
        environ['NIXDEPLOY_FLAKE'] = environ['FLAKE']
        if not (environ.get('NIXDEPLOY_OS_FLAKE') or environ.get('NIXDEPLOY_HOME_FLAKE')):
            logger.warning("FLAKE is deprecated for nixdeploy, set NIXDEPLOY_FLAKE instead")
    return environ


def effective_environ(environ: Dict[str, str], settings: Dict[str, Any]) -> Dict[str, str]:
    """Environment with config-file values filled in where variables are unset."""
    merged = {}
    for key, var in ENV_VARS.items():
        value = settings.get(key)
        if value is None:
            continue
        if isinstance(value, bool):
            value = '1' if value else '0'
        merged[var] = str(value)
    merged.update({k: v for k, v in environ.items() if v != ''})
    return merged


def resolve_option(cli_value: Optional[str], environ: Dict[str, str], key: str) -> Optional[str]:
    """CLI value if given, else the variable for key (config already merged in)."""
    if cli_value:
        return cli_value
    return environ.get(ENV_VARS[key]) or None


def resolve_flag(cli_value: bool, environ: Dict[str, str], key: str) -> bool:
    if cli_value:
        return True
    return environ.get(ENV_VARS[key], '').strip().lower() in TRUTHY
