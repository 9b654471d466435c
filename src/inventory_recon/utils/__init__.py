"""Utility modules for configuration, credentials and logging."""

from .config_loader import (
    load_config,
    create_output_directories,
    credential_env_vars,
    AppConfig
)
from .credentials import (
    Credentials,
    CredentialProvider,
    EnvironmentCredentialProvider,
    StaticCredentialProvider
)
from .logger import setup_logger, SecretMaskingFilter

__all__ = [
    'load_config',
    'create_output_directories',
    'credential_env_vars',
    'AppConfig',
    'Credentials',
    'CredentialProvider',
    'EnvironmentCredentialProvider',
    'StaticCredentialProvider',
    'setup_logger',
    'SecretMaskingFilter'
]
