"""
Configuration loader with validation using Pydantic.
Supports environment variable substitution for sensitive values.
"""

import os
import re
import yaml
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel, Field, validator

from ..processors.inventory import SourceName
from ..processors.reconciliation import Comparison, parse_comparison


def _validate_url(v: str, name: str) -> str:
    if not v.startswith(('http://', 'https://')):
        raise ValueError(f'{name} must start with http:// or https://')
    return v.rstrip('/')


class DirectoryConfig(BaseModel):
    """Active Directory (LDAP) configuration."""
    enabled: bool = True
    host: str
    base_dn: str
    search_base_template: Optional[str] = None
    port: Optional[int] = None
    use_ssl: bool = True
    active_days: int = 30
    exclude_disabled: bool = True
    page_size: int = 500
    timeout: int = 30
    username_env: str = "AD_BIND_USER"
    secret_env: str = "AD_BIND_PASSWORD"

    @validator('active_days')
    def validate_active_days(cls, v):
        if v < 1:
            raise ValueError('active_days must be at least 1')
        return v

    @validator('search_base_template')
    def validate_template(cls, v):
        if v and '{organization}' not in v:
            raise ValueError('search_base_template must contain {organization}')
        return v


class EndpointProtectionConfig(BaseModel):
    """Endpoint protection console configuration."""
    enabled: bool = True
    console_url: str
    page_size: int = 1000
    include_decommissioned: bool = False
    verify_ssl: bool = True
    max_concurrent_requests: int = 4
    timeout: int = 30
    secret_env: str = "S1_API_TOKEN"

    @validator('console_url')
    def validate_console_url(cls, v):
        return _validate_url(v, 'Console URL')


class RmmConfig(BaseModel):
    """RMM platform configuration."""
    enabled: bool = True
    instance_url: str
    scope: str = "monitoring"
    page_size: int = 1000
    verify_ssl: bool = True
    max_concurrent_requests: int = 4
    timeout: int = 30
    username_env: str = "NINJA_CLIENT_ID"
    secret_env: str = "NINJA_CLIENT_SECRET"

    @validator('instance_url')
    def validate_instance_url(cls, v):
        return _validate_url(v, 'Instance URL')


class FilteringConfig(BaseModel):
    """Organization filter shared by all sources."""
    organization: str

    @validator('organization')
    def validate_organization(cls, v):
        if not v or not v.strip():
            raise ValueError('organization must not be empty')
        return v.strip()


class NormalizationConfig(BaseModel):
    """Hostname normalization configuration."""
    strip_domain: bool = False


class RunConfig(BaseModel):
    """Run behaviour."""
    source_timeout: float = 300
    parallel_fetch: bool = True
    abort_on_source_failure: bool = False
    comparisons: List[str] = ["directory:rmm", "rmm:endpoint_protection"]

    @validator('comparisons')
    def validate_comparisons(cls, v):
        if not v:
            raise ValueError('at least one comparison is required')
        for item in v:
            parse_comparison(item)
        return v

    def get_comparisons(self) -> List[Comparison]:
        return [parse_comparison(item) for item in self.comparisons]


class OutputConfig(BaseModel):
    """Output configuration."""
    base_path: str = "./outputs"
    extracts_folder: str = "extracts"
    reports_folder: str = "reports"
    create_date_subfolder: bool = True
    file_prefix: str = "inventory_reconciliation"
    export_csv: bool = True
    export_inventories: bool = True


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    file: str = "./logs/inventory_recon.log"
    max_size_mb: int = 50
    backup_count: int = 7
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    @validator('level')
    def validate_level(cls, v):
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'Log level must be one of: {valid_levels}')
        return v.upper()


class BrandingConfig(BaseModel):
    """Branding configuration for PDF reports."""
    company: str = "Managed Services"
    primary_color: str = "#1F4E79"
    secondary_color: str = "#000000"
    accent_color: str = "#C00000"
    footer_text: str = "Confidential - Internal Use Only"


class RetryConfig(BaseModel):
    """Caller-side retry configuration for source fetches."""
    max_attempts: int = 3
    initial_delay: float = 1
    backoff_multiplier: float = 2
    max_delay: float = 60

    @validator('max_attempts')
    def validate_max_attempts(cls, v):
        if v < 1:
            raise ValueError('max_attempts must be at least 1')
        return v


class ReportsConfig(BaseModel):
    """Report generation configuration."""
    generate: dict = Field(default_factory=lambda: {
        'excel': True,
        'pdf_summary': True
    })
    top_n_items: int = 50


class AppConfig(BaseModel):
    """Main application configuration."""
    filtering: FilteringConfig
    directory: Optional[DirectoryConfig] = None
    endpoint_protection: Optional[EndpointProtectionConfig] = None
    rmm: Optional[RmmConfig] = None
    normalization: NormalizationConfig = NormalizationConfig()
    run: RunConfig = RunConfig()
    output: OutputConfig = OutputConfig()
    logging: LoggingConfig = LoggingConfig()
    branding: BrandingConfig = BrandingConfig()
    retry: RetryConfig = RetryConfig()
    reports: ReportsConfig = ReportsConfig()

    def source_config(self, source: SourceName):
        return getattr(self, source.value)

    def enabled_sources(self) -> List[SourceName]:
        """Sources with a configuration section that is not disabled."""
        return [
            source for source in SourceName
            if self.source_config(source) is not None
            and self.source_config(source).enabled
        ]


def credential_env_vars(config: AppConfig) -> Dict[SourceName, Tuple[Optional[str], str]]:
    """Map each configured source to its (username, secret) environment variables."""
    env_vars = {}
    for source in SourceName:
        section = config.source_config(source)
        if section is None:
            continue
        env_vars[source] = (getattr(section, 'username_env', None), section.secret_env)
    return env_vars


def substitute_env_vars(value: str) -> str:
    """
    Substitute environment variables in a string.
    Format: ${VAR_NAME} or $VAR_NAME
    """
    if not isinstance(value, str):
        return value

    pattern = r'\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)'

    def replacer(match):
        var_name = match.group(1) or match.group(2)
        env_value = os.environ.get(var_name)
        if env_value is None:
            raise ValueError(f"Environment variable '{var_name}' is not set")
        return env_value

    return re.sub(pattern, replacer, value)


def process_dict(d: dict) -> dict:
    """Recursively process dictionary to substitute environment variables."""
    result = {}
    for key, value in d.items():
        if isinstance(value, dict):
            result[key] = process_dict(value)
        elif isinstance(value, list):
            result[key] = [
                process_dict(item) if isinstance(item, dict)
                else substitute_env_vars(item) if isinstance(item, str)
                else item
                for item in value
            ]
        elif isinstance(value, str):
            result[key] = substitute_env_vars(value)
        else:
            result[key] = value
    return result


def load_config(config_path: str = "config/config.yaml") -> AppConfig:
    """
    Load and validate configuration from YAML file.

    Args:
        config_path: Path to the configuration file

    Returns:
        Validated AppConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        ValueError: If environment variables are missing or validation fails
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_file, 'r') as f:
        raw_config = yaml.safe_load(f) or {}

    processed_config = process_dict(raw_config)

    return AppConfig(**processed_config)


def create_output_directories(config: AppConfig) -> tuple:
    """
    Create output directories based on configuration.

    Returns:
        Tuple of (extracts_path, reports_path)
    """
    from datetime import datetime

    base_path = Path(config.output.base_path)
    extracts_path = base_path / config.output.extracts_folder
    reports_path = base_path / config.output.reports_folder

    if config.output.create_date_subfolder:
        date_folder = datetime.now().strftime("%Y-%m-%d")
        extracts_path = extracts_path / date_folder
        reports_path = reports_path / date_folder

    extracts_path.mkdir(parents=True, exist_ok=True)
    reports_path.mkdir(parents=True, exist_ok=True)

    logs_path = Path(config.logging.file).parent
    logs_path.mkdir(parents=True, exist_ok=True)

    return extracts_path, reports_path
