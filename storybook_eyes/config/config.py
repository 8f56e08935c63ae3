"""
Configuration Management for storybook-eyes
Defaults, config file and environment loading, validation and package.json inspection
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from storybook_eyes.exceptions import ConfigurationError
from storybook_eyes.models import ViewportSize
from storybook_eyes.utils.logger import get_logger

logger = get_logger("storybook_eyes.config")

DEFAULT_CONFIG_PATH = 'storybook-eyes.config.json'
ENV_PREFIX = 'STORYBOOK_EYES_'
SUPPORTED_STORYBOOK3_APPS = ['react', 'vue', 'react-native', 'angular', 'polymer']
SUPPORTED_STORYBOOK_VERSIONS = (2, 3)
# Lane count used when max_concurrency is 0 ("not limited")
DEFAULT_HEADLESS_CONCURRENCY = 10


class Capabilities(BaseModel):
    """Browser session capability descriptor: browser name plus launch options"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra='allow')

    browser_name: str = 'chromium'
    headless: bool = True
    args: List[str] = ['--disable-gpu']

    def launch_options(self) -> Dict[str, Any]:
        options = {'headless': self.headless, 'args': list(self.args)}
        options.update(self.model_extra or {})
        return options


class Config(BaseModel):
    """Run configuration; keys accepted in snake_case or camelCase"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    app_name: Optional[str] = None
    viewport_size: Optional[List[ViewportSize]] = [
        ViewportSize(800, 600),
        ViewportSize(1200, 720),
    ]

    # Number of parallel browsers, 0 means not limited
    max_concurrency: Optional[int] = 0

    # Storybook
    storybook_app: Optional[str] = None
    storybook_version: Optional[int] = None
    storybook_config_dir: str = '.storybook'
    storybook_static_dir: Optional[str] = None

    # Static build mode
    use_static_build: bool = False
    skip_storybook_build: bool = True
    storybook_output_dir: str = 'storybook-static'

    # Dev server mode
    storybook_address: Optional[str] = None
    storybook_port: int = 9001
    storybook_host: str = 'localhost'
    startup_timeout: float = 300.0

    # Browser
    selenium_address: Optional[str] = None
    capabilities: Capabilities = Capabilities()
    full_page_screenshot: bool = True

    # Bundle fetching
    fetch_retries: int = 3
    fetch_retry_delay: float = 1.0
    fetch_timeout: float = 10.0

    # Local diff engine
    baseline_dir: str = '.storybook-eyes'

    # Logging
    show_logs: Union[bool, str] = True
    show_storybook_output: bool = False

    @field_validator('viewport_size', mode='before')
    @classmethod
    def validate_viewport_size(cls, v):
        if v is None:
            return v
        if isinstance(v, (dict, ViewportSize)):
            v = [v]
        sizes = []
        for size in v:
            if isinstance(size, ViewportSize):
                sizes.append(size)
                continue
            if not (isinstance(size, dict) and size.get('width') and size.get('height')):
                raise ValueError('ViewportSize object should contains width and height properties.')
            sizes.append(ViewportSize.from_dict(size))
        return sizes

    @field_validator('max_concurrency')
    @classmethod
    def validate_max_concurrency(cls, v):
        if v is None:
            raise ValueError('maxConcurrency should be defined.')
        if v < 0:
            raise ValueError('maxConcurrency should not be negative.')
        return v

    @field_validator('storybook_app')
    @classmethod
    def validate_storybook_app(cls, v):
        if v and v not in SUPPORTED_STORYBOOK3_APPS:
            raise ValueError(f"storybookApp should be one of [{','.join(SUPPORTED_STORYBOOK3_APPS)}].")
        return v

    @field_validator('storybook_version')
    @classmethod
    def validate_storybook_version(cls, v):
        if v and v not in SUPPORTED_STORYBOOK_VERSIONS:
            raise ValueError('storybookVersion should be 2 or 3.')
        return v

    @field_validator('storybook_address')
    @classmethod
    def normalize_storybook_address(cls, v):
        if v and not v.endswith('/'):
            v += '/'
        return v

    @field_validator('fetch_retries')
    @classmethod
    def validate_fetch_retries(cls, v):
        if v < 1:
            raise ValueError('fetchRetries should be at least 1.')
        return v

    @property
    def lane_limit(self) -> int:
        """Upper bound of concurrently running browser sessions"""
        return self.max_concurrency or DEFAULT_HEADLESS_CONCURRENCY

    def updated(self, **changes) -> "Config":
        """Return a validated copy with the given fields replaced"""
        data = self.model_dump()
        data.update(changes)
        return build_config(data)


def build_config(data: Dict[str, Any]) -> Config:
    """Validate raw settings into a Config, translating validation errors"""
    try:
        return Config.model_validate(data)
    except ValidationError as e:
        messages = '; '.join(_format_error(error) for error in e.errors())
        raise ConfigurationError(messages) from e


def _format_error(error: Dict[str, Any]) -> str:
    message = str(error.get('msg', ''))
    # pydantic prefixes messages from our validators with "Value error, "
    if message.startswith('Value error, '):
        return message[len('Value error, '):]
    location = '.'.join(str(part) for part in error.get('loc', ()))
    return f"{location}: {message}" if location else message


def _load_env_vars() -> Dict[str, Any]:
    """Collect STORYBOOK_EYES_* environment overrides"""
    values = {}
    for name in Config.model_fields:
        raw = os.environ.get(ENV_PREFIX + name.upper())
        if raw is None:
            continue
        # Lists and objects (viewport sizes, capabilities) are given as JSON
        if raw[:1] in ('[', '{'):
            try:
                values[name] = json.loads(raw)
                continue
            except json.JSONDecodeError:
                raise ConfigurationError(f"Environment variable {ENV_PREFIX + name.upper()} is not valid JSON")
        values[name] = raw
    return values


def _to_field_names(data: Dict[str, Any]) -> Dict[str, Any]:
    """Rename camelCase keys to field names so later sources replace them"""
    aliases = {field.alias: name for name, field in Config.model_fields.items() if field.alias}
    return {aliases.get(key, key): value for key, value in data.items()}


def load_config(config_path: Optional[str] = None, cwd: Optional[Union[str, Path]] = None) -> Config:
    """
    Load configuration: defaults, then the JSON config file, then environment.

    A missing default config file is fine; a missing explicitly given file is an error.
    A project-level .env is loaded before the environment is read.
    """
    cwd = Path(cwd or os.getcwd())

    env_file = cwd / '.env'
    if env_file.exists():
        load_dotenv(env_file)

    data: Dict[str, Any] = {}
    path = cwd / (config_path or DEFAULT_CONFIG_PATH)
    if path.exists():
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Configuration file {path} is not valid JSON: {e}") from e
        logger.info(f'Configuration was loaded from "{path}".')
    elif config_path and config_path != DEFAULT_CONFIG_PATH:
        raise ConfigurationError(f'Configuration file cannot be found in "{path}".')
    else:
        logger.info('No configuration file found. Use default.')

    data = _to_field_names(data)
    data.update(_load_env_vars())
    return build_config(data)


def retrieve_storybook_version(package_json: Dict[str, Any],
                               supported_apps: List[str] = SUPPORTED_STORYBOOK3_APPS) -> Tuple[str, int]:
    """Detect (app, major version) of the Storybook used by a project"""
    dependencies = package_json.get('dependencies') or {}
    dev_dependencies = package_json.get('devDependencies') or {}

    if '@kadira/storybook' in dependencies or '@kadira/storybook' in dev_dependencies:
        return 'react', 2

    for app in supported_apps:
        module = f'@storybook/{app}'
        if module in dependencies or module in dev_dependencies:
            return app, 3

    raise ConfigurationError('Storybook module not found in package.json!')


def resolve_package_settings(config: Config, cwd: Optional[Union[str, Path]] = None) -> Config:
    """Fill app_name, storybook_app and storybook_version from package.json"""
    package_json_path = Path(cwd or os.getcwd()) / 'package.json'
    if not package_json_path.exists():
        raise ConfigurationError(f"package.json not found on path: {package_json_path}")

    with open(package_json_path, 'r', encoding='utf-8') as f:
        package_json = json.load(f)

    app, version = retrieve_storybook_version(package_json)
    changes = {}
    if not config.app_name:
        changes['app_name'] = package_json.get('name')
    if not config.storybook_app:
        changes['storybook_app'] = app
    if not config.storybook_version:
        changes['storybook_version'] = version

    if changes:
        logger.debug(f"Settings resolved from package.json: {changes}")
        return config.updated(**changes)
    return config
