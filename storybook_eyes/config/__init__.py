from storybook_eyes.config.config import Config, build_config, load_config, resolve_package_settings

__all__ = ["Config", "build_config", "load_config", "resolve_package_settings"]
