"""
Runtime configuration loader

Reads the process environment once, at cold start, into a RuntimeConfig.
Values the host may omit fall back to defaults; the runtime API address is
the only value the runtime cannot start without.
"""

import os
from pathlib import Path
from typing import List, Mapping, Optional

from lambda_script_runtime.runtime.context import FunctionEnvironment

RUNTIME_API_VAR = 'AWS_LAMBDA_RUNTIME_API'
HANDLER_VAR = '_HANDLER'
TASK_ROOT_VAR = 'LAMBDA_TASK_ROOT'
VERBOSE_VAR = 'SCRIPT_RUNTIME_VERBOSE'

# Layer content is extracted here by the host
LAYER_MODULES_DIR = '/opt/modules'

TRUTHY = ('true', '1', 'yes', 'on')


class ConfigError(Exception):
    """Raised when required configuration is missing"""
    pass


class RuntimeConfig:
    """Load and hold runtime configuration"""

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        self.environ = os.environ if environ is None else environ
        self._load()

    def _load(self):
        """Load configuration from the environment"""
        env = self.environ

        self.runtime_api = env.get(RUNTIME_API_VAR, '').strip()
        self.handler = env.get(HANDLER_VAR, '')
        self.task_root = Path(env.get(TASK_ROOT_VAR) or os.getcwd())
        self.verbose = env.get(VERBOSE_VAR, '').strip().lower() in TRUTHY

        self.function_environment = FunctionEnvironment.from_environ(env)

    def validate(self) -> None:
        """
        Check the configuration the runtime can't start without.

        Raises:
            ConfigError: If the runtime API address is missing
        """
        if not self.runtime_api:
            raise ConfigError(f"{RUNTIME_API_VAR} is not set")

    @property
    def module_paths(self) -> List[Path]:
        """
        Directories searched for MODULE handlers, in order.

        The function package's modules/ directory wins over layer modules.
        """
        return [self.task_root / 'modules', Path(LAYER_MODULES_DIR)]

    def to_dict(self) -> dict:
        return {
            'runtime_api': self.runtime_api,
            'handler': self.handler,
            'task_root': str(self.task_root),
            'verbose': self.verbose,
            'module_paths': [str(p) for p in self.module_paths],
        }


# Global instance (lazy loaded)
_config = None


def get_config() -> RuntimeConfig:
    """Get the global runtime configuration"""
    global _config
    if _config is None:
        _config = RuntimeConfig()
    return _config


def reload_config(environ: Optional[Mapping[str, str]] = None) -> RuntimeConfig:
    """Reload configuration from the environment"""
    global _config
    _config = RuntimeConfig(environ)
    return _config


if __name__ == "__main__":
    # Test/debug the configuration
    config = get_config()

    print("Runtime Configuration:")
    for key, value in config.to_dict().items():
        print(f"  {key}: {value}")
    print()
    print("Function environment:")
    for key, value in config.function_environment.to_dict().items():
        print(f"  {key}: {value}")
