"""Environment variable expansion for configuration files.

Secrets such as ``#password`` are usually not stored in the config file
itself; ``${MONGO_PASSWORD}`` references are expanded from the
environment, optionally after loading a ``.env`` file.

Uses python-dotenv for .env file loading.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Optional, Union

from dotenv import load_dotenv

from mongo_extractor.lib.errors import ConfigurationError

__all__ = ["expand_env_vars", "expand_config", "load_env_file"]

# Only the braced form; a bare $name would clash with MongoDB operators
ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load environment variables from a .env file.

    Returns:
        True if a .env file was found and loaded, False otherwise.
    """
    return load_dotenv(dotenv_path=path, override=override)


def expand_env_vars(value: str, *, strict: bool = False) -> str:
    """Expand ``${VAR_NAME}`` references in a string.

    Example:
        >>> os.environ["MONGO_HOST"] = "localhost"
        >>> expand_env_vars("${MONGO_HOST}:27017")
        'localhost:27017'
    """

    def replacer(match: "re.Match[str]") -> str:
        var_name = match.group(1)
        env_value = os.environ.get(var_name)
        if env_value is None:
            if strict:
                raise ConfigurationError(
                    f"Environment variable not set: {var_name}",
                    field=var_name,
                )
            return str(match.group(0))
        return env_value

    return ENV_VAR_PATTERN.sub(replacer, value)


def expand_config(value: Any, *, strict: bool = False) -> Any:
    """Recursively expand references in every string of a parsed config."""
    if isinstance(value, str):
        return expand_env_vars(value, strict=strict)
    if isinstance(value, dict):
        return {key: expand_config(item, strict=strict) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_config(item, strict=strict) for item in value]
    return value
