"""Environment settings for takeoff runs.

Settings are read from the process environment after the optional .env files
beside the working directory have been loaded:

1. .env.local (local secrets such as OPENAI_API_KEY, gitignored)
2. .env (shared defaults)
3. Variables already set by the host

Every setting may be given with the ``TAKEOFF_`` prefix, which wins over the
bare name, so ``TAKEOFF_SCAN_DPI=400`` overrides ``SCAN_DPI=300``.
"""

import os
import math
import logging
from pathlib import Path
from typing import List, Optional, Union

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

ENV_PREFIX = "TAKEOFF_"
ENV_FILES = (".env", ".env.local")

TRUE_VALUES = ("true", "1", "yes", "on")
FALSE_VALUES = ("false", "0", "no", "off")


def load_environment(env_dir: Optional[Union[str, Path]] = None) -> List[str]:
    """Load .env then .env.local from ``env_dir`` (default: cwd).

    Returns:
        Names of the files that were loaded, in load order
    """
    env_dir = Path.cwd() if env_dir is None else Path(env_dir)

    loaded_files = []
    for name in ENV_FILES:
        env_file = env_dir / name
        if env_file.exists():
            # later files win
            load_dotenv(env_file, override=True)
            loaded_files.append(name)
            logger.debug(f"Loaded takeoff settings from {env_file}")

    if loaded_files:
        logger.info(f"Environment loaded from: {', '.join(loaded_files)}")
    else:
        logger.debug(f"No .env files in {env_dir}")
    return loaded_files


def env_value(key: str) -> Optional[str]:
    """Raw value of a setting, ``TAKEOFF_<key>`` before ``<key>``"""
    if not key.startswith(ENV_PREFIX):
        prefixed = os.getenv(ENV_PREFIX + key)
        if prefixed is not None:
            return prefixed
    return os.getenv(key)


def get_env_bool(key: str, default: bool = False) -> bool:
    value = (env_value(key) or "").strip().lower()
    if value in TRUE_VALUES:
        return True
    if value in FALSE_VALUES:
        return False
    if value:
        logger.warning(f"Invalid boolean value for {key}: '{value}', using default: {default}")
    return default


def get_env_int(key: str, default: int = 0) -> int:
    value = env_value(key)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid integer value for {key}: '{value}', using default: {default}")
        return default


def get_env_float(key: str, default: float = 0.0) -> float:
    """Finite float setting; NaN and infinities fall back to ``default``"""
    value = env_value(key)
    if value is None or not value.strip():
        return default
    try:
        number = float(value)
    except ValueError:
        number = math.nan
    if not math.isfinite(number):
        logger.warning(f"Invalid float value for {key}: '{value}', using default: {default}")
        return default
    return number


def get_env_str(key: str, default: str = "") -> str:
    value = env_value(key)
    if value is None or not value.strip():
        return default
    return value.strip()
