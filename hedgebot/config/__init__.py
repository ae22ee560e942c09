"""
Configuration package.

Environment loading and validation for the hedge bot.
"""

from hedgebot.config.config import Settings, env_bool, load_env_files

__all__ = [
    "Settings",
    "env_bool",
    "load_env_files",
]
