"""
Simulator settings.

Module-level constants hold the defaults used by the engines. load_settings()
reads overrides from the environment (optionally from a .env file):

    TM_MAX_STEPS           - step ceiling for bounded runs (default 200)
    TM_COMPILED_MAX_STEPS  - step ceiling for compiled single-tape runs
    TM_TAPE_SIZE           - initial physical tape size
    TM_STRICT              - reject ambiguous deterministic machines (0/1)
"""

import os
from dataclasses import dataclass

from dotenv import load_dotenv


MAX_STEPS = 200
COMPILED_MAX_STEPS = 100000
DEFAULT_TAPE_SIZE = 50


@dataclass(frozen=True)
class TapeGrowth:
    """Auto-extension policy: grow by `chunk` cells when the head is within `threshold` of an end."""
    threshold: int
    chunk: int


# Deterministic and non-deterministic engines
SINGLE_TAPE_GROWTH = TapeGrowth(threshold=15, chunk=25)
# Multi-tape engines keep k buffers, so they grow in smaller steps
MULTI_TAPE_GROWTH = TapeGrowth(threshold=6, chunk=6)


@dataclass(frozen=True)
class Settings:
    max_steps: int = MAX_STEPS
    compiled_max_steps: int = COMPILED_MAX_STEPS
    tape_size: int = DEFAULT_TAPE_SIZE
    strict: bool = False


def _int_from_env(name, default):
    raw = os.environ.get(name)
    if raw is None or raw.strip() == '':
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")
    if value <= 0:
        raise ValueError(f"{name} must be positive, got {value}")
    return value


def load_settings(env_file=None):
    """
    Build Settings from the environment.

    Args:
        env_file: Optional path to a .env file. Values already present in the
                  environment take precedence over the file.

    Returns:
        Settings instance
    """
    load_dotenv(env_file)

    strict_raw = os.environ.get('TM_STRICT', '0').strip().lower()
    if strict_raw not in ('0', '1', 'true', 'false', 'yes', 'no', ''):
        raise ValueError(f"TM_STRICT must be a boolean flag, got {strict_raw!r}")

    return Settings(
        max_steps=_int_from_env('TM_MAX_STEPS', MAX_STEPS),
        compiled_max_steps=_int_from_env('TM_COMPILED_MAX_STEPS', COMPILED_MAX_STEPS),
        tape_size=_int_from_env('TM_TAPE_SIZE', DEFAULT_TAPE_SIZE),
        strict=strict_raw in ('1', 'true', 'yes'),
    )
