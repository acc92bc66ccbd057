import os
import sys

import pytest

# Ensure repo root is importable when pytest uses importlib mode.
ROOT = os.path.dirname(os.path.dirname(__file__))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from example_machines import load_machine  # noqa: E402

SETTINGS_VARS = ("TM_MAX_STEPS", "TM_COMPILED_MAX_STEPS", "TM_TAPE_SIZE", "TM_STRICT")


@pytest.fixture(autouse=True)
def clean_settings_env(monkeypatch):
    # load_dotenv writes straight into os.environ, so clear after as well.
    for name in SETTINGS_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    for name in SETTINGS_VARS:
        os.environ.pop(name, None)


@pytest.fixture
def palindrome():
    return load_machine("palindrome")


@pytest.fixture
def is_equal():
    return load_machine("is-equal")


@pytest.fixture
def anbn():
    return load_machine("anbn")


@pytest.fixture
def equal_count():
    return load_machine("equal-count")


@pytest.fixture
def contains_bb():
    return load_machine("contains-bb")


@pytest.fixture
def loop():
    return load_machine("loop")


def two_state(rules, accept=True):
    """q0 -> q1 description dict with `rules` on the single edge."""
    return {
        "nodes": [
            {"id": "q0", "kind": "start"},
            {"id": "q1", "kind": "accept" if accept else "normal"},
        ],
        "edges": [{"id": "e0", "source": "q0", "target": "q1", "rules": rules}],
    }
