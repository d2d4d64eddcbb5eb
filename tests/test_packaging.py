"""
The optional dependencies needed by the CLI are declared.
"""

import tomllib
from pathlib import Path

PYPROJECT = Path(__file__).parent.parent / "pyproject.toml"


def test_run_dev_dependencies():
    with open(PYPROJECT, "rb") as f:
        extras = tomllib.load(f)["project"]["optional-dependencies"]

    # `groupkeeper run dev` imports testcontainers.postgres.
    assert "testcontainers[postgres]" in extras["dev"]
