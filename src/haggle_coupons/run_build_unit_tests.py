"""Run unit build tests using pytest.

This script runs all tests marked with @pytest.mark.unit_build.
"""

import sys
from pathlib import Path

import pytest

if __name__ == "__main__":
    # -m unit_build skips the live Supabase tests marked integration
    exit_code = pytest.main(
        [
            "-v",
            "-m",
            "unit_build",
            "--tb=short",
            str(Path(__file__).parent),
        ]
    )
    sys.exit(exit_code)
