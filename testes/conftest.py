import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import pytest

from image_migrator.utils import errors


@pytest.fixture(autouse=True)
def reports_in_tmp(tmp_path):
    """Keep the JSON Lines reports out of the working tree."""
    previous = errors.get_report_dir()
    errors.set_report_dir(str(tmp_path / "reports"))
    yield tmp_path / "reports"
    errors.set_report_dir(previous)
