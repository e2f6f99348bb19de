import re
from pathlib import Path

import ngrisk

PYPROJECT = Path(__file__).parent.parent / "pyproject.toml"


def test_package_version_is_declared_once():
    project_table = PYPROJECT.read_text(encoding="utf-8").split("[project]", 1)[1].split("\n[", 1)[0]
    declared = re.search(r'^version\s*=\s*"([^"]+)"', project_table, re.MULTILINE)

    assert declared is not None, "pyproject.toml [project] table has no version"
    assert ngrisk.__version__ == declared.group(1)
