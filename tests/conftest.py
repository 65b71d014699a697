import pytest

from helpers import Build

@pytest.fixture
def build(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    return Build(root)
