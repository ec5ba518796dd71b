from pathlib import Path

import pytest

from pair_config import ShareConfig
from pair_server import create_app


@pytest.fixture
def work_dir(tmp_path: Path) -> Path:
    d = tmp_path / "share"
    d.mkdir()
    return d


@pytest.fixture
def make_client(work_dir: Path):
    def _make(single_file=None, multi_files=()):
        config = ShareConfig(work_dir=str(work_dir), single_file=single_file, multi_files=tuple(multi_files))
        app = create_app(config)
        app.config["TESTING"] = True
        return app.test_client()
    return _make


@pytest.fixture
def client(make_client):
    return make_client()
