import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(Path(__file__).resolve().parents[1]))

from facturx_batch.application import reset_batch_state


@pytest.fixture(autouse=True)
def reset_state():
    reset_batch_state()
    yield
    reset_batch_state()


@pytest.fixture()
def batches_root(tmp_path, monkeypatch):
    root = tmp_path / "batches"
    monkeypatch.setenv("BATCHES_ROOT", str(root))
    return root


@pytest.fixture()
def client(batches_root):
    from facturx_batch.app import create_app

    app = create_app()
    with TestClient(app) as test_client:
        yield test_client
