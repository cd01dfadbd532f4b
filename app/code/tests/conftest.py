import pytest

import counter_service


@pytest.fixture
def counter_file(tmp_path):
    return tmp_path / "data" / "counter.txt"


@pytest.fixture
def appmod(counter_file, monkeypatch):
    monkeypatch.setenv("HOSTNAME", "counter-0")
    monkeypatch.setattr(counter_service, "store", counter_service.FileCounterStore(counter_file))
    monkeypatch.setattr(counter_service, "COUNTER_LOCK", False)
    monkeypatch.setattr(counter_service, "APP_VERSION", "test")
    return counter_service


@pytest.fixture
def client(appmod):
    return appmod.app.test_client()
