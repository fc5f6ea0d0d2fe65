import pytest

from embedded_docstore import Store, StoreSettings
from embedded_docstore.config import get_settings


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch):
    # Keep the host environment out of the tests
    for var in ("DOCSTORE_ROOT_DIR", "DOCSTORE_FSYNC", "DOCSTORE_LOG_LEVEL", "DOCSTORE_LOG_FORMAT"):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings(tmp_path):
    return StoreSettings(root_dir=tmp_path, fsync=True)


@pytest.fixture
def fast_settings(tmp_path):
    return StoreSettings(root_dir=tmp_path, fsync=False)


@pytest.fixture
def store(tmp_path, settings):
    s = Store.open(tmp_path, settings=settings)
    yield s
    s.close()
