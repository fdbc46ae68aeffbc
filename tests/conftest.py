from __future__ import annotations

from pathlib import Path

import pytest

from photobatch.cache.result_cache import ResultCache
from photobatch.db.db_init import init_db
from photobatch.db.db_session import build_engine, build_session_factory
from photobatch.domain.templates import TemplateCatalog
from photobatch.media.image_store import ImageStore
from tests.mocks.images import make_jpeg


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite:///:memory:")
    init_db(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_jpeg(64, 48)


@pytest.fixture
def image_store(tmp_path: Path) -> ImageStore:
    store = ImageStore(temp_dir=tmp_path / "temp", output_dir=tmp_path / "output")
    store.ensure_structure()
    return store


@pytest.fixture
def result_cache(tmp_path: Path) -> ResultCache:
    return ResultCache(tmp_path / "cache")


@pytest.fixture
def catalog() -> TemplateCatalog:
    return TemplateCatalog()
