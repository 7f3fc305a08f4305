from __future__ import annotations

from pathlib import Path

import pytest

from fakes import KeywordEmbeddingModel, make_settings
from ger.config import Settings


@pytest.fixture
def keyword_embedder() -> KeywordEmbeddingModel:
    return KeywordEmbeddingModel()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)
