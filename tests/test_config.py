from __future__ import annotations

import pytest
from pydantic import ValidationError

from nexus.config import Settings


def test_comma_separated_cors_origins_are_split(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", "https://a.example, https://b.example")
    settings = Settings(_env_file=None)
    assert settings.cors_origins == ["https://a.example", "https://b.example"]


def test_blank_cors_origins_mean_none(monkeypatch):
    monkeypatch.setenv("CORS_ORIGINS", " ")
    assert Settings(_env_file=None).cors_origins == []


def test_chunk_overlap_must_be_smaller_than_chunk_size(monkeypatch):
    monkeypatch.setenv("CHUNK_SIZE", "100")
    monkeypatch.setenv("CHUNK_OVERLAP", "100")
    with pytest.raises(ValidationError):
        Settings(_env_file=None)
