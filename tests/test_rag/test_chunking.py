from __future__ import annotations

import math

import pytest

from nexus.rag.chunking import chunk_text


@pytest.mark.parametrize("length", [1000, 1001, 2500, 4321])
def test_chunk_count_follows_window_formula(length):
    chunks = chunk_text("x" * length, chunk_size=1000, overlap=200)
    assert len(chunks) == math.ceil((length - 200) / 800)


def test_short_text_is_a_single_chunk():
    chunks = chunk_text("tiny", chunk_size=1000, overlap=200)
    assert len(chunks) == 1
    assert (chunks[0].start, chunks[0].end) == (0, 4)


def test_windows_overlap_and_cover_the_text():
    text = "".join(chr(ord("a") + i % 26) for i in range(50))
    chunks = chunk_text(text, chunk_size=20, overlap=5)
    assert [(c.start, c.end) for c in chunks] == [(0, 20), (15, 35), (30, 50)]
    assert chunks[1].content[:5] == chunks[0].content[-5:]
    assert [c.index for c in chunks] == [0, 1, 2]


def test_empty_text_has_no_chunks():
    assert chunk_text("") == []


@pytest.mark.parametrize("size, overlap", [(0, 0), (10, 10), (10, -1)])
def test_invalid_window_is_rejected(size, overlap):
    with pytest.raises(ValueError):
        chunk_text("abc", chunk_size=size, overlap=overlap)
