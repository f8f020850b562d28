"""Text chunking tests."""

import pytest

from helpdesk.core import ValidationException
from helpdesk.pipeline.domain import TextChunker, chunk_text


def _reconstruct(chunks, overlap):
    return chunks[0] + "".join(chunk[overlap:] for chunk in chunks[1:])


def test_blank_text_has_no_chunks():
    assert chunk_text("", 100, 10) == []
    assert chunk_text("   \n\n ", 100, 10) == []


def test_short_text_is_single_chunk():
    text = "x" * 100
    assert chunk_text(text, 100, 30) == [text]


def test_chunks_overlap_and_reconstruct_text():
    text = "abcdefghij" * 123
    chunks = chunk_text(text, 100, 30)

    assert len(chunks) > 1
    assert all(len(chunk) <= 100 for chunk in chunks)
    for previous, current in zip(chunks, chunks[1:]):
        assert previous[-30:] == current[:30]
    assert _reconstruct(chunks, 30) == text


def test_prefers_paragraph_break_in_second_half():
    text = "a" * 70 + "\n\n" + "b" * 200
    chunks = chunk_text(text, 100, 10)

    assert chunks[0] == "a" * 70 + "\n\n"
    assert _reconstruct(chunks, 10) == text


def test_ignores_break_in_first_half():
    text = "a" * 20 + "\n\n" + "b" * 200
    chunks = chunk_text(text, 100, 10)

    assert len(chunks[0]) == 100


def test_falls_back_to_sentence_break():
    text = "word " * 12 + "end. " + "z" * 200
    chunks = chunk_text(text, 100, 5)

    assert chunks[0].endswith("end. ")
    assert _reconstruct(chunks, 5) == text


def test_chunking_is_deterministic():
    text = ("Line one.\nLine two. " * 80).strip()
    assert chunk_text(text, 150, 40) == chunk_text(text, 150, 40)


def test_default_configuration_reconstructs_long_text():
    text = ("Paragraph with details about the outage.\n\n" * 400)
    chunks = TextChunker(5000, 1500).split(text)

    assert len(chunks) > 1
    assert _reconstruct(chunks, 1500) == text


@pytest.mark.parametrize("size,overlap", [(100, 100), (100, 150), (100, -1), (0, 0)])
def test_rejects_invalid_overlap(size, overlap):
    with pytest.raises(ValidationException):
        chunk_text("some text", size, overlap)
    with pytest.raises(ValidationException):
        TextChunker(size, overlap)
