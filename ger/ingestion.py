"""Document loading and chunking helpers."""
from __future__ import annotations

import re
from pathlib import Path
from typing import List

import pdfplumber

from .types import Chunk, make_chunk_id

TEXT_SUFFIXES = {".txt", ".md", ".markdown", ".rst"}


def extract_text_from_pdf(file_path: Path) -> str:
    """Extract plain text from a PDF file page-by-page."""
    page_text_parts: List[str] = []
    with pdfplumber.open(file_path) as pdf:
        for page in pdf.pages:
            page_text = page.extract_text() or ""
            if page_text.strip():
                page_text_parts.append(page_text.strip())
    return "\n".join(page_text_parts).strip()


def extract_text(file_path: Path) -> str:
    """Extract raw text from supported file types."""
    suffix = file_path.suffix.lower()
    if suffix == ".pdf":
        return extract_text_from_pdf(file_path)
    if suffix in TEXT_SUFFIXES:
        return file_path.read_text(encoding="utf-8", errors="ignore").strip()
    raise ValueError(f"Unsupported file type: {suffix}")


def _normalize_text(text: str) -> str:
    """Clean up text before chunking: fix whitespace and typographic quotes."""
    text = text.replace("\r\n", "\n")
    # Collapse multiple newlines into double newline (paragraph break).
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = text.replace("\N{NO-BREAK SPACE}", " ")
    text = text.replace("\N{RIGHT SINGLE QUOTATION MARK}", "'").replace("\N{LEFT SINGLE QUOTATION MARK}", "'")
    text = text.replace("\N{LEFT DOUBLE QUOTATION MARK}", '"').replace("\N{RIGHT DOUBLE QUOTATION MARK}", '"')
    text = re.sub(r"[ \t]+", " ", text)
    return text.strip()


def _split_into_sentences(text: str) -> List[str]:
    """Split on sentence-ending punctuation followed by whitespace, or on blank lines."""
    raw_sentences = re.split(r"(?<=[.!?])\s+|\n\n+", text)
    return [s.strip() for s in raw_sentences if s and s.strip()]


def sliding_window_chunk_text(text: str, chunk_size: int = 512, chunk_overlap: int = 128) -> List[str]:
    """Split text into overlapping, sentence-aligned chunks.

    Sentences are accumulated until adding the next one would push the chunk
    past ``chunk_size`` characters. The next chunk then starts with as many
    trailing sentences of the previous chunk as fit in ``chunk_overlap``
    characters. A single sentence longer than ``chunk_size`` becomes its own
    oversized chunk rather than being cut mid-sentence.
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be greater than 0")
    if chunk_overlap < 0:
        raise ValueError("chunk_overlap must be non-negative")
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")

    sentences = _split_into_sentences(_normalize_text(text))
    chunks: List[str] = []
    current_sentences: List[str] = []
    current_length = 0

    for sentence in sentences:
        if current_sentences and current_length + len(sentence) > chunk_size:
            chunks.append(" ".join(current_sentences))

            overlap_sentences: List[str] = []
            overlap_length = 0
            for s in reversed(current_sentences):
                if overlap_length + len(s) > chunk_overlap:
                    break
                overlap_sentences.insert(0, s)
                overlap_length += len(s) + 1

            current_sentences = overlap_sentences
            current_length = overlap_length

        current_sentences.append(sentence)
        current_length += len(sentence) + 1  # +1 for the joining space

    if current_sentences:
        remaining_text = " ".join(current_sentences)
        if not chunks or remaining_text != chunks[-1]:
            chunks.append(remaining_text)

    return chunks


def chunk_document(
    content: str,
    document_id: str,
    chunk_size: int = 512,
    chunk_overlap: int = 128,
) -> List[Chunk]:
    """Split document content into chunks without embeddings."""
    texts = sliding_window_chunk_text(content, chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    return [
        Chunk(id=make_chunk_id(document_id, index), document_id=document_id, text=text, index=index)
        for index, text in enumerate(texts)
    ]
