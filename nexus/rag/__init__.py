"""Document Pipeline: extraction, chunking, embedding, retrieval."""

from .chunking import TextChunk, chunk_text
from .embeddings import Embedder, OpenAIEmbedder, get_embedder
from .pipeline import DocumentPipeline, RetrievedChunk

__all__ = [
    "DocumentPipeline",
    "Embedder",
    "OpenAIEmbedder",
    "RetrievedChunk",
    "TextChunk",
    "chunk_text",
    "get_embedder",
]
