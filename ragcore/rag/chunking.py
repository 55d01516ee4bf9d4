"""
Chunking Collaborator

Turns a knowledge source into ordered document chunks. Rich document
extraction (PDF, DOCX, OCR) lives outside this package; the default provider
handles plain-text and markdown files and folders of them.
"""

import hashlib
import logging
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Tuple

from ragcore.rag.knowledge import DocumentChunk, KnowledgeSource, SourceType

logger = logging.getLogger(__name__)

TEXT_SUFFIXES = (".md", ".markdown", ".txt")


def generate_chunk_id(source_id: str, chunk_index: int, content: str) -> str:
    """Generate a stable id for a chunk."""
    content_hash = hashlib.md5(content.encode()).hexdigest()[:8]
    source_hash = hashlib.md5(source_id.encode()).hexdigest()[:8]
    return f"{source_hash}_{chunk_index}_{content_hash}"


class ContentProvider(ABC):
    """Produces ordered chunks for a knowledge source."""

    @abstractmethod
    async def get_chunks(self, source: KnowledgeSource) -> List[DocumentChunk]:
        """
        Chunk a source.

        Args:
            source: Source to chunk.

        Returns:
            Chunks ordered by chunk_index.
        """
        pass

    @abstractmethod
    def supported_types(self) -> List[str]:
        """File suffixes or source types this provider can handle."""
        pass


class TextChunker:
    """
    Splits text into overlapping chunks, preferring natural boundaries.

    Split points are searched in the last 200 characters of each window:
    paragraph break, then sentence end, then clause, then word boundary.
    """

    def __init__(
        self,
        chunk_size: int = 500,  # Target tokens per chunk
        chunk_overlap: int = 50,  # Overlap tokens between chunks
        min_chunk_size: int = 25,  # Minimum tokens to create a chunk
        respect_boundaries: bool = True,
    ) -> None:
        """
        Initialize the text chunker.

        Args:
            chunk_size: Target number of tokens per chunk (approx 4 chars per token).
            chunk_overlap: Number of tokens to overlap between chunks.
            min_chunk_size: Minimum chunk size to create.
            respect_boundaries: Try to split at paragraph/sentence boundaries.
        """
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.min_chunk_size = min_chunk_size
        self.respect_boundaries = respect_boundaries

        self.char_chunk_size = chunk_size * 4
        self.char_overlap = chunk_overlap * 4
        self.char_min_size = min_chunk_size * 4

    def chunk_text(self, text: str) -> List[Tuple[str, int, int]]:
        """
        Split text into chunks with overlap.

        Args:
            text: Text to chunk.

        Returns:
            List of tuples: (chunk_text, start_char, end_char)
        """
        if not text.strip():
            return []

        text = self._normalize_whitespace(text)

        if len(text) <= self.char_chunk_size:
            return [(text, 0, len(text))]

        chunks = []
        start = 0

        while start < len(text):
            end = min(start + self.char_chunk_size, len(text))

            if end < len(text) and self.respect_boundaries:
                end = self._find_split_point(text, start, end)

            chunk_text = text[start:end].strip()
            is_last = end >= len(text)

            if chunk_text and (len(chunk_text) >= self.char_min_size or is_last):
                chunks.append((chunk_text, start, end))

            if is_last:
                break

            next_start = end - self.char_overlap
            start = next_start if next_start > start else end

        return chunks

    def _normalize_whitespace(self, text: str) -> str:
        """Normalize whitespace while preserving paragraph structure."""
        text = text.replace("\r\n", "\n")
        text = re.sub(r"\n{3,}", "\n\n", text)
        text = re.sub(r" {2,}", " ", text)
        return text.strip()

    def _find_split_point(self, text: str, start: int, end: int) -> int:
        search_start = max(start, end - 200)
        search_text = text[search_start:end]

        para_match = search_text.rfind("\n\n")
        if para_match != -1 and para_match > 50:
            return search_start + para_match + 2

        best_pos = max(search_text.rfind(p) for p in (". ", "! ", "? ", ".\n", "!\n", "?\n"))
        if best_pos != -1 and best_pos > 50:
            return search_start + best_pos + 2

        for pattern in (", ", "; ", ":\n", " - "):
            pos = search_text.rfind(pattern)
            if pos != -1 and pos > 50:
                return search_start + pos + len(pattern)

        space_pos = search_text.rfind(" ")
        if space_pos != -1 and space_pos > 50:
            return search_start + space_pos + 1

        return end


class TextFileContentProvider(ContentProvider):
    """
    Chunks plain-text and markdown files, or every such file in a folder.

    URL sources and other file types are rejected; supply a dedicated provider
    for those.
    """

    def __init__(self, chunker: Optional[TextChunker] = None, encoding: str = "utf-8") -> None:
        self.chunker = chunker or TextChunker()
        self.encoding = encoding

    def supported_types(self) -> List[str]:
        return list(TEXT_SUFFIXES)

    def _collect_files(self, source: KnowledgeSource) -> List[Path]:
        path = Path(source.path)

        if source.type == SourceType.FILE:
            if not path.is_file():
                raise FileNotFoundError(f"File not found: {source.path}")
            if path.suffix.lower() not in TEXT_SUFFIXES:
                raise ValueError(f"Unsupported file type: {path.suffix}")
            return [path]

        if source.type == SourceType.FOLDER:
            if not path.is_dir():
                raise FileNotFoundError(f"Directory not found: {source.path}")
            files = {p for suffix in TEXT_SUFFIXES for p in path.rglob(f"*{suffix}")}
            return sorted(files)

        raise ValueError(f"Unsupported source type: {source.type.value}")

    async def get_chunks(self, source: KnowledgeSource) -> List[DocumentChunk]:
        chunks: List[DocumentChunk] = []

        for file_path in self._collect_files(source):
            text = file_path.read_text(encoding=self.encoding)
            for chunk_text, start, end in self.chunker.chunk_text(text):
                index = len(chunks)
                chunks.append(
                    DocumentChunk(
                        id=generate_chunk_id(source.id, index, chunk_text),
                        content=chunk_text,
                        chunk_index=index,
                        metadata={
                            "file_name": file_path.name,
                            "start_char": start,
                            "end_char": end,
                        },
                    )
                )

        logger.info(f"Chunked source '{source.name}' into {len(chunks)} chunks")
        return chunks
