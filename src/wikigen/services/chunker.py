"""Splits generated wiki pages into overlapping chunks for the vector store."""

import hashlib
from uuid import NAMESPACE_URL, uuid5

import structlog

from wikigen.models.chunk import PageChunk

# Section headings first, then paragraphs, lines and words.
DEFAULT_PAGE_SEPARATORS = ["\n## ", "\n\n", "\n", " ", ""]


class Chunker:
    """Cuts page Markdown into chunks of at most ``chunk_size`` characters.

    A page is split at its ``## `` sections while they fit, then at paragraphs,
    lines and words; only text with no usable boundary is cut mid-word. Each
    chunk records where it sits in the page so search hits can point back to
    a line range.
    """

    def __init__(
        self,
        chunk_size: int = 512,
        chunk_overlap: int = 50,
        separators: list[str] | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be less than chunk_size")

        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap
        self._separators = separators or list(DEFAULT_PAGE_SEPARATORS)
        self._logger = logger or structlog.get_logger(__name__)

    def chunk(self, text: str, file_item_id: str) -> list[PageChunk]:
        """Chunks of one page, in page order.

        Chunk ids derive from ``file_item_id`` and the chunk index, so indexing
        the same page twice overwrites rather than duplicates its vectors.
        """
        if not text.strip():
            return []

        pieces = self._split(text, self._separators)
        chunks = self._to_chunks(pieces, text, file_item_id)
        self._logger.debug(
            "page_chunked",
            file_item_id=file_item_id,
            page_length=len(text),
            chunk_count=len(chunks),
        )
        return chunks

    def _split(self, text: str, separators: list[str]) -> list[str]:
        if len(text) <= self._chunk_size:
            return [text] if text.strip() else []
        if not separators or separators[0] == "":
            return self._cut(text)

        separator, finer = separators[0], separators[1:]
        if separator not in text:
            return self._split(text, finer)

        pieces: list[str] = []
        section = ""
        for part in text.split(separator):
            joined = f"{section}{separator}{part}" if section else part
            if len(joined) <= self._chunk_size:
                section = joined
                continue
            if section:
                pieces.extend(self._split(section, finer))
                tail = self._tail(section)
                section = f"{tail}{separator}{part}" if tail else part
            else:
                pieces.extend(self._split(part, finer))
                section = ""

        if section.strip():
            pieces.extend(self._split(section, finer))
        return pieces

    def _cut(self, text: str) -> list[str]:
        """Fixed-width windows for text without any separator."""
        step = self._chunk_size - self._chunk_overlap
        windows = (text[start : start + self._chunk_size] for start in range(0, len(text), step))
        return [window for window in windows if window.strip()]

    def _tail(self, section: str) -> str:
        if self._chunk_overlap <= 0:
            return ""
        return section[-self._chunk_overlap :]

    def _to_chunks(self, pieces: list[str], page: str, file_item_id: str) -> list[PageChunk]:
        chunks: list[PageChunk] = []
        cursor = 0
        for index, piece in enumerate(pieces):
            char_start = page.find(piece, cursor)
            if char_start == -1:
                char_start = cursor
            char_end = char_start + len(piece)
            chunks.append(
                PageChunk(
                    chunk_id=str(uuid5(NAMESPACE_URL, f"{file_item_id}:{index}")),
                    file_item_id=file_item_id,
                    chunk_index=index,
                    text=piece,
                    content_hash=hashlib.sha256(piece.encode()).hexdigest(),
                    char_start=char_start,
                    char_end=char_end,
                    line_start=page.count("\n", 0, char_start) + 1,
                    line_end=page.count("\n", 0, char_end) + 1,
                )
            )
            cursor = char_start + 1
        return chunks
