"""Owner's manual text extraction and chunking."""

from pathlib import Path

import pypdf

from .config import config
from .models import ManualChunk

logger = config.get_logger(__name__)


class ManualLoader:
    """Reads owner's manuals in PDF format."""

    @staticmethod
    def page_count(file_path: Path) -> int:
        """Count the pages of a PDF, failing if it cannot be parsed.

        Returns:
            Number of pages in the document.
        """
        with file_path.open("rb") as file:
            return len(pypdf.PdfReader(file).pages)

    @staticmethod
    def load_pages(file_path: Path) -> list[str]:
        """Extract the text of every page of a PDF manual.

        Returns:
            One string per page, in page order. Pages without text are empty.
        """
        try:
            with file_path.open("rb") as file:
                pdf_reader = pypdf.PdfReader(file)
                pages = [page.extract_text() or "" for page in pdf_reader.pages]
        except Exception:
            logger.exception("Error loading PDF %s", file_path)
            raise
        else:
            logger.info("Extracted %d pages from %s", len(pages), file_path.name)
            return pages


class TextChunker:
    """Handles text chunking with fixed length and overlap strategy."""

    def __init__(self, chunk_size: int = 1000, overlap: int = 200) -> None:
        """Initialize the TextChunker with chunk size and overlap.

        Args:
            chunk_size: The size of each text chunk.
            overlap: The number of overlapping characters between chunks.

        Raises:
            ValueError: If the overlap is not smaller than the chunk size.
        """
        if overlap >= chunk_size:
            msg = "Chunk overlap must be smaller than the chunk size"
            raise ValueError(msg)
        self.chunk_size = chunk_size
        self.overlap = overlap

    def chunk_text(
        self, text: str, source: str = "manual", page: int | None = None
    ) -> list[ManualChunk]:
        """Split text into overlapping chunks.

        Returns:
            A list of ManualChunk objects representing the text chunks.
        """
        chunks = []
        start = 0

        while start < len(text):
            end = start + self.chunk_size
            piece = text[start:end]

            # Avoid breaking a word unless the chunk would shrink below half size
            if end < len(text) and not piece.endswith(" "):
                last_space = piece.rfind(" ")
                if last_space > self.chunk_size // 2:
                    end = start + last_space
                    piece = text[start:end]

            if piece.strip():
                chunks.append(
                    ManualChunk(
                        content=piece.strip(),
                        metadata={
                            "source": source,
                            "page": page,
                            "start_char": start,
                            "end_char": end,
                        },
                    )
                )

            if end >= len(text):
                break
            start = max(end - self.overlap, start + 1)

        return chunks

    def chunk_pages(self, pages: list[str], source: str) -> list[ManualChunk]:
        """Chunk every page, numbering chunks across the whole manual.

        Returns:
            Chunks carrying their 1-based page number and a running chunk id.
        """
        chunks = []
        for page_number, page_text in enumerate(pages, start=1):
            chunks.extend(self.chunk_text(page_text, source=source, page=page_number))

        for chunk_id, chunk in enumerate(chunks):
            chunk.metadata["chunk_id"] = chunk_id

        logger.info("Manual %s split into %d chunks", source, len(chunks))
        return chunks
