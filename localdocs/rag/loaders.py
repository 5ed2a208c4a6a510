"""Document loading for the ingestion pipeline.

Handles:
- Recursive file discovery under a root directory
- Dispatch from file extension to a parser kind
- PDF (per page), DOCX, markdown (with YAML frontmatter) and plain text parsing
"""
import re
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import structlog
import yaml
from docx import Document as DocxDocument
from pypdf import PdfReader

from localdocs.errors import ParseError
from localdocs.rag.models import Document

logger = structlog.get_logger()


class FileKind(str, Enum):
    """Parser families, one per supported document format."""

    PDF = "pdf"
    DOCX = "docx"
    MARKDOWN = "markdown"
    TEXT = "text"


TEXT_EXTENSIONS = (
    ".txt", ".text", ".log", ".csv", ".tsv", ".json", ".yaml", ".yml", ".toml",
    ".ini", ".cfg", ".xml", ".html", ".htm", ".css", ".rst", ".tex",
    ".py", ".js", ".ts", ".jsx", ".tsx", ".java", ".kt", ".c", ".h", ".cpp",
    ".hpp", ".cs", ".go", ".rs", ".rb", ".php", ".swift", ".sh", ".sql",
)

# Extensions outside this mapping are ignored during discovery
EXTENSION_KINDS: Mapping[str, FileKind] = {
    ".pdf": FileKind.PDF,
    ".docx": FileKind.DOCX,
    ".md": FileKind.MARKDOWN,
    ".markdown": FileKind.MARKDOWN,
    **{ext: FileKind.TEXT for ext in TEXT_EXTENSIONS},
}


class Parser(ABC):
    """Turns one file into zero or more documents."""

    kind: FileKind

    @abstractmethod
    def parse(self, path: Path) -> List[Document]:
        """Parse a file.

        Raises:
            ParseError: If the file cannot be read or decoded
        """


class PdfParser(Parser):
    """One document per page, numbered from 1."""

    kind = FileKind.PDF

    def parse(self, path: Path) -> List[Document]:
        try:
            reader = PdfReader(str(path))
            pages = [page.extract_text() or "" for page in reader.pages]
        except Exception as e:
            raise ParseError(path, str(e)) from e

        documents = [
            Document(source_path=str(path), text=text, page_number=page_number)
            for page_number, text in enumerate(pages, 1)
            if text.strip()
        ]

        logger.debug(
            "pdf_parsed",
            path=str(path),
            page_count=len(pages),
            pages_with_text=len(documents),
        )

        return documents


class DocxParser(Parser):
    """Paragraph text followed by table rows (cells joined with ``|``)."""

    kind = FileKind.DOCX

    def parse(self, path: Path) -> List[Document]:
        try:
            doc = DocxDocument(str(path))
        except Exception as e:
            raise ParseError(path, str(e)) from e

        text_parts = [p.text.strip() for p in doc.paragraphs if p.text.strip()]

        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    text_parts.append(" | ".join(cells))

        text = "\n".join(text_parts)
        if not text:
            return []

        return [Document(source_path=str(path), text=text)]


def _read_utf8(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ParseError(path, str(e)) from e


class MarkdownParser(Parser):
    """Parser for markdown documents with frontmatter support."""

    kind = FileKind.MARKDOWN

    # Regex for YAML frontmatter (must be at start of file)
    FRONTMATTER_PATTERN = re.compile(
        r"^---\s*\n(.*?)\n---\s*\n", re.DOTALL | re.MULTILINE
    )

    # Frontmatter fields carried into document metadata
    METADATA_FIELDS = ("title", "tags", "author")

    def parse(self, path: Path) -> List[Document]:
        content = _read_utf8(path)
        frontmatter, text = self._parse_frontmatter(content)

        if not text.strip():
            return []

        metadata = {
            key: _plain(frontmatter[key])
            for key in self.METADATA_FIELDS
            if frontmatter.get(key) is not None
        }

        return [Document(source_path=str(path), text=text, metadata=metadata)]

    def _parse_frontmatter(self, content: str) -> Tuple[Dict[str, Any], str]:
        """Extract YAML frontmatter from markdown content.

        Args:
            content: Full markdown content

        Returns:
            Tuple of (frontmatter_dict, content_without_frontmatter)
        """
        match = self.FRONTMATTER_PATTERN.match(content)

        if not match:
            return {}, content

        yaml_content = match.group(1)
        try:
            frontmatter = yaml.safe_load(yaml_content)
        except yaml.YAMLError as e:
            logger.warning(
                "frontmatter_parse_error",
                error=str(e),
                yaml_preview=yaml_content[:100],
            )
            frontmatter = None

        if not isinstance(frontmatter, dict):
            frontmatter = {}

        return frontmatter, content[match.end():]


def _plain(value: Any) -> Any:
    """Frontmatter value as something json.dump accepts (YAML dates become strings)."""
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, (str, int, float, bool)):
        return value
    return str(value)


class TextParser(Parser):
    kind = FileKind.TEXT

    def parse(self, path: Path) -> List[Document]:
        text = _read_utf8(path)
        if not text.strip():
            return []
        return [Document(source_path=str(path), text=text)]


DEFAULT_PARSERS: Mapping[FileKind, Parser] = {
    FileKind.PDF: PdfParser(),
    FileKind.DOCX: DocxParser(),
    FileKind.MARKDOWN: MarkdownParser(),
    FileKind.TEXT: TextParser(),
}


class DocumentLoader:
    """Discovers supported files under a directory and parses them."""

    def __init__(
        self,
        parsers: Optional[Mapping[FileKind, Parser]] = None,
        extension_kinds: Mapping[str, FileKind] = EXTENSION_KINDS,
    ):
        """Initialize the loader.

        Args:
            parsers: Parser per file kind (defaults to DEFAULT_PARSERS)
            extension_kinds: Lowercase extension (with dot) to file kind
        """
        self.parsers = dict(parsers or DEFAULT_PARSERS)
        self.extension_kinds = dict(extension_kinds)
        self.stats = self._empty_stats()

    @staticmethod
    def _empty_stats() -> Dict[str, int]:
        return {
            "files_discovered": 0,
            "files_processed": 0,
            "files_failed": 0,
            "documents_created": 0,
        }

    def kind_for(self, path: Path) -> Optional[FileKind]:
        """File kind for a path, or None if the extension is not supported."""
        return self.extension_kinds.get(path.suffix.lower())

    def discover_files(self, root_dir: Path) -> List[Path]:
        """Find all supported files under root_dir, in sorted order.

        Raises:
            FileNotFoundError: If root_dir doesn't exist
        """
        root_dir = Path(root_dir)
        if not root_dir.is_dir():
            raise FileNotFoundError(f"Directory not found: {root_dir}")

        files = []
        for path in sorted(root_dir.rglob("*")):
            if not path.is_file():
                continue
            if self.kind_for(path) is None:
                logger.debug("unsupported_file_skipped", path=str(path))
                continue
            files.append(path)

        logger.info("files_discovered", count=len(files), root_dir=str(root_dir))

        return files

    def load(self, root_dir: Path) -> Iterator[Document]:
        """Parse every supported file under root_dir.

        Files that fail to parse are logged and skipped; loading continues
        with the remaining files.

        Args:
            root_dir: Directory to scan recursively

        Yields:
            Documents in file discovery order (pages in page order)
        """
        self.stats = self._empty_stats()
        files = self.discover_files(root_dir)
        self.stats["files_discovered"] = len(files)

        for path in files:
            parser = self.parsers[self.kind_for(path)]

            try:
                documents = parser.parse(path)
            except ParseError as e:
                logger.error(
                    "file_parse_failed",
                    path=str(path),
                    kind=parser.kind.value,
                    error=e.reason,
                )
                self.stats["files_failed"] += 1
                continue

            self.stats["files_processed"] += 1
            self.stats["documents_created"] += len(documents)

            logger.info(
                "file_loaded",
                path=str(path),
                kind=parser.kind.value,
                documents=len(documents),
            )

            yield from documents
