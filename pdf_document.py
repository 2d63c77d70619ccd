import os
import logging
import tempfile
import threading
from typing import Callable, List, Optional, Tuple

import fitz  # PyMuPDF
from pypdf import PdfReader, PdfWriter

from config import MB, Settings
from downloader import ScratchFile
from errors import UnreadablePdf

logger = logging.getLogger(__name__)


class PageRaster:
    """One rendered page held in memory until its batch has been sent."""

    def __init__(self, page_no: int, pixmap: "fitz.Pixmap"):
        self.page_no = page_no
        self.width = pixmap.width
        self.height = pixmap.height
        self._pixmap = pixmap

    @property
    def released(self) -> bool:
        return self._pixmap is None

    def to_png(self) -> bytes:
        if self._pixmap is None:
            raise ValueError(f"Raster for page {self.page_no} was already released")
        return self._pixmap.tobytes("png")

    def release(self) -> None:
        self._pixmap = None


class DocumentHandle:
    """
    An opened PDF that can rasterize its pages.

    MuPDF documents must not be shared between threads, so a render requested
    from any thread other than the one that opened the handle works on a
    private copy opened for that single page.
    """

    def __init__(
        self,
        doc: "fitz.Document",
        opener: Callable[[], "fitz.Document"],
        strategy: str,
        backing_path: Optional[str] = None,
    ):
        self._doc = doc
        self._opener = opener
        self._owner = threading.get_ident()
        self.strategy = strategy
        self.backing_path = backing_path
        self.page_count = doc.page_count

    @property
    def closed(self) -> bool:
        return self._doc is None

    def render_page(self, index: int, dpi: int) -> PageRaster:
        if self._doc is None:
            raise ValueError("Document is closed")
        if threading.get_ident() == self._owner:
            return self._render(self._doc, index, dpi)

        private = self._opener()
        try:
            return self._render(private, index, dpi)
        finally:
            private.close()

    @staticmethod
    def _render(doc: "fitz.Document", index: int, dpi: int) -> PageRaster:
        page = doc.load_page(index)
        pixmap = page.get_pixmap(dpi=dpi, alpha=False)
        return PageRaster(index + 1, pixmap)

    def close(self) -> None:
        if self._doc is not None:
            self._doc.close()
            self._doc = None
        if self.backing_path:
            try:
                os.remove(self.backing_path)
            except FileNotFoundError:
                pass
            self.backing_path = None

    def __enter__(self) -> "DocumentHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# --- LOADING STRATEGIES ---

def _open_standard(scratch: ScratchFile) -> DocumentHandle:
    reader = PdfReader(scratch.path, strict=True)
    len(reader.pages)  # walks the page tree, raising on structural damage

    def opener():
        return fitz.open(scratch.path, filetype="pdf")

    return DocumentHandle(opener(), opener, "standard")


def _open_lenient_tempfile(scratch: ScratchFile) -> DocumentHandle:
    reader = PdfReader(scratch.path, strict=False)
    writer = PdfWriter()
    for page in reader.pages:
        writer.add_page(page)

    fd, backing_path = tempfile.mkstemp(prefix="bill_repaired_", suffix=".pdf")
    try:
        with os.fdopen(fd, "wb") as out:
            writer.write(out)

        def opener():
            return fitz.open(backing_path, filetype="pdf")

        return DocumentHandle(opener(), opener, "lenient-tempfile", backing_path)
    except BaseException:
        os.remove(backing_path)
        raise


def _open_lenient_memory(scratch: ScratchFile) -> DocumentHandle:
    data = scratch.read_bytes()

    def opener():
        return fitz.open(stream=data, filetype="pdf")

    return DocumentHandle(opener(), opener, "lenient-memory")


LOAD_STRATEGIES: List[Tuple[str, Callable[[ScratchFile], DocumentHandle]]] = [
    ("standard", _open_standard),
    ("lenient-tempfile", _open_lenient_tempfile),
    ("lenient-memory", _open_lenient_memory),
]


def load_document(scratch: ScratchFile, strategies=None) -> DocumentHandle:
    """Open the scratch file with the first loading strategy that works."""
    logger.debug("Loading PDF: %d bytes", scratch.size)
    last_error: Optional[Exception] = None

    for name, strategy in strategies or LOAD_STRATEGIES:
        try:
            document = strategy(scratch)
        except Exception as e:
            last_error = e
            logger.warning("PDF load strategy '%s' failed: %s", name, e)
            continue
        logger.info("PDF loaded (%s): %d pages", name, document.page_count)
        return document

    logger.error("All PDF load strategies failed")
    raise UnreadablePdf(
        f"Cannot open PDF - unsupported or corrupted format: {last_error}"
    ) from last_error


# --- RESOLUTION ---

def select_dpi(size_bytes: int, page_count: int, settings: Optional[Settings] = None) -> int:
    settings = settings or Settings()

    if size_bytes > settings.huge_file_bytes or page_count > settings.too_many_pages:
        dpi, tier = settings.huge_file_dpi, "huge"
    elif size_bytes > settings.large_file_bytes or page_count > settings.many_pages:
        dpi, tier = settings.large_file_dpi, "large"
    else:
        dpi, tier = settings.default_dpi, "standard"

    logger.info(
        "Using DPI=%d for %s PDF (%.2f MB, %d pages)", dpi, tier, size_bytes / MB, page_count
    )
    return dpi
