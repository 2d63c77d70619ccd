import logging
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout
from typing import List, Optional

import fitz  # PyMuPDF

from config import Settings
from errors import RenderError, UnsupportedPdfStructure
from pdf_document import DocumentHandle, PageRaster

logger = logging.getLogger(__name__)


def release_all(rasters: List[PageRaster]) -> None:
    for raster in rasters:
        raster.release()


def render_page(document: DocumentHandle, index: int, dpi: int) -> PageRaster:
    """Render one page, translating library failures into pipeline errors."""
    page_no = index + 1
    logger.debug("Rendering page %d/%d", page_no, document.page_count)
    try:
        return document.render_page(index, dpi)
    except (RecursionError, fitz.FileDataError) as e:
        logger.error("Corrupted structure while rendering page %d: %s", page_no, e)
        raise UnsupportedPdfStructure(
            f"Unsupported/corrupted PDF structure on page {page_no}: {e}", page_no=page_no
        ) from e
    except (RuntimeError, OSError, ValueError) as e:
        logger.error("Failed to render page %d: %s", page_no, e)
        raise RenderError(f"Failed to render page {page_no}: {e}", page_no=page_no) from e


class PageRenderStrategy(ABC):
    name = "base"

    @abstractmethod
    def render(self, document: DocumentHandle, dpi: int) -> List[PageRaster]:
        ...


class SequentialRenderer(PageRenderStrategy):
    """Renders pages one at a time and stops at the first failure."""

    name = "sequential"

    def render(self, document: DocumentHandle, dpi: int) -> List[PageRaster]:
        logger.info("Rendering %d pages sequentially (DPI=%d)", document.page_count, dpi)
        rasters: List[PageRaster] = []
        try:
            for index in range(document.page_count):
                rasters.append(render_page(document, index, dpi))
        except BaseException:
            release_all(rasters)
            raise

        logger.info("Rendered %d pages successfully", len(rasters))
        return rasters


class ParallelRenderer(PageRenderStrategy):
    """
    Renders pages on a fixed pool of worker threads.

    Results are collected in page order and each page is awaited with its
    own timeout; the first timeout or failure cancels whatever is still queued.
    """

    name = "parallel"

    def __init__(self, workers: int = 4, page_timeout: float = 120.0):
        self.workers = workers
        self.page_timeout = page_timeout

    def render(self, document: DocumentHandle, dpi: int) -> List[PageRaster]:
        total = document.page_count
        logger.info(
            "Rendering %d pages in parallel (DPI=%d, workers=%d)", total, dpi, self.workers
        )

        executor = ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="page-render")
        futures = [executor.submit(render_page, document, index, dpi) for index in range(total)]
        rasters: List[PageRaster] = []

        try:
            for index, future in enumerate(futures):
                try:
                    rasters.append(future.result(timeout=self.page_timeout))
                except FutureTimeout as e:
                    raise RenderError(
                        f"Page rendering timeout on page {index + 1}", page_no=index + 1
                    ) from e
        except BaseException:
            executor.shutdown(wait=False, cancel_futures=True)
            release_all(rasters)
            for future in futures[len(rasters):]:
                if future.done() and not future.cancelled() and future.exception() is None:
                    future.result().release()
            raise

        executor.shutdown(wait=True)
        logger.info("Rendered %d pages successfully", len(rasters))
        return rasters


def get_renderer(settings: Optional[Settings] = None) -> PageRenderStrategy:
    settings = settings or Settings()
    if settings.render_mode == "parallel":
        return ParallelRenderer(settings.render_workers, settings.page_render_timeout)
    return SequentialRenderer()
