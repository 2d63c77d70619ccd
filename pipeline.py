import time
import logging
from typing import Optional

from config import Settings
from downloader import download_document
from extraction import BatchOrchestrator, merge_batch_results
from pdf_document import load_document, select_dpi
from rendering import PageRenderStrategy, get_renderer
from schemas import APIResponse
from vision_client import VisionClient

logger = logging.getLogger(__name__)


def extract_bill_data(
    document_url: str,
    settings: Optional[Settings] = None,
    client: Optional[VisionClient] = None,
    renderer: Optional[PageRenderStrategy] = None,
) -> APIResponse:
    """
    Download, render and extract one bill.

    Never raises for pipeline failures; they come back as a failure payload.
    """
    settings = settings or Settings.from_env()
    owns_client = client is None
    client = client or VisionClient(settings)
    renderer = renderer or get_renderer(settings)

    start = time.monotonic()
    logger.info("=== Starting extraction for: %s", document_url)

    try:
        with download_document(document_url, settings) as scratch:
            with load_document(scratch) as document:
                dpi = select_dpi(scratch.size, document.page_count, settings)
                rasters = renderer.render(document, dpi)

        run = BatchOrchestrator(client, settings.batch_size).run(rasters)
        data = merge_batch_results(run.results)

    except Exception as e:
        logger.error(
            "=== Extraction FAILED after %.1fs ===", time.monotonic() - start, exc_info=True
        )
        return APIResponse.failure(f"Extraction failed: {e}")

    finally:
        if owns_client:
            client.close()

    logger.info("=== Extraction SUCCESS in %.1fs ===", time.monotonic() - start)
    return APIResponse.success(data, run.usage)
