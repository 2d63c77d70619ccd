import re
import json
import logging
from typing import List, NamedTuple

from pydantic import ValidationError as SchemaError

from errors import ParseError, ValidationError
from pdf_document import PageRaster
from rendering import release_all
from schemas import ExtractionResult, TokenUsage
from vision_client import VisionClient, build_prompt

logger = logging.getLogger(__name__)

# Opening fence with an optional language tag, body, closing fence at the very end.
FENCE_RE = re.compile(r"\A```[A-Za-z0-9_+.-]*[ \t]*\r?\n?(?P<body>.*?)\s*```\Z", re.DOTALL)


def strip_code_fence(text: str) -> str:
    cleaned = (text or "").strip()
    match = FENCE_RE.match(cleaned)
    if match:
        return match.group("body").strip()
    return cleaned


def parse_model_reply(text: str) -> ExtractionResult:
    cleaned = strip_code_fence(text)
    try:
        return ExtractionResult.model_validate(json.loads(cleaned))
    except (json.JSONDecodeError, SchemaError) as e:
        logger.error("JSON parse error. Response: %s", cleaned)
        raise ParseError(f"Failed to parse model response: {e}", text=cleaned) from e


def merge_batch_results(results: List[ExtractionResult]) -> ExtractionResult:
    """Concatenate batch results in order and recount the line items."""
    pages = [page for result in results for page in result.pagewise_line_items]
    if not pages:
        raise ValidationError("No line items extracted")

    total = sum(page.item_count for page in pages)
    logger.info("Reconciliation: %d pages, total_item_count=%d", len(pages), total)
    return ExtractionResult(pagewise_line_items=pages, total_item_count=total)


class BatchRun(NamedTuple):
    results: List[ExtractionResult]
    usage: TokenUsage


class BatchOrchestrator:
    def __init__(self, client: VisionClient, batch_size: int = 3):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.client = client
        self.batch_size = batch_size

    def batches(self, rasters: List[PageRaster]):
        for start in range(0, len(rasters), self.batch_size):
            yield start + 1, rasters[start:start + self.batch_size]

    def run(self, rasters: List[PageRaster]) -> BatchRun:
        total = len(rasters)
        usage = TokenUsage()
        results: List[ExtractionResult] = []

        try:
            for start_page, batch in self.batches(rasters):
                end_page = start_page + len(batch) - 1
                logger.info("Processing batch: pages %d-%d/%d", start_page, end_page, total)

                prompt = build_prompt(start_page, end_page, total)
                try:
                    reply = self.client.complete(prompt, batch)
                finally:
                    release_all(batch)

                usage = usage + reply.usage
                results.append(parse_model_reply(reply.content))
        except BaseException:
            release_all(rasters)
            raise

        logger.info(
            "Processed %d batches, tokens in=%d out=%d",
            len(results), usage.input_tokens, usage.output_tokens,
        )
        return BatchRun(results, usage)
