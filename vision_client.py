import base64
import logging
from typing import List, Optional

import requests

from config import Settings
from errors import ApiError
from pdf_document import PageRaster
from schemas import TokenUsage

logger = logging.getLogger(__name__)

PROMPT_TEMPLATE = """You are an expert medical bill extraction system. Extract line items from pages {start}-{end} (of {total} total).

CRITICAL RULES:
1. SCAN ALL PAGES: Extract from EVERY page shown. Do NOT stop at the first table.
2. SCAN ALL TABLES: If a page has multiple bills/tables, extract ALL of them.
3. NO SKIPPING: Every row with a charge MUST become a bill_item (unless it's a header/total).
4. NO DEDUPLICATION: If the same item appears multiple times, keep each occurrence.

OUTPUT STRICTLY IN THIS JSON SHAPE:
{{
  "pagewise_line_items": [
    {{
      "page_no": "string",
      "page_type": "Final Bill" | "Bill Detail" | "Pharmacy",
      "bill_items": [
        {{
          "item_name": "string",
          "item_amount": float,
          "item_rate": float,
          "item_quantity": float
        }}
      ]
    }}
  ]
}}

NOTES:
- page_no is the page number within the whole document ({start} to {end} for these images).
- item_name must match the bill text as closely as possible.
- item_amount is the net amount for that line (after any discount, as printed).
- item_rate and item_quantity must match the bill.
Return ONLY valid JSON. No extra text."""


def build_prompt(start_page: int, end_page: int, total_pages: int) -> str:
    return PROMPT_TEMPLATE.format(start=start_page, end=end_page, total=total_pages)


def encode_image(raster: PageRaster) -> str:
    encoded = base64.b64encode(raster.to_png()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


def _token_count(value) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return int(value)


class ModelReply:
    def __init__(self, content: str, input_tokens: int = 0, output_tokens: int = 0):
        self.content = content
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage.of(self.input_tokens, self.output_tokens)


class VisionClient:
    """Chat-completions client that sends a prompt plus page images."""

    def __init__(self, settings: Optional[Settings] = None, session: Optional[requests.Session] = None):
        self.settings = settings or Settings()
        self._owns_session = session is None
        self.session = session or requests.Session()

    def close(self) -> None:
        # A session handed in by the caller stays open; the caller closes it.
        if self._owns_session:
            self.session.close()

    def __enter__(self) -> "VisionClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def build_payload(self, prompt: str, rasters: List[PageRaster]) -> dict:
        content = [{"type": "text", "text": prompt}]
        for raster in rasters:
            content.append({
                "type": "image_url",
                "image_url": {"url": encode_image(raster), "detail": "high"},
            })
        return {
            "model": self.settings.vision_model,
            "messages": [{"role": "user", "content": content}],
            "max_tokens": self.settings.max_output_tokens,
            "temperature": self.settings.temperature,
        }

    def complete(self, prompt: str, rasters: List[PageRaster]) -> ModelReply:
        if not self.settings.openai_api_key:
            raise ApiError("Vision model API key is not configured")

        payload = self.build_payload(prompt, rasters)
        headers = {"Authorization": f"Bearer {self.settings.openai_api_key}"}
        logger.debug("Calling %s with %d images", self.settings.vision_model, len(rasters))

        try:
            response = self.session.post(
                self.settings.openai_api_url,
                json=payload,
                headers=headers,
                timeout=self.settings.api_timeout,
            )
        except requests.RequestException as e:
            raise ApiError(f"Vision API request failed: {e}") from e

        if response.status_code >= 400:
            raise ApiError(
                f"Vision API error: HTTP {response.status_code}: {response.text[:800]}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise ApiError("Vision API returned a non-JSON body", response.status_code) from e

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise ApiError("Vision API response has no choices[0].message.content") from e
        if not isinstance(content, str):
            raise ApiError("Vision API response content is not text")

        usage = body.get("usage") if isinstance(body, dict) else None
        usage = usage if isinstance(usage, dict) else {}
        return ModelReply(
            content,
            input_tokens=_token_count(usage.get("prompt_tokens")),
            output_tokens=_token_count(usage.get("completion_tokens")),
        )
