import json

import fitz
import pytest

from config import Settings
from vision_client import ModelReply


@pytest.fixture
def settings():
    return Settings(openai_api_key="test-key")


@pytest.fixture
def make_pdf(tmp_path):
    """Write a small PDF with one labelled page per requested page."""

    def _make(pages=1, name="bill.pdf"):
        path = tmp_path / name
        doc = fitz.open()
        for number in range(1, pages + 1):
            page = doc.new_page(width=300, height=200)
            page.insert_text((40, 60), f"Consultation page {number}  500.00")
        doc.save(str(path))
        doc.close()
        return str(path)

    return _make


class FakeRaster:
    def __init__(self, page_no):
        self.page_no = page_no
        self.released = False

    def to_png(self):
        return b"\x89PNG fake"

    def release(self):
        self.released = True


class FakeVisionClient:
    """Answers every batch with one page per raster and one item per page."""

    def __init__(self, reply_text=None, input_tokens=100, output_tokens=20):
        self.reply_text = reply_text
        self.input_tokens = input_tokens
        self.output_tokens = output_tokens
        self.prompts = []
        self.batches = []

    def complete(self, prompt, rasters):
        self.prompts.append(prompt)
        self.batches.append([raster.page_no for raster in rasters])
        if self.reply_text is not None:
            text = self.reply_text
        else:
            text = json.dumps({
                "pagewise_line_items": [
                    {
                        "page_no": str(raster.page_no),
                        "page_type": "Bill Detail",
                        "bill_items": [
                            {"item_name": f"Item {raster.page_no}", "item_amount": 10.0,
                             "item_rate": 10.0, "item_quantity": 1.0},
                        ],
                    }
                    for raster in rasters
                ]
            })
        return ModelReply(text, self.input_tokens, self.output_tokens)
