"""Failure taxonomy for the extraction pipeline.

Every stage raises a subclass of :class:`BillExtractionError`; the pipeline
entry point catches them once and turns them into a failure payload.
"""

from typing import Optional


class BillExtractionError(Exception):
    pass


class DownloadError(BillExtractionError):
    pass


class UnreadablePdf(BillExtractionError):
    pass


class RenderError(BillExtractionError):
    def __init__(self, message: str, page_no: Optional[int] = None):
        super().__init__(message)
        self.page_no = page_no


class UnsupportedPdfStructure(RenderError):
    pass


class ApiError(BillExtractionError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ParseError(BillExtractionError):
    def __init__(self, message: str, text: str = ""):
        super().__init__(message)
        self.text = text


class ValidationError(BillExtractionError):
    pass
