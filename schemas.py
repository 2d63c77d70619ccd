from pydantic import BaseModel, Field, field_validator
from typing import List, Literal, Optional

PAGE_TYPES = ("Bill Detail", "Final Bill", "Pharmacy")


class ExtractRequest(BaseModel):
    document: str


class TokenUsage(BaseModel):
    total_tokens: int = 0
    input_tokens: int = 0
    output_tokens: int = 0

    @classmethod
    def of(cls, input_tokens: int, output_tokens: int) -> "TokenUsage":
        return cls(
            total_tokens=input_tokens + output_tokens,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )

    def __add__(self, other: "TokenUsage") -> "TokenUsage":
        return TokenUsage.of(
            self.input_tokens + other.input_tokens,
            self.output_tokens + other.output_tokens,
        )


class BillItem(BaseModel):
    item_name: Optional[str] = None
    item_amount: Optional[float] = None
    item_rate: Optional[float] = None
    item_quantity: Optional[float] = None

    @field_validator("item_amount", "item_rate", "item_quantity", mode="before")
    @classmethod
    def _unreadable_number_is_null(cls, value):
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return value
        try:
            return float(str(value).replace(",", "").strip())
        except ValueError:
            return None


class PageLineItems(BaseModel):
    page_no: Optional[str] = None
    page_type: Literal["Bill Detail", "Final Bill", "Pharmacy"] = "Bill Detail"
    bill_items: Optional[List[BillItem]] = None

    @field_validator("page_no", mode="before")
    @classmethod
    def _page_no_as_text(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(int(value)) if float(value).is_integer() else str(value)
        return value

    @field_validator("page_type", mode="before")
    @classmethod
    def _normalize_page_type(cls, value):
        # Models drift on casing and wording; fold onto the three known types.
        raw = str(value or "")
        if raw in PAGE_TYPES:
            return raw
        lowered = raw.lower()
        if "pharmacy" in lowered:
            return "Pharmacy"
        if "final bill" in lowered:
            return "Final Bill"
        return "Bill Detail"

    @property
    def item_count(self) -> int:
        return len(self.bill_items) if self.bill_items else 0


class ExtractionResult(BaseModel):
    pagewise_line_items: List[PageLineItems] = Field(default_factory=list)
    total_item_count: int = 0

    @field_validator("pagewise_line_items", mode="before")
    @classmethod
    def _null_pages_are_empty(cls, value):
        return [] if value is None else value

    @field_validator("total_item_count", mode="before")
    @classmethod
    def _unreadable_count_is_zero(cls, value):
        # Recomputed on merge, so a garbled count from the model is not fatal.
        try:
            return int(value)
        except (TypeError, ValueError):
            return 0


class APIResponse(BaseModel):
    is_success: bool
    token_usage: Optional[TokenUsage] = None
    data: Optional[ExtractionResult] = None
    message: Optional[str] = None

    @classmethod
    def success(cls, data: ExtractionResult, usage: TokenUsage) -> "APIResponse":
        return cls(is_success=True, token_usage=usage, data=data)

    @classmethod
    def failure(cls, message: str) -> "APIResponse":
        return cls(is_success=False, message=message)

    def to_payload(self) -> dict:
        # Drop absent envelope fields only; null item fields inside data stay.
        payload = self.model_dump(mode="json")
        return {key: value for key, value in payload.items() if value is not None}
