import os
import logging

import uvicorn
from fastapi import FastAPI
from fastapi.responses import JSONResponse

from config import Settings
from pipeline import extract_bill_data as run_pipeline
from schemas import ExtractRequest, APIResponse

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
)
logger = logging.getLogger("bill_extractor")

# --- CONFIGURATION ---
settings = Settings.from_env()

app = FastAPI(title="Bill Extractor")


@app.post("/extract-bill-data", response_model=APIResponse)
def extract_bill_data(request: ExtractRequest):
    logger.info("Received extraction request for document: %s", request.document)
    result = run_pipeline(request.document, settings)
    return JSONResponse(status_code=200, content=result.to_payload())


@app.get("/health")
def health():
    return {"status": "API is running"}


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "3000")))
