import os
import time
import logging
import tempfile
from typing import Callable, Optional

import requests

from config import MB, Settings
from errors import DownloadError

logger = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024


class ScratchFile:
    """A downloaded document on local disk, deleted when the request is done."""

    def __init__(self, path: str):
        self.path = path

    @property
    def size(self) -> int:
        return os.path.getsize(self.path)

    def read_bytes(self) -> bytes:
        with open(self.path, "rb") as fh:
            return fh.read()

    def delete(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass

    def __enter__(self) -> "ScratchFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.delete()


def normalize_url(url: str) -> str:
    return url.strip().replace(" ", "%20")


def backoff_seconds(attempt: int) -> float:
    """Linear backoff: wait ``attempt`` seconds after the ``attempt``-th failure."""
    return float(attempt)


def _fetch_once(url: str, timeout: float) -> ScratchFile:
    fd, path = tempfile.mkstemp(prefix="bill_", suffix=".pdf")
    scratch = ScratchFile(path)
    try:
        with os.fdopen(fd, "wb") as out:
            with requests.get(url, stream=True, timeout=timeout) as response:
                response.raise_for_status()
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        out.write(chunk)
    except BaseException:
        scratch.delete()
        raise
    return scratch


def download_document(
    url: str,
    settings: Optional[Settings] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> ScratchFile:
    settings = settings or Settings()
    attempts = settings.download_attempts
    last_error: Optional[Exception] = None

    for attempt in range(1, attempts + 1):
        target = normalize_url(url)
        try:
            logger.debug("Download attempt %d/%d: %s", attempt, attempts, target)
            scratch = _fetch_once(target, settings.download_timeout)
            logger.info("Downloaded document: %.2f MB", scratch.size / MB)
            return scratch
        except (requests.RequestException, OSError) as e:
            last_error = e
            logger.warning("Download attempt %d/%d failed: %s", attempt, attempts, e)
            if attempt < attempts:
                sleep(backoff_seconds(attempt))

    raise DownloadError(
        f"Failed to download document after {attempts} attempts: {last_error}"
    ) from last_error
