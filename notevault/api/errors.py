"""Translation of service errors into HTTP responses"""
import logging
from contextlib import contextmanager
from typing import Optional

from fastapi import HTTPException

from ..core.errors import InvalidInput, UploadError

logger = logging.getLogger(__name__)


@contextmanager
def upload_errors(action: str):
    """Map UploadError to its status; anything unexpected becomes a logged 500"""
    try:
        yield
    except UploadError as e:
        logger.info(f"{action} rejected ({type(e).__name__}): {e.message}")
        raise HTTPException(status_code=e.status_code, detail=e.message) from e
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"{action} failed: {e}")
        raise HTTPException(status_code=500, detail=f"Failed to process {action}") from e


def required_int(value: Optional[str], field: str) -> int:
    """Parse a required integer form field"""
    if value is None or str(value).strip() == "":
        raise InvalidInput(f"{field} is required")
    try:
        return int(str(value).strip())
    except ValueError:
        raise InvalidInput(f"{field} must be an integer")
