"""
Helper utilities and common functions
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, List, Optional, Tuple

import structlog

logger = structlog.get_logger("meetflow.helpers")


def utc_now() -> datetime:
    """Naive UTC timestamp, the form stored in the database"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def split_contact_name(name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split "First Middle Last" into ("First", "Middle Last")"""
    if not name or not name.strip():
        return None, None
    parts = name.split()
    return parts[0], " ".join(parts[1:]) or None


def strip_code_fences(text: str) -> str:
    """Remove markdown code blocks around a model response"""
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


async def retry_async(
    coro_func,
    max_retries: int = 3,
    delay: float = 1.0,
    backoff_factor: float = 2.0,
    exceptions: tuple = (Exception,)
) -> Any:
    """Retry async function with exponential backoff"""
    last_exception = None

    for attempt in range(max_retries + 1):
        try:
            return await coro_func()
        except exceptions as e:
            last_exception = e

            if attempt == max_retries:
                break

            wait_time = delay * (backoff_factor ** attempt)
            logger.warning(
                f"Attempt {attempt + 1} failed, retrying in {wait_time}s",
                error=str(e)
            )
            await asyncio.sleep(wait_time)

    raise last_exception


def batch_items(items: List[Any], batch_size: int) -> List[List[Any]]:
    """Split list into batches"""
    batches = []
    for i in range(0, len(items), batch_size):
        batches.append(items[i:i + batch_size])
    return batches
