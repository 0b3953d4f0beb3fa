"""
Webhook delivery with retries.

Transient failures (network errors, 5xx, 429) are retried with exponential
backoff and jitter; a 4xx means the payload was refused and is not retried.
"""

import logging
import random
import time
from functools import wraps
from typing import Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    """Webhook delivery failed."""

    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None, retry_after: float = 0):
        self.message = message
        self.status_code = status_code
        self.retry_after = retry_after
        super().__init__(message)


class WebhookServerError(WebhookError):
    """The endpoint was unreachable, failing or rate limiting."""
    retryable = True


class WebhookClientError(WebhookError):
    """The endpoint refused the payload."""


def backoff_delay(attempt: int, base_delay: float, max_delay: float, jitter: bool = True) -> float:
    """Seconds to wait before retry number ``attempt`` (0-based)."""
    delay = min(base_delay * (2 ** attempt), max_delay)
    if jitter:
        delay *= 0.5 + random.random() * 0.5
    return delay


def exponential_backoff(max_retries: int = 3, base_delay: float = 1.0, max_delay: float = 60.0, jitter: bool = True):
    """
    Retry the wrapped call while it raises a retryable ``WebhookError``.

    The call runs at most ``max_retries + 1`` times. A server-supplied
    ``retry_after`` is honoured when it is longer than the computed delay.
    """
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except WebhookError as e:
                    if not e.retryable or attempt >= max_retries:
                        if e.retryable:
                            logger.error(f"{func.__name__} gave up after {attempt + 1} attempts: {e.message}")
                        raise
                    delay = max(backoff_delay(attempt, base_delay, max_delay, jitter), e.retry_after)
                    logger.warning(f"{func.__name__} attempt {attempt + 1} failed ({e.message}); retrying in {delay:.2f}s")
                    time.sleep(delay)
                    attempt += 1
        return wrapper
    return decorator


def parse_webhook_response(response) -> dict:
    """Return the JSON body of a successful response or raise for an error status."""
    try:
        body = response.json() if response.content else {}
    except ValueError:
        body = {}
    status_code = response.status_code

    if status_code == 429:
        retry_after = body.get('retry_after') or response.headers.get('Retry-After') or 1
        raise WebhookServerError("Rate limited", status_code=429, retry_after=float(retry_after))
    if status_code >= 500:
        raise WebhookServerError(body.get('message') or f"Server error {status_code}", status_code=status_code)
    if status_code >= 400:
        raise WebhookClientError(body.get('message') or f"Client error {status_code}", status_code=status_code)
    return body


@exponential_backoff(max_retries=3)
def post_webhook(url: str, payload: dict, timeout: Optional[float] = None) -> dict:
    """POST ``payload`` as JSON to ``url``."""
    timeout = timeout or getattr(settings, 'LOOT_WEBHOOK_TIMEOUT', 10)
    try:
        response = requests.post(url, json=payload, timeout=timeout)
    except requests.exceptions.RequestException as e:
        raise WebhookServerError(f"Webhook request failed: {e}")
    return parse_webhook_response(response)
