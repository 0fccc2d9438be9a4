"""
Tenacity retry policies for the console's collaborators.

OpenAI calls (assistant replies, transcription) are retried with exponential
backoff except for errors a retry cannot fix. Evolution API calls are only
retried when the gateway could not be reached at all.
"""

import logging

import httpx
import openai
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from zapdesk.utils.logger import logger


# Rejections that fail the same way on every attempt
NON_RETRYABLE_API_ERRORS = (
    openai.AuthenticationError,
    openai.BadRequestError,
    openai.PermissionDeniedError,
)


def retry_on_api_error(max_attempts: int = 3, min_wait: int = 1, max_wait: int = 10):
    """
    Retry a blocking OpenAI call with exponential backoff.

    Example:
        @retry_on_api_error(max_attempts=2, max_wait=5)
        def _call_openai_api(self, audio, mime_type):
            ...
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        retry=retry_if_not_exception_type(NON_RETRYABLE_API_ERRORS),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def retry_on_connection_error(max_attempts: int = 3):
    """
    Retry an async gateway call on connection errors and timeouts only.

    HTTP status errors are not retried: the gateway answered, and sending the
    same message again could deliver it twice.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
