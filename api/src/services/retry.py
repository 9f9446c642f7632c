import httpx
import logging
from typing import Awaitable, Callable
from dataclasses import dataclass
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_result,
    stop_after_attempt,
    wait_fixed
)

from clients.kommo import KommoApiError
from clients.flitt import FlittApiError


logger = logging.getLogger('kommo-pay-retry')

RETRYABLE_ERRORS = (KommoApiError, FlittApiError, httpx.HTTPError)


@dataclass(frozen=True)
class RetryPolicy:
    """Фиксированное число попыток с фиксированной паузой, без экспоненты."""

    attempts: int = 2
    delay: float = 5.0

    async def run(self, operation: Callable[[], Awaitable[bool]], description: str) -> bool:
        def log_attempt(state: RetryCallState):
            assert state.outcome is not None
            if state.outcome.failed:
                logger.warning(
                    f'{description}: attempt {state.attempt_number}/{self.attempts} '
                    f'failed: {state.outcome.exception()}'
                )
            else:
                logger.warning(f'{description}: attempt {state.attempt_number}/{self.attempts} was not successful')

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_fixed(self.delay),
            retry=retry_if_exception_type(RETRYABLE_ERRORS) | retry_if_result(lambda ok: not ok),
            after=log_attempt,
            retry_error_callback=lambda state: False
        )
        return await retrying(operation)
