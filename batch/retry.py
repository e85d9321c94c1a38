"""
Retry engine for failed batch rows.

Each failure record is replayed independently. Starting from the record's
current ``attempt``, the engine waits ``retry_delay_ms`` and calls the row
processor again, for as long as ``attempt <= max_attempts``. A row that never
succeeds is returned with its final attempt count and last error.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple, Union

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_none

from batch.models import FailureRecord, RetryPolicy, RetryResult
from config import config, AppConfig
from core.logger import get_structured_logger
from core.utils import error_message

RowProcessor = Callable[[str, Any], Awaitable[Any]]

logger = logging.getLogger(__name__)


class RetryEngine:
    def __init__(
        self,
        process_row: RowProcessor,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        app_config: Optional[AppConfig] = None,
    ):
        self.process_row = process_row
        self.sleep = sleep
        self.app_config = app_config or config
        self.structured_logger = get_structured_logger(__name__)

    def default_policy(self) -> RetryPolicy:
        return RetryPolicy.from_config(self.app_config.retry)

    async def retry_failed_submissions(
        self,
        failures: Iterable[Union[FailureRecord, Dict[str, Any]]],
        retry_policy: Optional[RetryPolicy] = None,
    ) -> RetryResult:
        """
        Replay failed rows under ``retry_policy`` (config defaults when omitted).

        Returns the results of rows that eventually succeeded and the failure
        records of rows that exhausted their attempts.
        """
        policy = retry_policy or self.default_policy()
        outcome = RetryResult()
        for raw in failures:
            failure = raw if isinstance(raw, FailureRecord) else FailureRecord.model_validate(raw)
            succeeded, value = await self._retry_one(failure, policy)
            if succeeded:
                outcome.succeeded.append(value)
            else:
                outcome.failures.append(value)
        logger.info(
            f"Retry finished: {len(outcome.succeeded)} succeeded, {len(outcome.failures)} still failing"
        )
        return outcome

    async def _retry_one(self, failure: FailureRecord, policy: RetryPolicy) -> Tuple[bool, Any]:
        state = {"attempt": failure.attempt, "error": failure.error}
        remaining = policy.max_attempts - state["attempt"] + 1
        if remaining <= 0:
            return False, failure.model_copy(deep=True)

        op_logger = self.structured_logger.bind(profile=failure.profile)

        async def attempt_once():
            await self.sleep(policy.retry_delay_ms / 1000.0)
            try:
                return await self.process_row(failure.profile, failure.row)
            except Exception as e:
                state["error"] = error_message(e)
                op_logger.warning("retry_failure", attempt=state["attempt"], error=state["error"])
                state["attempt"] += 1
                raise

        retrying = AsyncRetrying(
            stop=stop_after_attempt(remaining),
            wait=wait_none(),
            retry=retry_if_exception_type(Exception),
            reraise=True,
        )
        try:
            result = await retrying(attempt_once)
        except Exception:
            return False, failure.model_copy(
                update={"error": state["error"], "attempt": state["attempt"]}, deep=True
            )
        op_logger.info("retry_success", attempt=state["attempt"])
        return True, result
