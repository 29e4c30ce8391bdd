import asyncio
import logging
from typing import List, Optional

import httpx

import settings
from models.judge import (
    JUDGE0_STATUS,
    ExecutionLimits,
    ExecutionResult,
    JudgeStatus,
    TestCaseResult,
)
from services.errors import JudgeRejected, JudgeUnavailable

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

RESULT_FIELDS = "token,stdout,stderr,compile_output,message,status,time,memory,exit_code"

MEMORY_UNITS = {"B": 1024.0, "KB": 1.0, "MB": 1 / 1024.0}


def normalize_memory(kilobytes, unit: str) -> float:
    """Judge0 reports memory in KB; convert to the unit the caller asked for."""
    try:
        factor = MEMORY_UNITS[unit.upper()]
    except KeyError:
        raise ValueError(f"Unsupported memory unit: {unit}")
    return float(kilobytes or 0) * factor


def limits_for_question(question: dict) -> ExecutionLimits:
    memory_mb = question.get("memoryLimit")
    return ExecutionLimits(
        cpuTimeLimit=question.get("timeLimit"),
        memoryLimit=int(memory_mb * 1024) if memory_mb else None,
    )


class JudgeClient:
    """Client for a Judge0 compatible execution service.

    submit() hands one source/stdin pair over and returns a token, poll() reads
    the token back once, and wait_for_result() polls until the status is
    terminal or the poll ceiling is hit, in which case a TIMEOUT result comes
    back instead of an exception.
    """

    def __init__(self, base_url=None, api_key=None, api_host=None, poll_interval=None, max_polls=None,
                 submit_retries=None, request_timeout=None, memory_unit=None, transport=None):
        self.base_url = (base_url or settings.JUDGE0_URL).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.JUDGE0_API_KEY
        self.api_host = api_host if api_host is not None else settings.JUDGE0_API_HOST
        self.poll_interval = settings.JUDGE_POLL_INTERVAL if poll_interval is None else poll_interval
        self.max_polls = settings.JUDGE_MAX_POLLS if max_polls is None else max_polls
        self.submit_retries = settings.JUDGE_SUBMIT_RETRIES if submit_retries is None else submit_retries
        self.request_timeout = settings.JUDGE_REQUEST_TIMEOUT if request_timeout is None else request_timeout
        self.memory_unit = memory_unit or settings.JUDGE_MEMORY_UNIT
        self.transport = transport

    def _headers(self):
        if not self.api_key:
            return {}
        if self.api_host:
            return {"X-RapidAPI-Key": self.api_key, "X-RapidAPI-Host": self.api_host}
        return {"X-Auth-Token": self.api_key}

    def _client(self):
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers(),
            timeout=self.request_timeout,
            transport=self.transport,
        )

    async def submit(self, source_code: str, language_id: int, stdin: str = "",
                     limits: Optional[ExecutionLimits] = None, client=None) -> str:
        if client is None:
            async with self._client() as client:
                return await self.submit(source_code, language_id, stdin, limits, client=client)

        payload = {"source_code": source_code, "language_id": language_id, "stdin": stdin}
        if limits is not None:
            if limits.cpuTimeLimit is not None:
                payload["cpu_time_limit"] = limits.cpuTimeLimit
            if limits.memoryLimit is not None:
                payload["memory_limit"] = limits.memoryLimit
        try:
            response = await client.post(
                "/submissions",
                params={"base64_encoded": "false", "wait": "false"},
                json=payload,
            )
            response.raise_for_status()
            token = response.json().get("token")
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            if 400 <= status < 500 and status != 429:
                logger.warning(f"Judge refused submission: HTTP {status}")
                raise JudgeRejected(f"Judge refused the submission (HTTP {status})")
            logger.warning(f"Judge failed on submit: HTTP {status}")
            raise JudgeUnavailable(f"Judge returned HTTP {status}")
        except httpx.RequestError as e:
            logger.warning(f"Judge unreachable on submit: {type(e).__name__}: {e}")
            raise JudgeUnavailable("Judge service is unreachable")
        except ValueError:
            raise JudgeUnavailable("Judge returned a malformed response")
        if not token:
            raise JudgeUnavailable("Judge response did not include a token")
        return token

    async def poll(self, token: str, client=None) -> ExecutionResult:
        if client is None:
            async with self._client() as client:
                return await self.poll(token, client=client)

        try:
            response = await client.get(
                f"/submissions/{token}",
                params={"base64_encoded": "false", "fields": RESULT_FIELDS},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            raise JudgeUnavailable(f"Judge returned HTTP {e.response.status_code} for {token}")
        except httpx.RequestError as e:
            raise JudgeUnavailable(f"Judge unreachable while polling {token}: {type(e).__name__}")
        except ValueError:
            raise JudgeUnavailable("Judge returned a malformed response")
        try:
            return self._normalize(token, data)
        except (TypeError, ValueError):
            raise JudgeUnavailable(f"Judge returned an unreadable result for {token}")

    def _normalize(self, token: str, data: dict) -> ExecutionResult:
        status_info = data.get("status") or {}
        status = JUDGE0_STATUS.get(status_info.get("id"), JudgeStatus.JUDGE_ERROR)
        return ExecutionResult(
            token=token,
            status=status,
            statusDescription=status_info.get("description"),
            stdout=data.get("stdout") or "",
            stderr=data.get("stderr") or "",
            compileOutput=data.get("compile_output") or "",
            time=float(data.get("time") or 0),
            memory=normalize_memory(data.get("memory"), self.memory_unit),
            exitCode=data.get("exit_code"),
            message=data.get("message"),
        )

    async def wait_for_result(self, token: str, client=None) -> ExecutionResult:
        if client is None:
            async with self._client() as client:
                return await self.wait_for_result(token, client=client)

        failures = 0
        last_error = None
        for _ in range(self.max_polls):
            await asyncio.sleep(self.poll_interval)
            try:
                result = await self.poll(token, client=client)
            except JudgeUnavailable as e:
                failures += 1
                last_error = e.message
                logger.warning(f"Poll failed for {token}: {e.message}")
                continue
            if result.is_terminal:
                return result

        if self.max_polls and failures == self.max_polls:
            return ExecutionResult(token=token, status=JudgeStatus.JUDGE_ERROR, message=last_error)
        logger.warning(f"Judge timeout: {token} still pending after {self.max_polls} polls")
        return ExecutionResult(
            token=token,
            status=JudgeStatus.TIMEOUT,
            message=f"No verdict after {self.max_polls} polls",
        )

    async def submit_with_retry(self, source_code: str, language_id: int, stdin: str = "",
                                limits: Optional[ExecutionLimits] = None, client=None) -> str:
        last_error = None
        for attempt in range(self.submit_retries + 1):
            try:
                return await self.submit(source_code, language_id, stdin, limits, client=client)
            except JudgeUnavailable as e:
                last_error = e
                logger.warning(f"Submit attempt {attempt + 1} failed: {e.message}")
                if attempt < self.submit_retries:
                    await asyncio.sleep(self.poll_interval)
        raise last_error

    async def execute(self, source_code: str, language_id: int, stdin: str = "",
                      limits: Optional[ExecutionLimits] = None, client=None) -> ExecutionResult:
        if client is None:
            async with self._client() as client:
                return await self.execute(source_code, language_id, stdin, limits, client=client)
        token = await self.submit_with_retry(source_code, language_id, stdin, limits, client=client)
        return await self.wait_for_result(token, client=client)

    async def run_batch(self, source_code: str, language_id: int, test_cases: List[dict],
                        limits: Optional[ExecutionLimits] = None) -> List[TestCaseResult]:
        """Run every test case concurrently.

        A case the judge could not run comes back as a judge error without sinking the others.
        A submission the judge refuses outright fails the whole batch with JudgeRejected.
        """
        async with self._client() as client:
            results = await asyncio.gather(*[
                self._run_case(client, source_code, language_id, index, test_case, limits)
                for index, test_case in enumerate(test_cases)
            ], return_exceptions=True)
        # a refused submission fails the whole batch, after every case has settled
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return list(results)

    async def _run_case(self, client, source_code, language_id, index, test_case, limits) -> TestCaseResult:
        try:
            execution = await self.execute(source_code, language_id, test_case.get("input", ""), limits,
                                           client=client)
        except JudgeUnavailable as e:
            logger.warning(f"Test case {index} could not be judged: {e.message}")
            execution = ExecutionResult(status=JudgeStatus.JUDGE_ERROR, message=e.message)

        expected = test_case.get("expectedOutput", "")
        status = execution.status
        passed = status == JudgeStatus.ACCEPTED and execution.stdout == expected
        if status == JudgeStatus.ACCEPTED and not passed:
            status = JudgeStatus.WRONG_ANSWER
        return TestCaseResult(
            testCase=index,
            passed=passed,
            status=status,
            isHidden=test_case.get("isHidden", False),
            input=test_case.get("input", ""),
            actualOutput=execution.stdout,
            expectedOutput=expected,
            executionTime=execution.time,
            memoryUsage=execution.memory,
            stderr=execution.stderr,
            compileOutput=execution.compileOutput,
            errorMessage=execution.message,
        )
