"""
GENESIS KIE.ai Task Client
===============================================================================
Submit-then-poll helper shared by the image and video agents.

KIE.ai generation endpoints accept a job, hand back a taskId and expose a
record-info endpoint reporting successFlag:
    0 = still generating, 1 = completed, anything else = failed

Author: Barrios A2I
Version: 3.0.0
===============================================================================
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

import httpx

from agents.base import AdapterError, error_from_httpx, error_from_status
from schemas.generation_schema import ErrorCode

logger = logging.getLogger("genesis.kie")

KIE_BASE_URL = "https://api.kie.ai/api/v1"


class KieTaskClient:
    """Thin async client for KIE.ai task endpoints"""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = KIE_BASE_URL,
        poll_interval: float = 5.0,
        max_poll_time: float = 90.0,
        http_client: Optional[httpx.AsyncClient] = None,
        sleep: Callable[[float], Any] = asyncio.sleep
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.max_poll_time = max_poll_time
        self._http = http_client
        self._sleep = sleep

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        url = f"{self.base_url}{path}"
        try:
            if self._http is not None:
                return await self._http.request(method, url, headers=self._headers(), **kwargs)
            async with httpx.AsyncClient(timeout=30.0) as client:
                return await client.request(method, url, headers=self._headers(), **kwargs)
        except httpx.HTTPError as e:
            raise error_from_httpx("KIE.ai", e) from e

    async def submit(self, path: str, payload: Dict[str, Any]) -> str:
        """Submit a generation job and return its taskId"""
        if not self.is_configured:
            raise AdapterError(ErrorCode.BAD_REQUEST, "KIE_API_KEY not set", retryable=False)

        response = await self._request("POST", path, json=payload)

        if response.status_code == 402:
            # Credits exhausted - retrying cannot help
            logger.critical("KIE.AI CREDITS EXHAUSTED - Please add credits at https://kie.ai")
            raise AdapterError(ErrorCode.BAD_REQUEST, "KIE.ai credits exhausted", retryable=False, status_code=402)
        if response.status_code != 200:
            raise error_from_status("KIE.ai", response.status_code, response.text)

        data = response.json()
        if data.get("code") != 200:
            code = data.get("code") or 0
            raise error_from_status("KIE.ai", int(code) if str(code).isdigit() else 500, data.get("msg", ""))

        task_id = (data.get("data") or {}).get("taskId")
        if not task_id:
            raise AdapterError(ErrorCode.EMPTY_OUTPUT, f"No taskId in KIE.ai response: {data}", retryable=True)

        logger.info(f"[KIE] Task started: {task_id} ({path})")
        return task_id

    async def wait_for(
        self,
        path: str,
        task_id: str,
        extract_url: Callable[[Dict[str, Any]], Optional[str]]
    ) -> str:
        """Poll record-info until the task finishes and return the result URL"""
        started = time.monotonic()
        polls = 0

        while time.monotonic() - started < self.max_poll_time:
            await self._sleep(self.poll_interval)
            polls += 1

            response = await self._request("GET", path, params={"taskId": task_id})
            if response.status_code != 200:
                logger.debug(f"[KIE] Poll #{polls} for {task_id} returned {response.status_code}, continuing")
                continue

            task_data = response.json().get("data") or {}
            success_flag = task_data.get("successFlag")

            if success_flag == 1:
                url = extract_url(task_data)
                if not url:
                    raise AdapterError(ErrorCode.EMPTY_OUTPUT, f"KIE.ai task {task_id} completed without a result URL", retryable=True)
                logger.info(f"[KIE] Task {task_id} completed after {polls} polls")
                return url

            if success_flag not in (0, None):
                message = task_data.get("errorMessage") or "generation failed"
                raise AdapterError(ErrorCode.ADAPTER_ERROR, f"KIE.ai task {task_id} failed: {message}", retryable=False)

        raise AdapterError(
            ErrorCode.ADAPTER_TIMEOUT,
            f"KIE.ai task {task_id} still running after {self.max_poll_time:.0f}s",
            retryable=False
        )

    async def download(self, url: str) -> bytes:
        """Fetch a generated asset so it can be re-hosted"""
        try:
            if self._http is not None:
                response = await self._http.get(url)
            else:
                async with httpx.AsyncClient(timeout=60.0, follow_redirects=True) as client:
                    response = await client.get(url)
        except httpx.HTTPError as e:
            raise error_from_httpx("KIE.ai download", e) from e

        if response.status_code != 200:
            raise error_from_status("KIE.ai download", response.status_code)
        return response.content
