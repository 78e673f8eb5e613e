"""
fal.ai Provider.

Talks to the fal.ai REST API with httpx:
- POST {run_url}/{model}            synchronous run, returns the model output
- POST {run_url}/{model}/stream     server-sent events, last event is the result
- POST {rest_url}/storage/upload/initiate + PUT   two-step file upload

Requests authenticate with "Authorization: Key <credential>". The
credential is either the server's own key or one supplied by the caller.
"""

import json
from typing import Any, Dict, Optional

import httpx
import structlog

from image_gateway.gateway.adapters.base import ProviderBase, UpstreamRequest
from image_gateway.gateway.adapters.results import FalResult, FalStreamResult
from image_gateway.gateway.errors import UpstreamError, UpstreamTimeout

logger = structlog.get_logger(__name__)


class FalClient(ProviderBase):
    """Client for fal.ai model runs and storage uploads."""

    PROVIDER_TYPE = "fal"

    UPLOAD_INITIATE_PATH = "/storage/upload/initiate"
    STORAGE_TYPE = "fal-cdn-v3"
    REQUEST_ID_HEADER = "x-fal-request-id"

    def __init__(
        self,
        credentials: Optional[str] = None,
        run_url: str = "https://fal.run",
        rest_url: str = "https://rest.alpha.fal.ai",
        timeout: float = 100,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.credentials = credentials
        self.run_url = run_url.rstrip("/")
        self.rest_url = rest_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            transport=transport,
            follow_redirects=False,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def _headers(self, credentials: Optional[str], accept: str = "application/json") -> Dict[str, str]:
        key = credentials or self.credentials
        if not key:
            raise UpstreamError(
                "Provider credentials are not configured",
                status_code=503,
            )
        return {
            "Authorization": f"Key {key}",
            "Content-Type": "application/json",
            "Accept": accept,
        }

    def build_run_request(
        self,
        model: str,
        input: Dict[str, Any],
        credentials: Optional[str] = None,
        stream: bool = False,
    ) -> UpstreamRequest:
        """Build the HTTP request for a model run."""
        url = f"{self.run_url}/{model}"
        if stream:
            url = f"{url}/stream"
        return UpstreamRequest(
            method="POST",
            url=url,
            headers=self._headers(credentials, "text/event-stream" if stream else "application/json"),
            body=input,
        )

    async def subscribe(
        self,
        model: str,
        input: Dict[str, Any],
        credentials: Optional[str] = None,
    ) -> FalResult:
        """Run a model and wait for its output."""
        upstream_request = self.build_run_request(model, input, credentials)

        try:
            response = await self._client.request(
                method=upstream_request.method,
                url=upstream_request.url,
                headers=upstream_request.headers,
                json=upstream_request.body,
            )
        except httpx.TimeoutException:
            raise UpstreamTimeout(self.timeout)
        except httpx.HTTPError as e:
            logger.error("Provider request failed", model=model, error=type(e).__name__)
            raise UpstreamError("FAL API error", detail="Could not reach provider")

        self._raise_for_status(response, model)

        try:
            payload = response.json()
        except ValueError:
            raise UpstreamError("FAL API error", detail="Provider returned invalid JSON")
        if not isinstance(payload, dict):
            payload = {"output": payload}

        return FalResult.from_payload(payload, request_id=response.headers.get(self.REQUEST_ID_HEADER))

    async def stream(
        self,
        model: str,
        input: Dict[str, Any],
        credentials: Optional[str] = None,
    ) -> FalStreamResult:
        """Run a model over SSE and collect its events."""
        upstream_request = self.build_run_request(model, input, credentials, stream=True)
        result = FalStreamResult()

        try:
            async with self._client.stream(
                method=upstream_request.method,
                url=upstream_request.url,
                headers=upstream_request.headers,
                json=upstream_request.body,
            ) as response:
                if response.status_code >= 400:
                    await response.aread()
                    self._raise_for_status(response, model)

                async for line in response.aiter_lines():
                    if not line.startswith("data:"):
                        continue
                    data = line[len("data:"):].strip()
                    if not data or data == "[DONE]":
                        continue
                    result.event_count += 1
                    try:
                        event = json.loads(data)
                    except ValueError:
                        result.chunks.append(data)
                        continue
                    if isinstance(event, dict):
                        result.final = event
                    elif isinstance(event, str):
                        result.chunks.append(event)
        except httpx.TimeoutException:
            raise UpstreamTimeout(self.timeout)
        except httpx.HTTPError as e:
            logger.error("Provider stream failed", model=model, error=type(e).__name__)
            raise UpstreamError("FAL API error", detail="Could not reach provider")

        logger.debug("Provider stream finished", model=model, events=result.event_count)
        return result

    async def upload(
        self,
        content: bytes,
        content_type: str,
        file_name: str,
        credentials: Optional[str] = None,
    ) -> str:
        """Upload a file to fal storage and return its public URL."""
        headers = self._headers(credentials)

        try:
            initiate = await self._client.post(
                f"{self.rest_url}{self.UPLOAD_INITIATE_PATH}",
                params={"storage_type": self.STORAGE_TYPE},
                headers=headers,
                json={"content_type": content_type, "file_name": file_name},
            )
            self._raise_for_status(initiate, "storage")

            target = initiate.json()
            upload_url = target.get("upload_url")
            file_url = target.get("file_url")
            if not upload_url or not file_url:
                raise UpstreamError("FAL API error", detail="Upload target missing from response")

            put = await self._client.put(
                upload_url,
                content=content,
                headers={"Content-Type": content_type},
            )
            self._raise_for_status(put, "storage")
        except httpx.TimeoutException:
            raise UpstreamTimeout(self.timeout)
        except httpx.HTTPError as e:
            logger.error("Provider upload failed", error=type(e).__name__)
            raise UpstreamError("FAL API error", detail="Could not reach provider")
        except ValueError:
            raise UpstreamError("FAL API error", detail="Provider returned invalid JSON")

        logger.info("Uploaded file to provider storage", file_name=file_name, size=len(content))
        return file_url

    @staticmethod
    def _raise_for_status(response: httpx.Response, model: str) -> None:
        if response.status_code < 400:
            return

        detail = None
        try:
            body = response.json()
            if isinstance(body, dict):
                error = body.get("detail") or body.get("error") or body.get("message")
                if isinstance(error, dict):
                    error = error.get("message")
                if isinstance(error, str):
                    detail = error
        except ValueError:
            pass

        logger.warning(
            "Provider returned error",
            model=model,
            status_code=response.status_code,
        )
        raise UpstreamError.from_status(response.status_code, detail=detail)
