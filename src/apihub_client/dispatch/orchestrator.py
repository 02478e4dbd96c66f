"""Single dispatch entry point for gateway calls.

Three mutually exclusive modes, chosen per request:
- stream: returns an EventStream over the SSE body.
- output: saves binary bodies, downloaded media, or the JSON itself to a file.
- inline: returns the parsed JSON body.
"""
from __future__ import annotations
import json
import logging
from typing import Any

import httpx

from apihub_client.common.config import GatewayConfig
from apihub_client.common.errors import GatewayError
from apihub_client.common.schema import RunRequest, Saved, SavedOutcome
from apihub_client.dispatch.classifier import check_gateway_error, classify, materialize, save_stream
from apihub_client.transport.http import ResilientTransport, body_read_error
from apihub_client.transport.sse import EventStream

LOGGER = logging.getLogger("apihub.dispatch")

RUN_PATH = "/run"
MODELS_PATH = "/models"
SEND_EMAIL_PATH = "/send-email"
SEND_EMAILS_PATH = "/send-emails"
BINARY_CONTENT_MARKERS = ("audio", "octet-stream")


def is_binary_content(content_type: str) -> bool:
    content_type = content_type.lower()
    return any(marker in content_type for marker in BINARY_CONTENT_MARKERS)


async def read_json(response: httpx.Response) -> Any:
    """Read a full response body as JSON; a non-JSON body is reported as a gateway error."""
    try:
        await response.aread()
    except httpx.HTTPError as e:
        raise body_read_error(e, response.status_code) from e
    finally:
        await response.aclose()
    try:
        return response.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        excerpt = response.text[:200]
        raise GatewayError(
            response.status_code,
            f"Gateway returned a non-JSON body ({response.status_code}): {excerpt}",
        ) from e


class Dispatcher:
    """
    Runs RunRequests against the gateway.

    Args:
        config: Process configuration; read-only for the dispatcher's lifetime.
        transport: Optional transport, built from config when omitted.
    """

    def __init__(self, config: GatewayConfig, transport: ResilientTransport | None = None) -> None:
        self.config = config
        self._owns_transport = transport is None
        self.transport = transport or ResilientTransport(config)

    async def __aenter__(self) -> "Dispatcher":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:  # noqa: ANN001
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_transport:
            await self.transport.aclose()

    def _headers(self, api_key: str, json_body: bool = True) -> dict[str, str]:
        headers = {"Authorization": f"Bearer {api_key}"}
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _post_run(self, request: RunRequest) -> httpx.Response:
        api_key = self.config.require_api_key()
        LOGGER.debug("POST %s model=%s stream=%s", RUN_PATH, request.model, request.stream)
        return await self.transport.send(
            "POST",
            self.config.endpoint(RUN_PATH),
            headers=self._headers(api_key),
            json=request.envelope(),
        )

    async def dispatch(self, request: RunRequest) -> EventStream | SavedOutcome | Any:
        """
        Execute one request in the mode its fields select.

        Returns:
            EventStream when request.stream, a Saved/Processing outcome when
            request.output is set, otherwise the JSON body unmodified.

        Raises:
            ConfigurationError, TransportError, GatewayError, MediaDownloadError.
        """
        response = await self._post_run(request)

        if request.stream:
            return EventStream.from_response(response)

        if request.output:
            return await self._save_output(response, request.output)

        body = await read_json(response)
        check_gateway_error(body)
        return body

    async def _save_output(self, response: httpx.Response, dest: str) -> SavedOutcome:
        content_type = response.headers.get("content-type", "")
        if is_binary_content(content_type):
            LOGGER.debug("Binary response (%s); writing straight to %s", content_type, dest)
            try:
                await save_stream(response, dest)
            except httpx.HTTPError as e:
                raise body_read_error(e, response.status_code) from e
            media_type = "audio" if "audio" in content_type.lower() else "file"
            return Saved(path=dest, media_type=media_type)

        body = await read_json(response)
        return await materialize(classify(body), dest, self.transport)

    async def run(
        self,
        model: str,
        inputs: dict[str, Any] | None = None,
        stream: bool = False,
        output: str | None = None,
        auto_fallback: bool = True,
    ) -> EventStream | SavedOutcome | Any:
        """Keyword form of dispatch()."""
        request = RunRequest(
            model=model,
            inputs=inputs or {},
            stream=stream,
            output=output,
            auto_fallback=auto_fallback,
        )
        return await self.dispatch(request)

    async def post_json(self, path: str, payload: dict[str, Any]) -> Any:
        """
        Authenticated JSON POST to a gateway endpoint other than /run.

        Same retry, body-read and gateway error handling as inline dispatch.
        """
        api_key = self.config.require_api_key()
        LOGGER.debug("POST %s", path)
        response = await self.transport.send(
            "POST",
            self.config.endpoint(path),
            headers=self._headers(api_key),
            json=payload,
        )
        body = await read_json(response)
        check_gateway_error(body)
        return body

    async def send_email(self, payload: dict[str, Any]) -> Any:
        return await self.post_json(SEND_EMAIL_PATH, payload)

    async def send_batch_emails(self, payload: dict[str, Any]) -> Any:
        return await self.post_json(SEND_EMAILS_PATH, payload)

    async def list_models(self, type: str | None = None, vendor: str | None = None) -> dict[str, Any]:  # noqa: A002
        """
        Fetch the gateway's model catalogue, optionally filtered.

        Args:
            type: Match against each model's `category` or `type`, case-insensitive.
            vendor: Match against each model's `vendor`, case-insensitive.

        Returns:
            {"count": int, "models": [...]}
        """
        api_key = self.config.require_api_key()
        response = await self.transport.send(
            "GET",
            self.config.endpoint(MODELS_PATH),
            headers=self._headers(api_key, json_body=False),
        )
        body = await read_json(response)
        check_gateway_error(body)
        models = body.get("models", []) if isinstance(body, dict) else []
        models = [m for m in models if isinstance(m, dict)]

        if type:
            wanted = type.lower()
            models = [
                m for m in models
                if str(m.get("category") or "").lower() == wanted
                or str(m.get("type") or "").lower() == wanted
            ]
        if vendor:
            wanted = vendor.lower()
            models = [m for m in models if str(m.get("vendor") or "").lower() == wanted]

        return {"count": len(models), "models": models}
