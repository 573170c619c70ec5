"""
dify_client.py: Async client facade for the Dify application API

Usage:
    client = DifyClient(DifyConfig(base_url="https://api.dify.ai/v1", api_key=key))
    answer = await client.chat.send_message("hi", user="alice")
    events = await client.workflow.run_workflow(
        inputs={...}, user="alice", response_mode="streaming", on_chunk=print,
    )

Configuration is immutable: with_config() returns a new client with its own
endpoint handles. Every request opens its own httpx.AsyncClient, so client
instances can be shared freely between concurrent tasks.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Pattern, Sequence

import httpx

from config_loader import DifyConfig, load_config, redact_headers
from dify_api import AppAPI, ChatAPI, CompletionAPI, ConversationAPI, FileAPI, WorkflowAPI
from dify_errors import DifyConnectionError
from http_utils import build_url, create_headers, handle_response, raise_for_status
from sse_decoder import ChunkCallback, handle_stream_response

logger = logging.getLogger("dify.client")


class DifyClient:
    """Unified entry point to all Dify endpoint groups."""

    def __init__(
        self,
        config: DifyConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport

        self.chat = ChatAPI(self)
        self.completion = CompletionAPI(self)
        self.workflow = WorkflowAPI(self)
        self.conversation = ConversationAPI(self)
        self.file = FileAPI(self)
        self.app = AppAPI(self)

    @classmethod
    def from_config_file(
        cls,
        path: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        extra_env_patterns: Sequence[Pattern] = (),
        **overrides: Any,
    ) -> "DifyClient":
        config = load_config(path, overrides or None, list(extra_env_patterns))
        return cls(config, transport=transport)

    @property
    def config(self) -> DifyConfig:
        return self._config

    def with_config(self, **changes: Any) -> "DifyClient":
        """Return a new client with updated config. This client is unchanged."""
        return DifyClient(self._config.replace(**changes), transport=self._transport)

    # --- Request execution ---

    async def request_json(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Mapping[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
        files: Optional[Dict[str, tuple]] = None,
        data: Optional[Dict[str, str]] = None,
        include_content_type: bool = True,
    ) -> Any:
        """Blocking call: send and return the parsed JSON body."""
        response = await self._request(
            method, path, params, json_body, files, data, include_content_type
        )
        return handle_response(response)

    async def request_bytes(
        self,
        method: str,
        path: str,
        *,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> bytes:
        """Blocking call for binary bodies (text-to-audio)."""
        response = await self._request(method, path, None, json_body, None, None, True)
        raise_for_status(response)
        return response.content

    async def request_stream(
        self,
        path: str,
        json_body: Dict[str, Any],
        on_chunk: Optional[ChunkCallback] = None,
    ) -> List[Any]:
        """POST and drain the event stream. Fails fast on a non-2xx status."""
        url = build_url(self._config.base_url, path)
        headers = create_headers(self._config.api_key, self._config.extra_headers)
        logger.debug("POST %s (stream) headers=%s", url, redact_headers(headers))

        async with self._http_client() as client:
            request = client.build_request("POST", url, headers=headers, json=json_body)
            response = await self._send(client, request, stream=True)

            if not response.is_success:
                try:
                    await response.aread()
                finally:
                    await response.aclose()
                raise_for_status(response)

            return await handle_stream_response(response, on_chunk)

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Mapping[str, Any]],
        json_body: Optional[Dict[str, Any]],
        files: Optional[Dict[str, tuple]],
        data: Optional[Dict[str, str]],
        include_content_type: bool,
    ) -> httpx.Response:
        url = build_url(self._config.base_url, path, params)
        headers = create_headers(
            self._config.api_key, self._config.extra_headers, include_content_type
        )
        logger.debug("%s %s headers=%s", method, url, redact_headers(headers))

        async with self._http_client() as client:
            request = client.build_request(
                method, url, headers=headers, json=json_body, files=files, data=data
            )
            return await self._send(client, request)

    async def _send(
        self,
        client: httpx.AsyncClient,
        request: httpx.Request,
        stream: bool = False,
    ) -> httpx.Response:
        try:
            return await client.send(request, stream=stream)
        except httpx.TimeoutException as e:
            raise DifyConnectionError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise DifyConnectionError(f"Connection failed: {e}") from e

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._config.timeout(), transport=self._transport)
