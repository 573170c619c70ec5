"""Endpoint wrappers for the Dify application API.

Thin glue: each method builds a path and a JSON body and forwards to the
owning client's request_json / request_stream / request_bytes. Paths are
relative to the configured base URL, which carries the API version
(e.g. https://api.dify.ai/v1).
"""

from __future__ import annotations

import os
from typing import Any, Dict, List, Optional

from config_loader import RESPONSE_MODES
from http_utils import FileContent, build_multipart
from sse_decoder import ChunkCallback

# Upload categories accepted in "files" entries, keyed by extension
FILE_TYPES: Dict[str, tuple] = {
    "document": (
        ".txt", ".md", ".mdx", ".html", ".htm", ".pdf", ".xlsx", ".xls",
        ".docx", ".doc", ".csv", ".eml", ".msg", ".pptx", ".ppt", ".xml",
        ".epub",
    ),
    "image": (".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg"),
    "audio": (".mp3", ".mpga", ".m4a", ".wav", ".webm", ".amr"),
    "video": (".mp4", ".mov", ".mpeg", ".mpg", ".mpe"),
}


def detect_file_type(filename: str) -> Optional[str]:
    """Map a filename onto document/image/audio/video, or None if unsupported."""
    ext = os.path.splitext(filename)[1].lower()
    for file_type, extensions in FILE_TYPES.items():
        if ext in extensions:
            return file_type
    return None


def _compact(body: Dict[str, Any]) -> Dict[str, Any]:
    """Drop None-valued keys so optional params are not sent."""
    return {key: value for key, value in body.items() if value is not None}


class _EndpointAPI:
    def __init__(self, client: Any):
        self._client = client

    def _user(self, user: Optional[str]) -> str:
        resolved = user or self._client.config.default_user
        if not resolved:
            raise ValueError("'user' is required (pass user= or set default_user)")
        return resolved

    async def _post_with_mode(
        self,
        path: str,
        body: Dict[str, Any],
        response_mode: Optional[str],
        on_chunk: Optional[ChunkCallback],
    ) -> Any:
        """POST in blocking or streaming mode. Streaming returns the event list."""
        mode = response_mode or self._client.config.default_response_mode
        if mode not in RESPONSE_MODES:
            raise ValueError(f"Unknown response mode '{mode}'")

        body = dict(body, response_mode=mode)
        if mode == "streaming":
            return await self._client.request_stream(path, body, on_chunk)
        return await self._client.request_json("POST", path, json_body=body)


class ChatAPI(_EndpointAPI):
    """Chat messages, history, feedback and suggestions."""

    async def send_message(
        self,
        query: str,
        user: Optional[str] = None,
        inputs: Optional[Dict[str, Any]] = None,
        conversation_id: Optional[str] = None,
        files: Optional[List[Dict[str, Any]]] = None,
        auto_generate_name: Optional[bool] = None,
        response_mode: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Any:
        body = _compact({
            "inputs": inputs or {},
            "query": query,
            "user": self._user(user),
            "conversation_id": conversation_id,
            "files": files,
            "auto_generate_name": auto_generate_name,
        })
        return await self._post_with_mode("chat-messages", body, response_mode, on_chunk)

    async def get_messages(
        self,
        conversation_id: str,
        user: Optional[str] = None,
        first_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        params = {
            "conversation_id": conversation_id,
            "user": self._user(user),
            "first_id": first_id,
            "limit": limit,
        }
        return await self._client.request_json(
            "GET", "messages", params=params, include_content_type=False
        )

    async def create_message_feedback(
        self,
        message_id: str,
        rating: Optional[str],
        user: Optional[str] = None,
        content: Optional[str] = None,
    ) -> Dict[str, Any]:
        # rating=None revokes earlier feedback, so it is always sent
        body = {"rating": rating, "user": self._user(user)}
        if content is not None:
            body["content"] = content
        return await self._client.request_json(
            "POST", f"messages/{message_id}/feedbacks", json_body=body
        )

    async def get_message_suggests(
        self, message_id: str, user: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._client.request_json(
            "GET",
            f"messages/{message_id}/suggested",
            params={"user": self._user(user)},
            include_content_type=False,
        )

    async def stop_message_response(
        self, task_id: str, user: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._client.request_json(
            "POST", f"chat-messages/{task_id}/stop", json_body={"user": self._user(user)}
        )


class CompletionAPI(_EndpointAPI):
    """Text-generation (completion) apps."""

    async def send_completion_message(
        self,
        inputs: Optional[Dict[str, Any]] = None,
        user: Optional[str] = None,
        files: Optional[List[Dict[str, Any]]] = None,
        response_mode: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Any:
        body = _compact({
            "inputs": inputs or {},
            "user": self._user(user),
            "files": files,
        })
        return await self._post_with_mode(
            "completion-messages", body, response_mode, on_chunk
        )

    async def stop_completion_message(
        self, task_id: str, user: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._client.request_json(
            "POST",
            f"completion-messages/{task_id}/stop",
            json_body={"user": self._user(user)},
        )


class WorkflowAPI(_EndpointAPI):
    """Workflow runs, their status, logs, and task cancellation."""

    async def run_workflow(
        self,
        inputs: Optional[Dict[str, Any]] = None,
        user: Optional[str] = None,
        files: Optional[List[Dict[str, Any]]] = None,
        response_mode: Optional[str] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> Any:
        body = _compact({
            "inputs": inputs or {},
            "user": self._user(user),
            "files": files,
        })
        return await self._post_with_mode("workflows/run", body, response_mode, on_chunk)

    async def get_workflow(self, workflow_run_id: str) -> Dict[str, Any]:
        return await self._client.request_json(
            "GET", f"workflows/run/{workflow_run_id}", include_content_type=False
        )

    async def stop_workflow_task(
        self, task_id: str, user: Optional[str] = None
    ) -> Dict[str, Any]:
        return await self._client.request_json(
            "POST", f"workflows/tasks/{task_id}/stop", json_body={"user": self._user(user)}
        )

    async def get_workflow_logs(
        self,
        keyword: Optional[str] = None,
        status: Optional[str] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> Dict[str, Any]:
        params = {"keyword": keyword, "status": status, "page": page, "limit": limit}
        return await self._client.request_json(
            "GET", "workflows/logs", params=params, include_content_type=False
        )


class ConversationAPI(_EndpointAPI):
    async def get_conversations(
        self,
        user: Optional[str] = None,
        last_id: Optional[str] = None,
        limit: Optional[int] = None,
        sort_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        params = {
            "user": self._user(user),
            "last_id": last_id,
            "limit": limit,
            "sort_by": sort_by,
        }
        return await self._client.request_json(
            "GET", "conversations", params=params, include_content_type=False
        )

    async def delete_conversation(
        self, conversation_id: str, user: Optional[str] = None
    ) -> Any:
        return await self._client.request_json(
            "DELETE",
            f"conversations/{conversation_id}",
            json_body={"user": self._user(user)},
        )

    async def rename_conversation(
        self,
        conversation_id: str,
        name: Optional[str] = None,
        auto_generate: Optional[bool] = None,
        user: Optional[str] = None,
    ) -> Dict[str, Any]:
        body = _compact({
            "name": name,
            "auto_generate": auto_generate,
            "user": self._user(user),
        })
        return await self._client.request_json(
            "POST", f"conversations/{conversation_id}/name", json_body=body
        )


class FileAPI(_EndpointAPI):
    """File upload and audio conversion."""

    async def upload_file(
        self,
        file: FileContent,
        filename: str,
        user: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        files, data = build_multipart(file, filename, self._user(user), mime_type)
        return await self._client.request_json(
            "POST", "files/upload", files=files, data=data, include_content_type=False
        )

    async def audio_to_text(
        self,
        file: FileContent,
        filename: str,
        user: Optional[str] = None,
        mime_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        files, data = build_multipart(file, filename, self._user(user), mime_type)
        return await self._client.request_json(
            "POST", "audio-to-text", files=files, data=data, include_content_type=False
        )

    async def text_to_audio(
        self, text: str, user: Optional[str] = None, voice: Optional[str] = None
    ) -> bytes:
        """Returns the raw audio body."""
        body = _compact({"text": text, "user": self._user(user), "voice": voice})
        return await self._client.request_bytes("POST", "text-to-audio", json_body=body)


class AppAPI(_EndpointAPI):
    """Application metadata."""

    async def get_parameters(self) -> Dict[str, Any]:
        return await self._client.request_json(
            "GET", "parameters", include_content_type=False
        )

    async def get_info(self) -> Dict[str, Any]:
        return await self._client.request_json("GET", "info", include_content_type=False)

    async def get_meta(self) -> Dict[str, Any]:
        return await self._client.request_json("GET", "meta", include_content_type=False)
