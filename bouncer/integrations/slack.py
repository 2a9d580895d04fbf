"""Async client for posting files to Slack.

Slack's external upload flow is a three-step handshake:

1. ``files.getUploadURLExternal`` reserves an upload slot.
2. The bytes are POSTed to the returned ``upload_url``.
3. ``files.completeUploadExternal`` shares the file to a channel with an
   initial comment.
"""

import json
import logging

import httpx

logger = logging.getLogger(__name__)

SLACK_API_URL = "https://slack.com/api"


class SlackError(Exception):
    """Raised when Slack answers ``ok: false`` or the upload step fails."""

    def __init__(self, method: str, error: str) -> None:
        super().__init__(f"Slack {method} failed: {error}")
        self.method = method
        self.error = error


class SlackClient:
    """Async HTTP client for the Slack Web API.

    Usage::

        async with SlackClient(token) as slack:
            await slack.upload_text(
                channel_id="C0123",
                filename="addresses.txt",
                content="a@x.example\\nb@y.example\\n",
                comment="2 senders added to the denylist",
            )
    """

    def __init__(self, token: str, *, base_url: str = SLACK_API_URL) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=30.0,
        )

    async def __aenter__(self) -> "SlackClient":
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def _call(self, method: str, data: dict) -> dict:
        response = await self._client.post(f"/{method}", data=data)
        response.raise_for_status()
        body = response.json()
        if not body.get("ok"):
            raise SlackError(method, body.get("error", "unknown_error"))
        return body

    async def upload_text(
        self,
        *,
        channel_id: str,
        filename: str,
        content: str,
        comment: str = "",
        title: str | None = None,
    ) -> str:
        """Upload a text file to a channel and return the Slack file ID.

        Raises:
            SlackError: If any Slack step answers ``ok: false``.
            httpx.HTTPError: On transport or HTTP status failures.
        """
        data = content.encode("utf-8")

        slot = await self._call(
            "files.getUploadURLExternal",
            {"filename": filename, "length": str(len(data))},
        )
        upload_url = slot["upload_url"]
        file_id = slot["file_id"]

        upload = await self._client.post(
            upload_url,
            files={"file": (filename, data, "text/plain")},
        )
        if upload.status_code != 200:
            raise SlackError("upload", f"HTTP {upload.status_code}")

        await self._call(
            "files.completeUploadExternal",
            {
                "files": json.dumps([{"id": file_id, "title": title or filename}]),
                "channel_id": channel_id,
                "initial_comment": comment,
            },
        )
        logger.info("Uploaded %s (%d bytes) to Slack channel %s", filename, len(data), channel_id)
        return file_id
