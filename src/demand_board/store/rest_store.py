# src/demand_board/store/rest_store.py

from __future__ import annotations

"""
RemoteStore over a PostgREST-compatible HTTP API (e.g. a hosted Postgres
backend exposing /rest/v1).

One pooled httpx.AsyncClient per store, reused across calls and closed on
shutdown. No retries: a failed call surfaces as RemoteStoreError and the
caller decides what to do.
"""

import logging
from typing import Any

import httpx

from ..core.ports import Row
from ..errors import RemoteStoreError

logger = logging.getLogger(__name__)

_COMMENT_SELECT = "*,comments(id,author,text,created_at,task_id)"


class RestRemoteStore:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 15.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url.strip():
            raise ValueError("base_url is required")
        headers = {
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if client is None:
            client = httpx.AsyncClient(
                base_url=base_url.rstrip("/"),
                headers=headers,
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                timeout=httpx.Timeout(timeout, connect=10.0),
                follow_redirects=True,
            )
        else:
            client.headers.update(headers)
        self._client = client
        logger.info("RestRemoteStore ready base_url=%s", base_url)

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(
        self,
        operation: str,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        returning: bool = False,
    ) -> Any:
        headers = {"Prefer": "return=representation"} if returning else {}
        try:
            response = await self._client.request(method, path, params=params, json=json, headers=headers)
        except httpx.HTTPError as e:
            logger.warning("REST %s failed: %s", operation, e.__class__.__name__)
            raise RemoteStoreError(f"{operation}: {e.__class__.__name__}", operation=operation) from e

        if response.status_code >= 400:
            body = response.text[:500]
            logger.warning("REST %s -> HTTP %s: %s", operation, response.status_code, body)
            raise RemoteStoreError(
                f"{operation}: HTTP {response.status_code}",
                operation=operation,
                status_code=response.status_code,
                response_body=body,
            )

        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    @staticmethod
    def _first(data: Any, operation: str) -> Row:
        if isinstance(data, list) and data:
            return dict(data[0])
        if isinstance(data, dict):
            return dict(data)
        raise RemoteStoreError(f"{operation}: empty response", operation=operation)

    # ---- tasks ----

    async def fetch_tasks(self) -> list[Row]:
        data = await self._request(
            "fetch_tasks",
            "GET",
            "/tasks",
            params={"select": _COMMENT_SELECT, "order": "created_at.desc"},
        )
        return list(data or [])

    async def insert_task(self, row: Row) -> Row:
        data = await self._request("insert_task", "POST", "/tasks", json=[row], returning=True)
        return self._first(data, "insert_task")

    async def update_task(self, task_id: str, fields: Row) -> None:
        await self._request("update_task", "PATCH", "/tasks", params={"id": f"eq.{task_id}"}, json=fields)

    async def delete_task(self, task_id: str) -> None:
        await self._request("delete_task", "DELETE", "/tasks", params={"id": f"eq.{task_id}"})

    # ---- comments ----

    async def insert_comment(self, row: Row) -> Row:
        data = await self._request("insert_comment", "POST", "/comments", json=[row], returning=True)
        return self._first(data, "insert_comment")

    # ---- notifications ----

    async def fetch_notifications(self, user_email: str, limit: int = 20) -> list[Row]:
        data = await self._request(
            "fetch_notifications",
            "GET",
            "/notifications",
            params={
                "user_email": f"eq.{user_email.lower()}",
                "order": "created_at.desc",
                "limit": str(int(limit)),
            },
        )
        return list(data or [])

    async def insert_notification(self, row: Row) -> Row:
        data = await self._request("insert_notification", "POST", "/notifications", json=[row], returning=True)
        return self._first(data, "insert_notification")

    async def update_notification(self, notification_id: str, fields: Row) -> None:
        await self._request(
            "update_notification",
            "PATCH",
            "/notifications",
            params={"id": f"eq.{notification_id}"},
            json=fields,
        )

    async def delete_notifications(self, user_email: str) -> None:
        await self._request(
            "delete_notifications",
            "DELETE",
            "/notifications",
            params={"user_email": f"eq.{user_email.lower()}"},
        )

    # ---- profiles ----

    async def fetch_profile(self, email: str) -> Row | None:
        data = await self._request(
            "fetch_profile",
            "GET",
            "/profiles",
            params={"email": f"eq.{email.lower()}", "limit": "1"},
        )
        if isinstance(data, list) and data:
            return dict(data[0])
        return None

    async def insert_profile(self, row: Row) -> Row:
        data = await self._request("insert_profile", "POST", "/profiles", json=[row], returning=True)
        return self._first(data, "insert_profile")
