"""
REST adapter for ``ChatState``, over an ``httpx.AsyncClient``.

Methods return the decoded JSON bodies; non-2xx responses raise ``APIError``
with the server's ``code``.
"""
from typing import Any, Dict, Optional

import httpx


class APIError(Exception):
    def __init__(self, status_code: int, detail: Any = None, code: Optional[str] = None):
        super().__init__(f"{status_code} {code or ''} {detail or ''}".strip())
        self.status_code = status_code
        self.detail = detail
        self.code = code


class MessagesAPI:

    def __init__(self, client: httpx.AsyncClient, token: Optional[str] = None, prefix: str = "/api"):
        self.client = client
        self.prefix = prefix
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        response = await self.client.request(method, f"{self.prefix}{path}", headers=self.headers, **kwargs)
        if response.is_error:
            try:
                body = response.json()
            except ValueError:
                body = {"detail": response.text}
            raise APIError(response.status_code, body.get("detail"), body.get("code"))
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    # ---------- messages ----------
    async def send_direct(self, recipient_id: int, content: str) -> Dict[str, Any]:
        return await self._request("POST", "/messages", json={"recipient_id": recipient_id, "content": content})

    async def send_group(self, group_id: int, content: str, parent_id: Optional[int] = None) -> Dict[str, Any]:
        body = {"content": content}
        if parent_id is not None:
            body["parent_id"] = parent_id
        return await self._request("POST", f"/groups/{group_id}/messages", json=body)

    async def fetch_thread(self, user_id: int, last_id: Optional[int] = None, limit: int = 50) -> Dict[str, Any]:
        params = {"limit": limit}
        if last_id is not None:
            params["last_id"] = last_id
        return await self._request("GET", f"/messages/thread/{user_id}", params=params)

    async def fetch_group_thread(self, group_id: int, last_id: Optional[int] = None, limit: int = 50) -> Dict[str, Any]:
        params = {"limit": limit}
        if last_id is not None:
            params["last_id"] = last_id
        return await self._request("GET", f"/groups/{group_id}/messages", params=params)

    async def mark_read(self, message_id: int) -> Dict[str, Any]:
        return await self._request("PATCH", f"/messages/{message_id}/read")

    async def edit(self, message_id: int, content: str) -> Dict[str, Any]:
        return await self._request("PATCH", f"/messages/{message_id}/edit", json={"content": content})

    async def delete(self, message_id: int) -> Dict[str, Any]:
        return await self._request("DELETE", f"/messages/{message_id}")

    async def react(self, message_id: int, emoji: str) -> Dict[str, Any]:
        return await self._request("POST", f"/messages/{message_id}/react", json={"emoji": emoji})

    async def unread(self) -> Dict[str, Any]:
        return await self._request("GET", "/messages/unread")
