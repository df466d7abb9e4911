"""
HTTP transport for the bookstore backend REST API.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

from storefront.config import Config
from storefront.exceptions import ApiError

logger = logging.getLogger(__name__)


def _clean_params(params: Optional[Dict[str, Any]]) -> List[Tuple[str, str]]:
    """Drop empty query values; lists become repeated keys"""
    cleaned: List[Tuple[str, str]] = []
    for key, value in (params or {}).items():
        if value is None or value == "":
            continue
        if isinstance(value, bool):
            cleaned.append((key, "true" if value else "false"))
        elif isinstance(value, (list, tuple)):
            cleaned.extend((key, str(v)) for v in value)
        else:
            cleaned.append((key, str(value)))
    return cleaned


def _error_message(status: int, reason: str, body: Any, text: str) -> str:
    if isinstance(body, dict):
        if body.get("message"):
            return str(body["message"])
        if body.get("error"):
            return str(body["error"])
        if isinstance(body.get("errors"), list) and body["errors"]:
            return ", ".join(str(e) for e in body["errors"])
    if text:
        return text
    return f"{status} {reason}".strip()


class ApiClient:
    """
    Thin async client for the backend.

    Every request either returns the decoded JSON body or raises ApiError
    carrying the HTTP status and the message the backend sent.
    """

    def __init__(self, base_url: Optional[str] = None, session: Optional[aiohttp.ClientSession] = None):
        self.base_url = (base_url or Config.API_URL).rstrip("/")
        self._session = session
        self._owns_session = session is None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json"}
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session and not self._session.closed:
            await self._session.close()

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        token: Optional[str] = None,
    ) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        session = await self._get_session()

        try:
            async with session.request(
                method, url, params=_clean_params(params), json=json, headers=headers
            ) as response:
                text = await response.text()
                body = None
                if text:
                    try:
                        body = await response.json(content_type=None)
                    except ValueError:
                        body = None

                if response.status >= 400:
                    message = _error_message(response.status, response.reason or "", body, text)
                    logger.warning(
                        f"Backend error: {method} {path} {response.status}",
                        extra={"method": method, "path": path, "status_code": response.status},
                    )
                    raise ApiError(response.status, message, body)

                if text and body is None:
                    raise ApiError(response.status, "Invalid JSON response from server", text)
                return body

        except aiohttp.ClientError as e:
            logger.error(
                f"Backend unreachable: {method} {path}",
                extra={"method": method, "path": path, "error": str(e)},
            )
            raise ApiError(0, f"Network error: {e}") from e

    async def get(self, path: str, **kwargs) -> Any:
        return await self.request("GET", path, **kwargs)

    async def post(self, path: str, **kwargs) -> Any:
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs) -> Any:
        return await self.request("PUT", path, **kwargs)

    async def delete(self, path: str, **kwargs) -> Any:
        return await self.request("DELETE", path, **kwargs)


def expect_success(body: Any, default_message: str) -> Dict[str, Any]:
    """Raise unless a 2xx body reports `success: true`"""
    if not isinstance(body, dict):
        raise ApiError(200, default_message, body)
    if not body.get("success"):
        raise ApiError(200, body.get("message") or default_message, body)
    return body
