"""
Remote authority API client.
Applies queued mutations, authenticates field agents, validates cached sessions
and pulls the missions and form templates cached for offline work.
Transport failures surface as RemoteUnavailable so the processor can stop a drain.
"""
import asyncio
import json
import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import httpx

from ..core.config import settings
from ..core.errors import (
    AuthExpired,
    InvalidCredentials,
    RemoteServerError,
    RemoteUnavailable,
    UnexpectedRemoteResponse,
)
from .mutations import Mutation

logger = logging.getLogger(__name__)

REJECTION_STATUSES = (400, 404, 410, 422)


@dataclass
class Accepted:
    remote_version: Optional[int] = None
    remote_path: Optional[str] = None
    body: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Conflict:
    """The remote record moved on; carries its current version and fields."""
    remote_version: int
    remote_payload: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Rejected:
    reason: str
    status_code: int = 422


MutationResult = Union[Accepted, Conflict, Rejected]


@dataclass
class RemoteSession:
    user: Dict[str, Any]
    token: str


def _body(resp: httpx.Response) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {"data": data}


def _detail(resp: httpx.Response) -> str:
    body = _body(resp)
    return str(body.get("detail") or body.get("message") or resp.text or resp.reason_phrase)


def _read_file(path: str) -> bytes:
    with open(path, "rb") as fh:
        return fh.read()


class RemoteAuthorityClient:
    """HTTP client for the central authority."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url or settings.REMOTE_API_URL
        self.timeout = timeout if timeout is not None else settings.REMOTE_TIMEOUT
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        if not self.base_url:
            raise RemoteUnavailable("REMOTE_API_URL is not configured")
        return httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout, transport=self._transport)

    async def _send(
        self,
        method: str,
        path: str,
        token: Optional[str] = None,
        **kwargs,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            async with self._client() as client:
                return await client.request(method, path, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            logger.warning("Remote authority unreachable (%s %s): %s", method, path, exc)
            raise RemoteUnavailable(str(exc)) from exc

    async def ping(self) -> bool:
        """True when the authority answers at all."""
        try:
            await self._send("GET", "/health")
        except RemoteUnavailable:
            return False
        return True

    async def authenticate(self, username: str, password: str) -> RemoteSession:
        resp = await self._send("POST", "/api/auth/login", json={"username": username, "password": password})
        if resp.status_code in (400, 401, 403, 422):
            raise InvalidCredentials(_detail(resp))
        body = self._expect_success(resp)
        token = body.get("access_token")
        if not token:
            raise UnexpectedRemoteResponse(resp.status_code, "login response carries no access_token")
        return RemoteSession(user=body.get("user") or {}, token=token)

    async def validate_session(self, token: str) -> Dict[str, Any]:
        """Return the current user record for ``token``; AuthExpired on 401/403."""
        resp = await self._send("GET", "/api/auth/user", token=token)
        if resp.status_code in (401, 403):
            raise AuthExpired(_detail(resp))
        return self._expect_success(resp)

    async def fetch_missions(self, token: str) -> List[Dict[str, Any]]:
        """Missions assigned to the session's user, for the offline cache."""
        return await self._fetch_list("/api/missions", token)

    async def fetch_forms(self, token: str) -> List[Dict[str, Any]]:
        """Active collection form templates, for the offline cache."""
        return await self._fetch_list("/api/forms", token)

    async def _fetch_list(self, path: str, token: str) -> List[Dict[str, Any]]:
        resp = await self._send("GET", path, token=token)
        if resp.status_code in (401, 403):
            raise AuthExpired(_detail(resp))
        self._raise_for_status(resp)
        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, list):
            raise UnexpectedRemoteResponse(resp.status_code, f"expected a JSON list from {path}")
        return [row for row in data if isinstance(row, dict)]

    @staticmethod
    def _raise_for_status(resp: httpx.Response) -> None:
        if resp.status_code >= 500:
            raise RemoteServerError(resp.status_code, _detail(resp))
        if not resp.is_success:
            raise UnexpectedRemoteResponse(resp.status_code, _detail(resp))

    def _expect_success(self, resp: httpx.Response) -> Dict[str, Any]:
        self._raise_for_status(resp)
        return _body(resp)

    async def apply_mutation(self, mutation: Mutation, token: Optional[str] = None) -> MutationResult:
        request = mutation.request()
        kwargs: Dict[str, Any] = {}
        if request.upload_path and os.path.exists(request.upload_path):
            content = await asyncio.to_thread(_read_file, request.upload_path)
            kwargs["files"] = {"file": (os.path.basename(request.upload_path), content, "image/jpeg")}
            kwargs["data"] = {"metadata": json.dumps(request.json)}
        elif request.json:
            if request.upload_path:
                logger.warning("Photo file %s missing, sending metadata only", request.upload_path)
            kwargs["json"] = request.json

        resp = await self._send(request.method, request.path, token=token, **kwargs)

        if resp.status_code in (401, 403):
            raise AuthExpired(_detail(resp))
        if resp.status_code == 409:
            body = _body(resp)
            return Conflict(remote_version=int(body.get("version", 0)), remote_payload=body.get("payload") or {})
        if resp.status_code in REJECTION_STATUSES:
            return Rejected(reason=_detail(resp), status_code=resp.status_code)
        if resp.status_code >= 500:
            raise RemoteServerError(resp.status_code, _detail(resp))
        if resp.is_success:
            body = _body(resp)
            return Accepted(
                remote_version=body.get("version"),
                remote_path=body.get("remote_path"),
                body=body,
            )
        return Rejected(reason=_detail(resp), status_code=resp.status_code)
