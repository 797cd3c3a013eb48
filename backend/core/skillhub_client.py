"""HTTP client for the SkillHub user-skill sync endpoints."""
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from config import settings
from core.exceptions import RemoteServiceException, SkillNotFoundException
from schemas.skill import (
    DiffResponse,
    HistoryResponse,
    PullResponse,
    PushAck,
    RemoteSkill,
    RemoteStatus,
    SyncFile,
    VersionListResponse,
)

logger = logging.getLogger(__name__)

USER_SKILLS_PATH = "/api/user/skills"


class SkillHubClient:
    """Async client for the remote skill hosting service.

    Every call is a single request with a timeout. Failures are raised as
    RemoteServiceException (SkillNotFoundException for unknown skills) and
    are never retried.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.skillhub_url).rstrip("/")
        self.access_token = access_token if access_token is not None else settings.skillhub_access_token
        self.timeout = timeout if timeout is not None else settings.request_timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy initialization of the HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {"Accept": "application/json"}
            if self.access_token:
                headers["Authorization"] = f"Bearer {self.access_token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                timeout=self.timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        skill_id: Optional[str] = None,
        **kwargs: Any,
    ) -> httpx.Response:
        try:
            response = await self.client.request(method, f"{USER_SKILLS_PATH}{path}", **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"SkillHub request timed out ({action}): {e}")
            raise RemoteServiceException(
                message=f"Timed out while trying to {action}",
                detail=str(e) or type(e).__name__,
                suggested_action="Check your network connection and try again",
            )
        except httpx.RequestError as e:
            logger.warning(f"SkillHub request failed ({action}): {e}")
            raise RemoteServiceException(
                message=f"Could not reach SkillHub to {action}",
                detail=str(e) or type(e).__name__,
                suggested_action="Check your network connection and try again",
            )

        if response.is_success:
            return response

        error = self._error_message(response) or f"Failed to {action} ({response.status_code})"
        if response.status_code == 404 and skill_id is not None:
            raise SkillNotFoundException(
                detail=error,
                suggested_action=f"Skill '{skill_id}' may have been deleted on SkillHub",
            )
        raise RemoteServiceException(message=f"Failed to {action}", detail=error)

    @staticmethod
    def _error_message(response: httpx.Response) -> Optional[str]:
        try:
            data = response.json()
        except ValueError:
            return None
        if isinstance(data, dict):
            return data.get("error_description") or data.get("error") or data.get("message")
        return None

    @staticmethod
    def _parse(model, data: Any, action: str):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise RemoteServiceException(
                message=f"Unexpected response while trying to {action}",
                detail=str(e),
                suggested_action="The SkillHub API may have changed; update the app",
            )

    def _json(self, response: httpx.Response, action: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RemoteServiceException(message=f"Invalid response while trying to {action}", detail=str(e))

    # ============== Skills ==============

    async def list_skills(self) -> list[RemoteSkill]:
        """List the current user's skills."""
        action = "list skills"
        response = await self._request("GET", "", action)
        data = self._json(response, action)
        # API may return { skills: [...] } or [...] directly
        if isinstance(data, dict):
            data = data.get("skills") or []
        return [self._parse(RemoteSkill, item, action) for item in data]

    async def get_skill(self, skill_id: str) -> RemoteSkill:
        action = "load skill"
        response = await self._request("GET", f"/{skill_id}", action, skill_id=skill_id)
        data = self._json(response, action)
        if isinstance(data, dict) and isinstance(data.get("skill"), dict):
            data = data["skill"]
        return self._parse(RemoteSkill, data, action)

    # ============== Sync ==============

    async def get_remote_status(self, skill_id: str) -> RemoteStatus:
        """Current version and file hashes of a remote skill."""
        action = "get remote status"
        response = await self._request("GET", f"/{skill_id}/status", action, skill_id=skill_id)
        return self._parse(RemoteStatus, self._json(response, action), action)

    async def pull(self, skill_id: str, version: Optional[int] = None) -> PullResponse:
        """Fetch the full file set of a skill (latest version when omitted)."""
        action = "pull skill"
        params = {"version": version} if version is not None else None
        response = await self._request("GET", f"/{skill_id}/pull", action, skill_id=skill_id, params=params)
        return self._parse(PullResponse, self._json(response, action), action)

    async def push(
        self,
        skill_id: str,
        files: list[SyncFile],
        change_summary: str,
        source: Optional[str] = None,
    ) -> PushAck:
        action = "push skill"
        payload = {
            "skill_id": skill_id,
            "files": [f.model_dump(by_alias=True) for f in files],
            "change_summary": change_summary,
            "source": source or settings.push_source,
        }
        response = await self._request("POST", "/push", action, skill_id=skill_id, json=payload)
        if not response.content:
            return PushAck()
        return self._parse(PushAck, self._json(response, action), action)

    # ============== Version History ==============

    async def get_versions(self, skill_id: str) -> VersionListResponse:
        action = "get versions"
        response = await self._request("GET", f"/{skill_id}/versions", action, skill_id=skill_id)
        return self._parse(VersionListResponse, self._json(response, action), action)

    async def get_history(
        self,
        skill_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        include_diff: bool = False,
    ) -> HistoryResponse:
        action = "get history"
        params = {}
        if limit:
            params["limit"] = limit
        if offset:
            params["offset"] = offset
        if include_diff:
            params["include_diff"] = "true"
        response = await self._request("GET", f"/{skill_id}/history", action, skill_id=skill_id, params=params)
        return self._parse(HistoryResponse, self._json(response, action), action)

    async def get_diff(
        self,
        skill_id: str,
        from_version: int,
        to_version: int,
        include_content: bool = False,
    ) -> DiffResponse:
        action = "get diff"
        params = {"from": from_version, "to": to_version}
        if include_content:
            params["include_content"] = "true"
        response = await self._request("GET", f"/{skill_id}/diff", action, skill_id=skill_id, params=params)
        return self._parse(DiffResponse, self._json(response, action), action)

    async def export_archive(self, skill_id: str) -> bytes:
        """Download the skill as a Git ZIP archive."""
        response = await self._request("GET", f"/{skill_id}/export-git", "export skill", skill_id=skill_id)
        return response.content


# Global instance
skillhub_client = SkillHubClient()
