"""
GitHub contents API persistence backend.

The state document lives as a JSON file inside a repository. Each save is a
commit; the blob SHA returned by the previous read or write is sent along so
GitHub accepts the update. On a SHA conflict the current SHA is fetched once
and the write retried, which makes concurrent writers last-writer-wins.
"""

from __future__ import annotations

import base64
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import aiohttp

from modchat.errors import PersistenceConfigurationError, PersistenceError
from modchat.persistence.base import PersistenceBackend, StateDocument
from modchat.util.logger import get_logger

logger = get_logger("github_backend")

GITHUB_API_BASE = "https://api.github.com"


class GitHubBackend(PersistenceBackend):
    """Stores the document in a GitHub repository file."""

    name = "github"

    def __init__(
        self,
        token: Optional[str],
        repo: str,
        branch: str = "main",
        file_path: str = "chat-storage.json",
        api_base: str = GITHUB_API_BASE,
        timeout_seconds: float = 15.0,
    ) -> None:
        if not token:
            raise PersistenceConfigurationError("GITHUB_TOKEN is required for the github persistence backend")
        if not repo:
            raise PersistenceConfigurationError("persistence.github.repo must be set for the github persistence backend")
        self._token = token
        self.repo = repo
        self.branch = branch
        self.file_path = file_path
        self._api_base = api_base.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: aiohttp.ClientSession | None = None
        self._sha: Optional[str] = None

    def describe(self) -> str:
        return f"github:{self.repo}@{self.branch}/{self.file_path}"

    @property
    def _url(self) -> str:
        return f"{self._api_base}/repos/{self.repo}/contents/{self.file_path}"

    @property
    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"token {self._token}",
            "Accept": "application/vnd.github.v3+json",
        }

    async def open(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=self._headers)

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            raise PersistenceError("GitHub backend is not open")
        return self._session

    async def _fetch(self) -> Optional[Dict[str, Any]]:
        async with self.session.get(self._url, params={"ref": self.branch}) as response:
            if response.status == 404:
                return None
            if response.status != 200:
                text = await response.text()
                raise PersistenceError(f"GitHub API error {response.status}: {text[:200]}")
            return await response.json()

    async def load(self) -> Optional[StateDocument]:
        try:
            data = await self._fetch()
        except aiohttp.ClientError as exc:
            raise PersistenceError(f"GitHub request failed: {exc}") from exc

        if data is None:
            logger.info("[GITHUB BACKEND] No existing storage file, it will be created on first save")
            self._sha = None
            return None

        self._sha = data.get("sha")
        try:
            content = base64.b64decode(data.get("content", "")).decode("utf-8")
            return json.loads(content)
        except (ValueError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"GitHub storage file is not valid JSON: {exc}") from exc

    async def _put(self, encoded: str) -> Tuple[int, Any]:
        """PUT the encoded document; returns the status and the JSON body (text on failure)."""
        body: Dict[str, Any] = {
            "message": f"Update chat storage - {datetime.now(timezone.utc).isoformat()}",
            "content": encoded,
            "branch": self.branch,
        }
        if self._sha:
            body["sha"] = self._sha
        async with self.session.put(self._url, json=body) as response:
            if response.status in (200, 201):
                return response.status, await response.json()
            return response.status, await response.text()

    async def save(self, document: StateDocument) -> None:
        encoded = base64.b64encode(json.dumps(document, indent=2, ensure_ascii=False).encode("utf-8")).decode("ascii")
        try:
            status, payload = await self._put(encoded)
            if status in (409, 422):
                # Someone else moved the file; adopt their SHA and overwrite.
                current = await self._fetch()
                self._sha = current.get("sha") if current else None
                status, payload = await self._put(encoded)
        except aiohttp.ClientError as exc:
            raise PersistenceError(f"GitHub request failed: {exc}") from exc

        if status not in (200, 201):
            raise PersistenceError(f"GitHub API error {status}: {str(payload)[:200]}")
        self._sha = (payload.get("content") or {}).get("sha", self._sha)
        logger.debug("[GITHUB BACKEND] Saved state to %s", self.describe())
