"""
Typed wrappers around the job server's HTTP endpoints.
"""

from __future__ import annotations

from typing import Any

from .errors import ConflictError, ErrorContext, InvalidJsonError
from .models import Job, parse_status_response
from .transport import TransportClient

DEFAULT_CONFLICT_MESSAGE = "Job is already running or pending"


class OpsDeckApi:
    """Endpoint-level client; every call goes through one :class:`TransportClient`."""

    def __init__(self, transport: TransportClient) -> None:
        self.transport = transport

    @property
    def settings(self):
        return self.transport.settings

    async def test_connection(self, url: str | None = None) -> bool:
        return await self.transport.test_connection(url)

    async def close(self) -> None:
        await self.transport.close()

    # =========================================================================
    # Jobs
    # =========================================================================

    async def fetch_status(self) -> dict[str, Job]:
        """Full job snapshot keyed by job id."""
        payload = await self.transport.get_json("/api/status")
        return parse_status_response(payload)

    async def fetch_logs(self, job_id: str) -> str:
        data = await self.transport.get_json(f"/api/logs/{job_id}")
        if isinstance(data, dict) and isinstance(data.get("logs"), str):
            return data["logs"]
        return "No logs available"

    async def approve_job(self, job_id: str) -> bool:
        await self.transport.post_json("/approve", {"job_id": job_id})
        return True

    async def reject_job(self, job_id: str) -> bool:
        await self.transport.post_json("/reject", {"job_id": job_id})
        return True

    async def trigger_job(
        self,
        repo: str,
        issue_num: int,
        issue_title: str,
        command: str,
        cmd_label: str | None = None,
    ) -> dict[str, Any]:
        """
        Start a job for an issue. Never retried.

        Raises:
            ConflictError: A job for this issue is already running or pending.
        """
        body: dict[str, Any] = {
            "repo": repo,
            "issueNum": issue_num,
            "issueTitle": issue_title,
            "command": command,
        }
        if cmd_label is not None:
            body["cmdLabel"] = cmd_label

        response = await self.transport.post("/jobs/trigger", body, timeout=10.0, max_retries=0)
        if response.status == 409:
            data = _safe_json(response)
            reason = data.get("reason") if isinstance(data, dict) else None
            raise ConflictError(
                str(reason) if reason else DEFAULT_CONFLICT_MESSAGE,
                http_status=409,
                context=ErrorContext(method="POST", path="/jobs/trigger"),
            )
        if response.status != 200:
            raise response.error()
        return _expect_dict(response.json(), "/jobs/trigger")

    # =========================================================================
    # Repositories and issues
    # =========================================================================

    async def fetch_repos(self) -> list[dict[str, str]]:
        data = await self.transport.get_json("/repos")
        if not isinstance(data, list):
            raise InvalidJsonError(context=ErrorContext(method="GET", path="/repos"))
        return [
            {
                "name": str(repo.get("name", "")),
                "full_name": str(repo.get("full_name", "")),
                "path": str(repo.get("path", "")),
            }
            for repo in data
            if isinstance(repo, dict)
        ]

    async def create_issue(self, repo: str, title: str, body: str) -> str:
        """Create a GitHub issue; returns its URL."""
        data = await self.transport.post_json(
            "/issues/create",
            {"repo": repo, "title": title, "body": body},
            timeout=self.settings.long_timeout,
            max_retries=0,
            expected_status=(201,),
        )
        if isinstance(data, dict) and isinstance(data.get("issue_url"), str):
            return data["issue_url"]
        return "Issue created"

    async def enhance_issue(self, title: str, description: str = "", repo: str | None = None) -> dict[str, str]:
        """Ask the server to expand a rough idea into an issue title and body."""
        body: dict[str, Any] = {"idea": description or title, "title": title}
        if repo is not None:
            body["repo"] = repo
        data = await self.transport.post_json(
            "/issues/enhance",
            body,
            timeout=self.settings.long_timeout,
            max_retries=0,
        )
        data = data if isinstance(data, dict) else {}
        return {
            "title": str(data.get("enhanced_title") or title),
            "body": str(data.get("enhanced_body") or ""),
        }

    async def fetch_workflow_state(self, repo: str, issue_num: int) -> dict[str, Any]:
        path = f"/issues/{repo}/{issue_num}/workflow"
        return _expect_dict(await self.transport.get_json(path), path)


def _safe_json(response) -> Any:
    try:
        return response.json()
    except InvalidJsonError:
        return None


def _expect_dict(data: Any, path: str) -> dict[str, Any]:
    if not isinstance(data, dict):
        raise InvalidJsonError(context=ErrorContext(path=path))
    return data


__all__ = ["OpsDeckApi", "DEFAULT_CONFLICT_MESSAGE"]
