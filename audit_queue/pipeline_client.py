"""HTTP client for the audit pipeline service."""

from typing import Any, Dict, Optional
from uuid import UUID

import aiohttp

from audit_queue.errors import PermanentTargetError, RemoteHttpError
from audit_queue.retry import PERMANENT_HTTP_STATUSES

# Failure codes the pipeline reports when the audited site is unreachable for good
PERMANENT_FAILURE_CODES = frozenset({"dns_failure", "connection_refused"})


class HttpAuditPipeline:
    """Runs audits by calling the audit pipeline service."""

    def __init__(
        self,
        base_url: str,
        auth_token: Optional[str] = None,
        timeout: float = 540.0,
    ):
        """
        Initialize the pipeline client.

        Args:
            base_url: Base URL of the pipeline service (e.g., "https://pipeline.internal")
            auth_token: Optional bearer token for the Authorization header
            timeout: Request timeout in seconds
        """
        self.base_url = base_url.rstrip("/")
        self.auth_token = auth_token
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def run_audit(self, audit_id: UUID) -> str:
        """
        Crawl and analyse the audit's site and return the report HTML.

        Raises:
            PermanentTargetError: If the audited site answered 401/403/404,
                did not resolve or refused the connection
            RemoteHttpError: If the pipeline call itself failed
        """
        url = f"{self.base_url}/audits/{audit_id}/run"

        headers = {"Content-Type": "application/json"}
        if self.auth_token:
            headers["Authorization"] = f"Bearer {self.auth_token}"

        async with aiohttp.ClientSession(timeout=self.timeout) as session:
            try:
                async with session.post(url, json={}, headers=headers) as resp:
                    response_body = await resp.text()

                    if resp.status >= 400:
                        detail = await _json_or_none(resp)
                        _raise_for_target(detail)
                        raise RemoteHttpError(
                            status_code=resp.status,
                            message=f"Audit pipeline failed: {response_body}",
                            response_body=response_body,
                        )

                    response_data = await resp.json()

            except aiohttp.ClientError as e:
                raise RemoteHttpError(
                    status_code=0,
                    message=f"Network error: {str(e)}",
                ) from e

        report_html = response_data.get("report_html")
        if not report_html:
            raise RemoteHttpError(
                status_code=502,
                message="Audit pipeline returned no report",
                response_body=response_body,
            )
        return report_html


async def _json_or_none(resp: aiohttp.ClientResponse) -> Optional[Dict[str, Any]]:
    try:
        data = await resp.json(content_type=None)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _raise_for_target(detail: Optional[Dict[str, Any]]) -> None:
    """Raise PermanentTargetError when the pipeline blames the audited site."""
    if not detail:
        return

    message = detail.get("error") or "Audited site is unreachable"
    target_status = detail.get("target_status")
    if target_status in PERMANENT_HTTP_STATUSES:
        raise PermanentTargetError(
            f"Target site answered HTTP {target_status}: {message}",
            status_code=target_status,
        )
    if detail.get("code") in PERMANENT_FAILURE_CODES:
        raise PermanentTargetError(f"{detail['code']}: {message}")
