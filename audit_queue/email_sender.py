"""Report email delivery through Amazon SES."""

import asyncio
import functools
import html
import logging
from typing import Any, Optional
from urllib.parse import urlparse
from uuid import UUID

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from audit_queue.errors import EmailDeliveryError


class SesEmailSender:
    """Sends the "report ready" email with boto3's SES client."""

    def __init__(
        self,
        from_address: str,
        site_url: str,
        ses_client: Any = None,
        region_name: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.from_address = from_address
        self.site_url = site_url.rstrip("/")
        self.ses_client = ses_client or boto3.client("ses", region_name=region_name)
        self.logger = logger or logging.getLogger(__name__)

    async def send_report_email(
        self,
        to_address: str,
        target_url: str,
        audit_id: UUID,
        report_html: str,
    ) -> None:
        """
        Send the report email.

        boto3 is blocking, so the call runs in the default executor.

        Raises:
            EmailDeliveryError: If SES rejected the message or was unreachable
        """
        if not to_address:
            raise EmailDeliveryError(f"Audit {audit_id} has no customer email")

        domain = urlparse(target_url).netloc or target_url
        report_link = f"{self.site_url}/report/{audit_id}"

        send = functools.partial(
            self.ses_client.send_email,
            Source=self.from_address,
            Destination={"ToAddresses": [to_address]},
            Message={
                "Subject": {"Data": f"Your website audit report for {domain} is ready"},
                "Body": {
                    "Html": {"Data": _render_html(domain, report_link, report_html)},
                    "Text": {"Data": _render_text(domain, report_link)},
                },
            },
        )

        loop = asyncio.get_running_loop()
        try:
            response = await loop.run_in_executor(None, send)
        except (BotoCoreError, ClientError) as e:
            raise EmailDeliveryError(f"SES send failed: {e}") from e

        self.logger.info(
            f"Report email for audit {audit_id} sent to {to_address} "
            f"(message_id={response.get('MessageId')})"
        )


def _render_html(domain: str, report_link: str, report_html: str) -> str:
    return (
        f"<p>Your audit of <strong>{html.escape(domain)}</strong> is complete.</p>"
        f'<p><a href="{html.escape(report_link)}">View the report online</a></p>'
        f"<hr>{report_html}"
    )


def _render_text(domain: str, report_link: str) -> str:
    return f"Your audit of {domain} is complete.\n\nView the report: {report_link}\n"
