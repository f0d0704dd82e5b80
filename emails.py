"""Candidate email dispatch through the Resend HTTP API.

One email is sent per recipient so candidates never see each other's
addresses. The HTML body is rendered from ``templates/emails/candidate_update.html``
with autoescaping on, so job titles and messages cannot inject markup.
"""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Optional

import httpx
import structlog
from aws_embedded_metrics import metric_scope
from jinja2 import Environment, FileSystemLoader, select_autoescape

import logic
import schemas
from settings import Settings

logger = structlog.get_logger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"

_env = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
)


class EmailDeliveryError(Exception):
    """Raised when the email provider rejects or cannot be reached."""


def render_candidate_email(job_title: str, message: str, company_name: Optional[str] = None) -> str:
    template = _env.get_template("emails/candidate_update.html")
    return template.render(job_title=job_title, message=message, company_name=company_name)


def sender_for(company_name: Optional[str], settings: Settings) -> str:
    name = company_name or settings.email_default_sender_name
    return f"{name} <{settings.email_from_address}>"


async def _send_one(client: httpx.AsyncClient, settings: Settings, payload: dict) -> dict:
    response = await client.post(
        settings.resend_api_url,
        json=payload,
        headers={"Authorization": f"Bearer {settings.resend_api_key}"},
    )
    if response.is_error:
        raise EmailDeliveryError(
            f"Email provider answered {response.status_code}: {response.text}"
        )
    return response.json()


@metric_scope
async def send_candidate_email(
    request: schemas.EmailRequest,
    settings: Settings,
    client: Optional[httpx.AsyncClient] = None,
    metrics=None,
) -> schemas.EmailResult:
    """Send the templated update email to every address in ``request.to``."""
    metrics.set_namespace("JobConnect")
    if not settings.resend_api_key:
        raise EmailDeliveryError("Email service is not configured")

    subject = request.subject or logic.job_update_subject(request.job_title)
    html = render_candidate_email(request.job_title, request.message, request.company_name)
    sender = sender_for(request.company_name, settings)

    logger.info("Sending candidate email", recipients=len(request.to), job_title=request.job_title)

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=10)
    try:
        results = await asyncio.gather(
            *(
                _send_one(
                    client,
                    settings,
                    {"from": sender, "to": [str(email)], "subject": subject, "html": html},
                )
                for email in request.to
            )
        )
    except httpx.HTTPError as exc:
        metrics.put_metric("emails_failed", len(request.to), "Count")
        raise EmailDeliveryError(str(exc)) from exc
    except EmailDeliveryError:
        metrics.put_metric("emails_failed", len(request.to), "Count")
        raise
    finally:
        if owns_client:
            await client.aclose()

    metrics.put_metric("emails_sent", len(results), "Count")
    logger.info("Candidate emails sent", sent=len(results))
    return schemas.EmailResult(success=True, sent=len(request.to))
