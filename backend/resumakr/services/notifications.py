"""Auxiliary email notifications.

Sends are best effort: a failure is logged and never propagates into the
subscription change that triggered it.
"""

import logging

import httpx

from resumakr.billing.facts import SubscriptionFacts
from resumakr.config import settings

logger = logging.getLogger(__name__)

TEMPLATES = {
    "subscription_updated": {
        "subject": "Your Resumakr subscription was updated",
        "body": (
            "Hi {name},\n\n"
            "Your subscription details have changed.\n\n"
            "Status: {status}\n"
            "Plan: {plan}\n"
            "Access until: {end_date}\n\n"
            "If you did not expect this change, reply to this email.\n\n"
            "The Resumakr team"
        ),
    },
}


async def send_email(to: str, subject: str, body: str) -> None:
    """Deliver one email through the configured HTTP email API.

    Raises:
        httpx.HTTPError: transport failure or non-2xx response.
    """
    if not settings.email_api_url:
        logger.info("Email (not sent, no email API configured) to=%s subject=%r", to, subject)
        return

    async with httpx.AsyncClient(timeout=settings.email_timeout_seconds) as client:
        response = await client.post(
            settings.email_api_url,
            headers={"Authorization": f"Bearer {settings.email_api_key}"},
            json={"from": settings.email_from, "to": [to], "subject": subject, "text": body},
        )
        response.raise_for_status()
    logger.info("Email sent to=%s subject=%r", to, subject)


async def notify_subscription_changed(email: str, name: str, facts: SubscriptionFacts) -> bool:
    """Tell the user their subscription changed. Returns False if the send failed."""
    template = TEMPLATES["subscription_updated"]
    body = template["body"].format(
        name=name or email,
        status="active" if facts.is_subscribed else "inactive",
        plan=facts.subscription_plan or "none",
        end_date=(
            facts.subscription_end_date.strftime("%Y-%m-%d")
            if facts.subscription_end_date
            else "n/a"
        ),
    )
    try:
        await send_email(email, template["subject"], body)
    except Exception:
        logger.exception("Subscription notification to %s failed; change is kept", email)
        return False
    return True
