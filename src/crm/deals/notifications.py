"""Deal-won email notification.

Runs as a background task after the HTTP response for any write that moves
a deal into ``gagne``. This notifier is fire-and-forget: errors are logged
but never raised.

Exports:
    DealWonNotifier: Loads the assignee and sends the congratulation email.
    should_notify_won: Decides whether a write warrants a notification.
"""

from __future__ import annotations

from decimal import Decimal
from html import escape

import structlog

from src.crm.core.monitoring import deal_won_notifications_total
from src.crm.deals.repository import DealRepository
from src.crm.deals.schemas import DealRead
from src.crm.deals.stages import DealStatus
from src.crm.services.mailer import BrevoMailer

logger = structlog.get_logger(__name__)


def should_notify_won(previous_status: str | None, deal: DealRead) -> bool:
    """True when ``deal`` just entered gagne and has someone to congratulate."""
    return (
        deal.status == DealStatus.GAGNE.value
        and previous_status != DealStatus.GAGNE.value
        and deal.assigned_to is not None
    )


def format_amount(amount: float) -> str:
    """Format an amount the French way: ``12 500,5`` (no trailing zeros)."""
    value = Decimal(str(amount)).quantize(Decimal("0.01")).normalize()
    integer, _, fraction = f"{value:f}".partition(".")
    sign = "-" if integer.startswith("-") else ""
    digits = integer.lstrip("-")
    groups = []
    while digits:
        groups.insert(0, digits[-3:])
        digits = digits[:-3]
    grouped = sign + " ".join(groups or ["0"])
    return f"{grouped},{fraction}" if fraction else grouped


def render_deal_won_email(first_name: str | None, deal_title: str, amount: float) -> tuple[str, str]:
    """Build (subject, html) for the deal-won email."""
    subject = f"Deal gagné : {deal_title}"
    html = (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<h1 style="color: #059669;">Deal gagné !</h1>'
        f"<h2>Félicitations {escape(first_name or '')} !</h2>"
        "<p>Vous venez de remporter un nouveau deal :</p>"
        f"<p><strong>{escape(deal_title)}</strong></p>"
        f'<p style="color: #059669; font-size: 28px;">{format_amount(amount)} €</p>'
        "<p>Rendez-vous sur votre dashboard pour suivre vos performances.</p>"
        "</div>"
    )
    return subject, html


class DealWonNotifier:
    """Send the deal-won email to a deal's assignee.

    Args:
        repository: DealRepository used to load the assignee.
        mailer: BrevoMailer that delivers the email.
    """

    def __init__(self, repository: DealRepository, mailer: BrevoMailer) -> None:
        self._repo = repository
        self._mailer = mailer

    async def notify(self, deal: DealRead) -> bool:
        """Email the assignee of a won deal.

        Returns:
            True if the email was accepted by the provider, False otherwise
            (no assignee, assignee gone, mailer disabled, or failure).
        """
        if deal.assigned_to is None:
            return False

        try:
            assignee = await self._repo.get_assignee(deal.assigned_to)
            if assignee is None:
                logger.warning(
                    "deals.won_notification_skipped",
                    deal_id=deal.id,
                    reason="assignee_not_found",
                )
                deal_won_notifications_total.labels(outcome="skipped").inc()
                return False

            subject, html = render_deal_won_email(
                assignee.first_name, deal.title, deal.amount
            )
            sent = await self._mailer.send_email(assignee.email, subject, html)
        except Exception as exc:
            logger.warning("deals.won_notification_error", deal_id=deal.id, error=str(exc))
            deal_won_notifications_total.labels(outcome="error").inc()
            return False

        deal_won_notifications_total.labels(outcome="sent" if sent else "failed").inc()
        logger.info("deals.won_notification", deal_id=deal.id, sent=sent)
        return sent
