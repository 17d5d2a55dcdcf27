from celery import shared_task
from celery.utils.log import get_task_logger

from portfolio_api.core.email import _send_email_sync, build_email_message

logger = get_task_logger(__name__)

CONFIRMATION_TEMPLATE = """Hi {name},

Thanks for getting in touch. Your message "{subject}" arrived safely and
I will reply as soon as I can.

Reference: {submission_id}
"""


@shared_task(
    bind=True,
    name="workers.tasks.notification.send_contact_confirmation",
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True,
    ignore_result=True,
)
def send_contact_confirmation_task(
    self,
    submission_id: str,
    name: str,
    email: str,
    subject: str,
) -> str:
    """Send the sender a short acknowledgement of their contact message."""
    logger.info("Processing contact confirmation for submission_id=%s", submission_id)

    message = build_email_message(
        recipient=email,
        subject=f"Re: {subject}",
        body_text=CONFIRMATION_TEMPLATE.format(
            name=name, subject=subject, submission_id=submission_id
        ),
    )
    # Failures propagate; autoretry_for handles the retry
    _send_email_sync(message)

    logger.info("Confirmation sent for submission_id=%s", submission_id)
    return "sent"
