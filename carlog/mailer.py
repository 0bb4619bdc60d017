"""Transactional email rendering and delivery."""

import logging
from dataclasses import dataclass
from typing import Any, List

import resend
from jinja2 import DictLoader, Environment, select_autoescape
from resend.exceptions import ResendError

from .config import Config
from .errors import EmailDeliveryError

logger = logging.getLogger(__name__)

TEMPLATES = {
    "welcome.subject": "Welcome to GetCarLog!",
    "welcome.html": """\
<!DOCTYPE html>
<html>
  <body>
    <h1>Welcome{% if name %}, {{ name }}{% endif %}!</h1>
    <p>Thanks for joining. Here's what you can do:</p>
    <ul>
      <li><strong>Add your vehicles</strong> and keep their odometers current.</li>
      <li><strong>Log service history</strong> with costs, vendors and receipts.</li>
      <li><strong>Set reminders</strong> by date, by mileage or whichever comes first.</li>
      <li><strong>Export reports</strong> as PDF or CSV for your records.</li>
    </ul>
    <p>Start by adding your first vehicle and logging your most recent service.</p>
  </body>
</html>
""",
    "subscription.subject": "{% if status == 'pro' %}Welcome to Pro!{% else %}Your subscription has changed{% endif %}",
    "subscription.html": """\
<!DOCTYPE html>
<html>
  <body>
    <h1>{% if status == 'pro' %}You're now a Pro member{% else %}Subscription update{% endif %}</h1>
    <p>Your plan is now <strong>{{ status }}</strong>.</p>
    {% if status == 'pro' %}
    <p>Unlimited vehicles, receipt storage and PDF resale packets are unlocked.</p>
    {% elif status == 'cancelled' %}
    <p>Your records stay available on the free plan.</p>
    {% else %}
    <p>We couldn't process your last payment. Update your billing details to keep Pro features.</p>
    {% endif %}
  </body>
</html>
""",
    "reminder.subject": "Maintenance due: {{ title }}",
    "reminder.html": """\
<!DOCTYPE html>
<html>
  <body>
    <h1>{{ title }} is due</h1>
    <p>{{ vehicle }}{% if due_date %} &middot; due {{ due_date }}{% endif %}{% if due_mileage %} &middot; due at {{ due_mileage }}{% endif %}</p>
  </body>
</html>
""",
}

_env = Environment(loader=DictLoader(TEMPLATES), autoescape=select_autoescape(["html"]))


@dataclass
class EmailMessage:
    sender: str
    to: str
    subject: str
    html: str


class Mailer:
    """
    Renders templates and hands messages to deliver().

    The base class only logs and keeps every message in ``sent``; it is the
    transport for local use and tests. ResendMailer delivers for real.
    """

    def __init__(self, sender: str):
        self.sender = sender
        self.sent: List[EmailMessage] = []

    def render(self, template: str, **data: Any) -> EmailMessage:
        subject = _env.get_template(f"{template}.subject").render(**data)
        html = _env.get_template(f"{template}.html").render(**data)
        return EmailMessage(sender=self.sender, to="", subject=subject, html=html)

    def send(self, to: str, template: str, **data: Any) -> EmailMessage:
        message = self.render(template, **data)
        message.to = to
        self.deliver(message)
        self.sent.append(message)
        return message

    def deliver(self, message: EmailMessage) -> None:
        logger.info("Email to %s (not delivered): %s", message.to, message.subject)


class ResendMailer(Mailer):
    """Delivers through the Resend email API."""

    def __init__(self, sender: str, api_key: str):
        super().__init__(sender)
        self.api_key = api_key

    def deliver(self, message: EmailMessage) -> None:
        resend.api_key = self.api_key
        params = {
            "from": message.sender,
            "to": [message.to],
            "subject": message.subject,
            "html": message.html,
        }
        try:
            response = resend.Emails.send(params)
        except ResendError as e:
            raise EmailDeliveryError(f"Failed to send email to {message.to}: {e}") from e
        logger.info("Email to %s sent (%s): %s", message.to, response.get("id"), message.subject)


def make_mailer(config: Config) -> Mailer:
    """The Resend transport when an API key is configured, else the logging mailer."""
    if config.resend_api_key:
        return ResendMailer(config.email_from, config.resend_api_key)
    logger.debug("No Resend API key configured, emails are logged only")
    return Mailer(config.email_from)
