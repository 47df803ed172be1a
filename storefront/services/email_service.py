"""
Email service for the storefront.

Sends transactional email over SMTP (Google Workspace by default). Each
message carries a plain-text part and an HTML part, both rendered from
Jinja templates under templates/emails/.

Usage:
    from storefront.services.email_service import run_in_background, send_email

    run_in_background(
        send_email,
        to="customer@example.com",
        subject="Manage your subscription",
        template="emails/portal_link.html",
        text_template="emails/portal_link.txt",
        context={"portal_link": url},
    )
"""

import logging
import smtplib
import threading
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from flask import current_app, render_template

logger = logging.getLogger(__name__)


def is_configured(app=None):
    """True if SMTP credentials are present."""
    app = app or current_app
    return bool(app.config.get("MAIL_USERNAME") and app.config.get("MAIL_PASSWORD"))


def _send_smtp(app, msg):
    """Deliver a built message over SMTP. Runs inside the app context."""
    with app.app_context():
        host = app.config.get("MAIL_SMTP_HOST", "smtp.gmail.com")
        port = app.config.get("MAIL_SMTP_PORT", 587)
        username = app.config.get("MAIL_USERNAME")
        password = app.config.get("MAIL_PASSWORD")

        if not username or not password:
            logger.warning("Email not sent — MAIL_USERNAME or MAIL_PASSWORD not configured.")
            return

        try:
            with smtplib.SMTP(host, port, timeout=30) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                server.login(username, password)
                server.send_message(msg)
            logger.info(f"Email sent to {msg['To']} — {msg['Subject']}")
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {msg['To']}: {e}")


def build_message(to, subject, template, context=None, text_template=None, reply_to=None):
    """Render templates and assemble a multipart/alternative message."""
    app = current_app._get_current_object()
    context = context or {}

    from_name = app.config.get("MAIL_FROM_NAME", "Kimora Co")
    from_email = app.config.get("MAIL_FROM_ADDRESS") or app.config.get("MAIL_USERNAME", "")

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = f"{from_name} <{from_email}>"
    msg["To"] = to if isinstance(to, str) else ", ".join(to)

    if reply_to:
        msg["Reply-To"] = reply_to

    # Plain text first: clients show the last part they can render
    if text_template:
        msg.attach(MIMEText(render_template(text_template, **context), "plain"))
    msg.attach(MIMEText(render_template(template, **context), "html"))
    return msg


def send_email(to, subject, template, context=None, text_template=None, reply_to=None):
    """
    Render and send a templated email. Blocks until SMTP is done, so call
    it from run_in_background() when serving a request.

    Args:
        to:            Recipient email address (str or list).
        subject:       Email subject line.
        template:      Path to the Jinja2 HTML template (relative to templates/).
        context:       Dict of variables to pass to the templates.
        text_template: Optional plain-text template.
        reply_to:      Optional reply-to address.
    """
    app = current_app._get_current_object()
    msg = build_message(to, subject, template, context, text_template, reply_to)
    _send_smtp(app, msg)


def _run_with_context(app, fn, args, kwargs):
    with app.app_context():
        fn(*args, **kwargs)


def run_in_background(fn, *args, **kwargs):
    """Call fn(*args, **kwargs) on a daemon thread inside an app context.

    Returns the started thread.
    """
    app = current_app._get_current_object()
    thread = threading.Thread(target=_run_with_context, args=(app, fn, args, kwargs))
    thread.daemon = True
    thread.start()
    return thread
