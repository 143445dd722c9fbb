"""
Send a test email through the configured transport (Mailgun, else SendGrid).
Usage: python scripts/test_email.py <to_email>
"""
import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.config import get_settings  # noqa: E402
from app.services.notifications import NotificationDispatcher  # noqa: E402


def main():
    to_email = (sys.argv[1] if len(sys.argv) > 1 else "").strip()
    if not to_email:
        print("Usage: python scripts/test_email.py <to_email>")
        sys.exit(1)

    settings = get_settings()
    notifier = NotificationDispatcher(settings)
    if notifier.transport is None:
        print("Email is not configured. Set MAILGUN_API_KEY and MAILGUN_DOMAIN (or SENDGRID_API_KEY) in .env")
        print(f"  MAILGUN_API_KEY: {'(set)' if settings.mailgun_api_key else '(missing)'}")
        print(f"  MAILGUN_DOMAIN: {repr(settings.mailgun_domain) if settings.mailgun_domain else '(missing)'}")
        print(f"  SENDGRID_API_KEY: {'(set)' if settings.sendgrid_api_key else '(missing)'}")
        sys.exit(1)

    health = notifier.check_health()
    print(f"Transport: {notifier.transport} healthy={health.healthy} config={health.config}")
    if health.error:
        print(f"  Health check error: {health.error}")

    print(f"Sending test email to: {to_email}")
    result = notifier.send_test(to_email)
    if result.success:
        print(f"Success: Test email sent (id={result.message_id}). Check the inbox (and spam) for {to_email}")
    else:
        print(f"Failed: {result.error}")
        print("  - Use the Private API key from Mailgun (Sending -> Domain -> API Keys), not the domain name.")
        print("  - For EU accounts set MAILGUN_BASE_URL=https://api.eu.mailgun.net in .env")
        sys.exit(1)


if __name__ == "__main__":
    main()
