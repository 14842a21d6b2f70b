"""
Notifier Interface

The dispatcher decides whether and what to send; a notifier only delivers.
"""

import logging

logger = logging.getLogger(__name__)

MAX_LISTED_TARGETS = 25


class Notifier:
    """
    Transport interface. Implementations raise NotifyError on failure.
    """

    def send(self, recipient, subject, body):
        raise NotImplementedError


class ConsoleNotifier(Notifier):
    """Logs messages instead of sending them (no SMTP credentials configured)."""

    def __init__(self):
        self.sent = []

    def send(self, recipient, subject, body):
        self.sent.append((recipient, subject, body))
        logger.info(f"[NOTIFY] To: {recipient} | {subject}\n{body}")


def render_availability_message(location_hint, radius, targets):
    """
    Build the subject and body of an availability alert.

    Args:
        location_hint (str): Subscriber postcode
        radius (int): Search radius in miles
        targets (list): Objects with `id`, `display_name` and `canonical_url`

    Returns:
        tuple: (subject, body)
    """
    count = len(targets)
    subject = f"Practice Radar - {count} accepting near {location_hint}"

    lines = [
        f"Practices accepting new NHS patients within {radius} miles of {location_hint}:",
        "",
    ]
    for number, target in enumerate(targets[:MAX_LISTED_TARGETS], start=1):
        name = target.display_name or target.id
        lines.append(f"{number}. {name}")
        if target.canonical_url:
            lines.append(f"   {target.canonical_url}")
    if count > MAX_LISTED_TARGETS:
        lines.append(f"...and {count - MAX_LISTED_TARGETS} more.")

    lines.extend([
        "",
        "Please call the practice to confirm before travelling.",
        "",
        "---",
        "This is an automated notification. Please do not reply to this email.",
    ])
    return subject, "\n".join(lines)
