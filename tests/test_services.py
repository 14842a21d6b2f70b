import smtplib
from unittest.mock import MagicMock

import pytest

from config.settings import Settings
from monitoring.errors import NotifyError
from monitoring.notifier import ConsoleNotifier, render_availability_message
from services.email_service import EmailNotifier, build_notifier
from services.monitoring_daemon import MonitoringDaemon


class Practice:

    def __init__(self, code, name="", url=""):
        self.id = code
        self.display_name = name
        self.canonical_url = url


class TestEmailNotifier:

    def make_notifier(self):
        server = MagicMock()
        factory = MagicMock()
        factory.return_value.__enter__.return_value = server
        notifier = EmailNotifier("smtp.example.com", 587, "radar@example.com", "secret", smtp_factory=factory)
        return notifier, factory, server

    def test_sends_over_starttls(self):
        notifier, factory, server = self.make_notifier()
        notifier.send("a@example.com", "Subject", "Body")

        factory.assert_called_once_with("smtp.example.com", 587)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("radar@example.com", "secret")
        message = server.send_message.call_args.args[0]
        assert message["To"] == "a@example.com"
        assert message["Subject"] == "Subject"

    def test_smtp_failure_raises_notify_error(self):
        notifier, _, server = self.make_notifier()
        server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
        with pytest.raises(NotifyError) as excinfo:
            notifier.send("a@example.com", "Subject", "Body")
        assert excinfo.value.recipient == "a@example.com"

    def test_connection_failure_raises_notify_error(self):
        notifier, factory, _ = self.make_notifier()
        factory.side_effect = ConnectionRefusedError("refused")
        with pytest.raises(NotifyError):
            notifier.send("a@example.com", "Subject", "Body")

    def test_build_notifier(self):
        assert isinstance(build_notifier(Settings()), ConsoleNotifier)
        configured = build_notifier(Settings(sender_email="radar@example.com", sender_password="secret"))
        assert isinstance(configured, EmailNotifier)


class TestMessage:

    def test_lists_practices(self):
        subject, body = render_availability_message("RG1 2AB", 10, [
            Practice("V000001", "Smile Dental", "https://www.nhs.uk/services/dentist/smile-dental/V000001"),
            Practice("V000002"),
        ])
        assert subject == "Practice Radar - 2 accepting near RG1 2AB"
        assert "1. Smile Dental" in body
        assert "2. V000002" in body
        assert "Please call the practice to confirm before travelling." in body

    def test_list_is_capped(self):
        practices = [Practice(f"V{n:06d}") for n in range(30)]
        subject, body = render_availability_message("RG1 2AB", 10, practices)
        assert subject.startswith("Practice Radar - 30 accepting")
        assert "25. V000024" in body
        assert "26." not in body
        assert "...and 5 more." in body


class TestDaemon:

    def test_once_runs_single_cycle(self):
        cycle = MagicMock()
        daemon = MonitoringDaemon(Settings(), cycle, sleep=lambda s: None)
        assert daemon.run(location_filter="RG1 2AB", once=True) == 1
        cycle.run_cycle.assert_called_once_with(location_filter="RG1 2AB")

    def test_stop_ends_loop_and_cycle(self):
        cycle = MagicMock()
        daemon = MonitoringDaemon(Settings(scan_interval_seconds=3), cycle, sleep=lambda s: None)

        def run_cycle(location_filter=None):
            if cycle.run_cycle.call_count == 2:
                daemon.signal_handler(15, None)

        cycle.run_cycle.side_effect = run_cycle
        assert daemon.run() == 2
        cycle.request_stop.assert_called_once()

    def test_cycle_errors_do_not_stop_daemon(self):
        cycle = MagicMock()
        daemon = MonitoringDaemon(Settings(scan_interval_seconds=1), cycle, sleep=lambda s: None)

        def run_cycle(location_filter=None):
            if cycle.run_cycle.call_count == 1:
                raise RuntimeError("boom")
            daemon.stop()

        cycle.run_cycle.side_effect = run_cycle
        assert daemon.run() == 2

    def test_wait_has_jitter(self):
        daemon = MonitoringDaemon(Settings(scan_interval_seconds=900), MagicMock())
        waits = {daemon.next_wait() for _ in range(50)}
        assert all(910 <= wait <= 990 for wait in waits)
