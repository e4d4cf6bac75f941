"""monitoring/__init__.py

Crank Metrics & Telegram Alerts.

Submodules:
- metrics: Process-wide crank counters and periodic reporter
- alerts: Telegram bot client for sending notifications
- exporters: Metrics persistence (CSV)
"""

from .alerts import TelegramBot, compose_crank_failure_alert
from .exporters import export_run_metrics
from .metrics import CrankMetrics, MetricsReporter

__all__ = [
    "TelegramBot",
    "compose_crank_failure_alert",
    "export_run_metrics",
    "CrankMetrics",
    "MetricsReporter",
]
