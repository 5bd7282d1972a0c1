"""
Alerting for cases that need a human
"""

from .slack_notifier import SlackNotifier

__all__ = ["SlackNotifier"]
