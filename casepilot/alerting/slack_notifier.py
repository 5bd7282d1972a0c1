"""
Slack Case Alerts
Tells a human when a case needs attention: halted on a failed step, blocked on
unclassified steps, or waiting for new catalog methods
"""

import logging
import os
from datetime import datetime
from typing import Any, Dict, List, Optional

from slack_sdk.webhook import WebhookClient

from casepilot.testcases.test_case_model import Step, TestCase

logger = logging.getLogger(__name__)

KIND_EMOJI = {
    "halted": ":red_circle:",
    "blocked": ":large_orange_circle:",
    "needs_methods": ":large_yellow_circle:",
}


class SlackNotifier:
    """Posts case alerts to a Slack incoming webhook, or only logs them when none is set"""

    def __init__(self, webhook_url: Optional[str] = None):
        """
        Set up the webhook client

        Args:
            webhook_url: Slack webhook URL (defaults to SLACK_WEBHOOK_URL env var)
        """
        self.webhook_url = webhook_url or os.getenv("SLACK_WEBHOOK_URL")
        self.webhook_client: Optional[WebhookClient] = None
        if not self.webhook_url:
            logger.warning("SLACK_WEBHOOK_URL not configured - alerts will be logged only")
        else:
            self.webhook_client = WebhookClient(self.webhook_url)

    def send_alert(
        self,
        kind: str,
        title: str,
        description: str,
        fields: Optional[Dict[str, str]] = None,
        details: str = "",
    ) -> bool:
        """
        Post one alert

        Args:
            kind: halted, blocked or needs_methods
            title: Alert title
            description: What happened
            fields: Short key/value facts (case id, step...)
            details: Longer monospace block (observations, proposals)

        Returns:
            True if the alert was delivered (or only logged)
        """
        if not self.webhook_client:
            logger.info(f"[SLACK ALERT] {kind} - {title}: {description}")
            return True

        try:
            blocks = self._build_blocks(kind, title, description, fields or {}, details)
            response = self.webhook_client.send(text=f"{title}: {description}", blocks=blocks)

            if response.status_code == 200 and response.body == "ok":
                logger.info(f"Slack alert sent: {kind} - {title}")
                return True
            logger.error(f"Slack webhook failed: {response.status_code} - {response.body}")
            return False

        except Exception as e:
            logger.error(f"Failed to send Slack alert: {e}")
            return False

    def _build_blocks(
        self,
        kind: str,
        title: str,
        description: str,
        fields: Dict[str, str],
        details: str,
    ) -> List[Dict[str, Any]]:
        """Header, summary, facts and an optional monospace details block"""
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        emoji = KIND_EMOJI.get(kind, ":white_circle:")

        blocks = [
            {"type": "header", "text": {"type": "plain_text", "text": title[:150]}},
            {"type": "section", "text": {"type": "mrkdwn", "text": f"{emoji} {description}"}},
            {"type": "divider"},
        ]

        facts = [{"type": "mrkdwn", "text": f"*{key}:*\n{value}"} for key, value in fields.items()]
        facts.append({"type": "mrkdwn", "text": f"*Timestamp:*\n{timestamp}"})
        blocks.append({"type": "section", "fields": facts[:10]})

        if details:
            blocks.append({
                "type": "section",
                "text": {"type": "mrkdwn", "text": f"```\n{details[:2800]}\n```"},
            })
        return blocks

    # ==========================================
    # Pipeline events
    # ==========================================

    def send_halt_alert(self, case: TestCase, step: Step) -> bool:
        """A step failed and the case stopped"""
        return self.send_alert(
            kind="halted",
            title=f"Case halted: {case.name}",
            description=f"Step {step.index} failed; fix the cause and re-run to resume at this step.",
            fields={"Case": case.id, "Step": str(step.index), "Action": step.action_kind.value},
            details=f"{step.description}\n\nObserved: {step.observed_behavior}",
        )

    def send_blocked_alert(self, case: TestCase, step_indices: List[int]) -> bool:
        """Steps could not be classified and need a human-assigned action kind"""
        lines = [f"{case.step(i).index}. {case.step(i).description}" for i in step_indices]
        return self.send_alert(
            kind="blocked",
            title=f"Case blocked: {case.name}",
            description="Some steps need an action kind before execution can start.",
            fields={"Case": case.id, "Steps": ", ".join(str(i) for i in step_indices)},
            details="\n".join(lines),
        )

    def send_new_method_alert(self, case_id: str, gaps: List[Any]) -> bool:
        """Executed steps with no catalog method; code generation waits for new entries"""
        lines = [f"{g.step_index}. {g.proposed_method}: {g.proposed_signature}" for g in gaps]
        return self.send_alert(
            kind="needs_methods",
            title=f"New methods needed: {case_id}",
            description=f"{len(gaps)} step(s) need a catalog entry before code can be generated.",
            fields={"Case": case_id, "Steps": ", ".join(str(g.step_index) for g in gaps)},
            details="\n".join(lines),
        )
