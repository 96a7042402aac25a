"""End-to-end tests wiring retry, containment, reporting and alerts together."""

import pytest

from faultline.alerts import AlertRouter, EscalationChannel
from faultline.classification import ErrorKind
from faultline.containment import ContainmentLevel, ContainmentScope
from faultline.errors import LastAttemptError
from faultline.formatting import handle_error
from faultline.reporting import ErrorReporter
from faultline.retry import RetryPolicy, retry


class TeamChannel(EscalationChannel):
    name = "team"

    def __init__(self):
        self.sent = []

    async def send(self, alert):
        self.sent.append(alert)
        return True


@pytest.mark.asyncio
async def test_exhausted_load_is_contained_reported_and_alerted(metrics, recording_sleep):
    """A page load that keeps failing ends up as a team alert with a matching id."""
    team = TeamChannel()
    router = AlertRouter(deferred=[team], metrics=metrics)
    reporter = ErrorReporter(alerts=router, metrics=metrics)
    page = ContainmentScope(ContainmentLevel.PAGE, "projects", notify=reporter.capture, url="/projects", metrics=metrics)

    async def load_projects():
        raise ConnectionError("upstream reset")

    async def guarded_load():
        return await retry(load_projects, RetryPolicy(max_attempts=3), sleep=recording_sleep, metrics=metrics)

    assert await page.run(guarded_load) is None
    await reporter.drain()
    await router.drain()

    assert page.active
    assert isinstance(page.captured_error, LastAttemptError)
    assert recording_sleep.delays == [1.0, 2.0]

    report = reporter.recent()[0]
    assert report.correlation_id == page.correlation_id
    assert [a.id for a in team.sent] == [page.correlation_id]

    values = metrics.snapshot().values()
    assert values['containment_captures_total{level="page"}'] == 1
    assert values['retry_exhausted_total{operation="load_projects"}'] == 1
    assert values['alerts_received_total{severity="high",type="error"}'] == 1


@pytest.mark.asyncio
async def test_recovery_after_retry_action(recording_sleep):
    """Retrying a section after a transient outage renders content again."""
    section = ContainmentScope(ContainmentLevel.SECTION, "charts")
    outage = {"down": True}

    async def load_chart():
        if outage["down"]:
            raise ConnectionError("offline")
        return "chart"

    async def guarded():
        return await retry(load_chart, RetryPolicy(max_attempts=2), sleep=recording_sleep)

    assert await section.run(guarded) is None
    assert section.active

    outage["down"] = False
    assert section.retry() is True
    assert await section.run(guarded) == "chart"
    assert not section.active


def test_handle_error_for_last_attempt_error():
    """A LastAttemptError is formatted without leaking the wrapped text."""
    error = LastAttemptError(3, ConnectionError("10.1.2.3 refused"))
    api_error = handle_error(error, context="projects.load")
    assert api_error.code == ErrorKind.UNKNOWN.code
    assert "10.1.2.3" not in api_error.message
