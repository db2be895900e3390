import io
import itertools

import pytest

from gltrigger.ci_adapters.base import GatewayError
from gltrigger.config import RunConfig
from gltrigger.models import Job, Pipeline

PIPELINE_URL = "https://example/pipelines/42"


class FakeGateway:
    """Scripted gateway: each status call moves to the next snapshot.

    A snapshot is ``(status, {job_id: log_bytes})``; the last snapshot repeats
    once the script runs out.
    """

    def __init__(self, snapshots, pipeline_id=42, web_url=PIPELINE_URL):
        self.snapshots = list(snapshots)
        self.pipeline = Pipeline(id=pipeline_id, web_url=web_url, status="created")
        self.index = -1
        self.calls = []
        self.trigger_error = None
        self.on_status = None

    @property
    def current(self):
        return self.snapshots[max(self.index, 0)]

    def trigger_pipeline(self, project_id, ref, token, variables):
        self.calls.append(("trigger", project_id, ref, token, dict(variables)))
        if self.trigger_error:
            raise self.trigger_error
        return self.pipeline

    def get_pipeline_status(self, project_id, pipeline_id):
        self.calls.append(("status", project_id, pipeline_id))
        self.index = min(self.index + 1, len(self.snapshots) - 1)
        if self.on_status:
            self.on_status(self)
        return self.current[0]

    def list_jobs(self, project_id, pipeline_id):
        self.calls.append(("jobs", project_id, pipeline_id))
        return [
            Job(id=job_id, name=f"job-{job_id}", web_url=f"https://example/jobs/{job_id}")
            for job_id in sorted(self.current[1], reverse=True)
        ]

    def fetch_job_log(self, project_id, job_id):
        self.calls.append(("log", project_id, job_id))
        return self.current[1][job_id]

    def count(self, kind):
        return sum(1 for call in self.calls if call[0] == kind)


def fake_clock(step=1.0):
    """Monotonic clock that advances ``step`` seconds on every reading."""
    counter = itertools.count(0.0, step)
    return lambda: next(counter)


@pytest.fixture
def run_config():
    return RunConfig(
        project_id=123,
        user_token="glpat-user",
        ref="main",
        pipeline_token="glptt-trigger",
        variables={"UPSTREAM_SHA": "abc123"},
        gitlab_url="https://gitlab.example.com",
        timeout=None,
    )


@pytest.fixture
def out():
    return io.BytesIO()


@pytest.fixture
def gateway_error():
    return GatewayError("Request failed: boom", "https://gitlab.example.com/api/v4/x")


@pytest.fixture
def make_gateway():
    return FakeGateway


@pytest.fixture
def make_clock():
    return fake_clock
