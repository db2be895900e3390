class TriggerError(RuntimeError):
    """Base class for failures of a trigger run."""


class PipelineTriggerFailed(TriggerError):
    """The hosting service rejected the trigger request."""


class PollError(TriggerError):
    """Fetching pipeline status, jobs or a job log failed mid-run."""


class PipelineTimeout(TriggerError, TimeoutError):
    """The pipeline did not reach a terminal status before the deadline."""


class RunCancelled(TriggerError):
    """The run was cancelled by the caller."""


class PipelineFailed(TriggerError):
    """The pipeline finished with a status that classifies as failed."""

    def __init__(self, web_url: str, status: str):
        self.web_url = web_url
        self.status = status
        super().__init__(f"pipeline {web_url} failed with status '{status}'")
