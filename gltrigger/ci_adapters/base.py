from typing import Mapping, Protocol

from gltrigger.models import Job, Pipeline


class GatewayError(RuntimeError):
    """A request to the hosting service failed."""

    def __init__(self, detail: str, url: str, status_code: int | None = None):
        self.detail = detail
        self.url = url
        self.status_code = status_code
        super().__init__(f"{detail} ({url})")


class GatewayProtocol(Protocol):
    def trigger_pipeline(
        self,
        project_id: int,
        ref: str,
        token: str,
        variables: Mapping[str, str],
    ) -> Pipeline:
        """Create a pipeline through the trigger endpoint."""
        ...

    def get_pipeline_status(self, project_id: int, pipeline_id: int) -> str: ...
    def list_jobs(self, project_id: int, pipeline_id: int) -> list[Job]: ...

    def fetch_job_log(self, project_id: int, job_id: int) -> bytes:
        """Return the full job log as it stands now."""
        ...
