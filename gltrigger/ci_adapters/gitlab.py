import threading
from typing import Mapping

import httpx
import structlog

from gltrigger.ci_adapters.base import GatewayError
from gltrigger.config import settings
from gltrigger.models import Job, Pipeline

logger = structlog.get_logger()

API_SUFFIX = "/api/v4"
JOBS_PER_PAGE = 100


def normalize_base_url(url: str) -> str:
    """Strip a trailing slash and API version path from a GitLab URL."""
    url = url.strip().rstrip("/")
    if url.endswith(API_SUFFIX):
        url = url[: -len(API_SUFFIX)].rstrip("/")
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as exc:
        raise GatewayError(f"Failed to set base url: {exc}", url) from exc
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise GatewayError("Failed to set base url", url)
    return url


class GitLabGateway:
    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: float | None = None,
        retries: int | None = None,
        backoff: float | None = None,
        transport: httpx.BaseTransport | None = None,
        cancel: threading.Event | None = None,
    ):
        self._base_url = normalize_base_url(base_url)
        self._retries = settings.gateway_retries if retries is None else retries
        self._backoff = (
            settings.retry_backoff_seconds if backoff is None else backoff
        )
        self._cancel = cancel or threading.Event()
        self._client = httpx.Client(
            base_url=f"{self._base_url}{API_SUFFIX}",
            headers={"PRIVATE-TOKEN": token},
            timeout=settings.httpx_timeout if timeout is None else timeout,
            transport=transport,
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    def close(self) -> None:
        self._client.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _request(
        self, method: str, path: str, retry: bool = True, **kwargs
    ) -> httpx.Response:
        """Send a request, retrying transport errors and 5xx a bounded number of times.

        With ``retry=False`` exactly one attempt is made.
        """
        url = f"{self._base_url}{API_SUFFIX}{path}"
        retries = self._retries if retry else 0
        attempt = 0
        while True:
            try:
                resp = self._client.request(method, path, **kwargs)
            except httpx.TransportError as exc:
                if attempt < retries:
                    self._sleep_before_retry(attempt, url, error=str(exc))
                    attempt += 1
                    continue
                raise GatewayError(f"Request failed: {exc}", url) from exc

            if resp.status_code >= 500 and attempt < retries:
                self._sleep_before_retry(attempt, url, status_code=resp.status_code)
                attempt += 1
                continue
            if resp.status_code == 404:
                raise GatewayError("Resource not found", url, 404)
            if resp.is_error:
                raise GatewayError(
                    f"Request failed (HTTP {resp.status_code}): {resp.text}",
                    url,
                    resp.status_code,
                )
            return resp

    def _sleep_before_retry(self, attempt: int, url: str, **context) -> None:
        delay = self._backoff * (2**attempt)
        logger.warning(
            "Retrying GitLab request", url=url, attempt=attempt + 1, delay=delay, **context
        )
        if self._cancel.wait(delay):
            raise GatewayError("Request cancelled during retry backoff", url)

    def _json(self, resp: httpx.Response):
        try:
            return resp.json()
        except ValueError as exc:
            raise GatewayError(
                f"Invalid JSON response: {exc}", str(resp.request.url)
            ) from exc

    def trigger_pipeline(
        self,
        project_id: int,
        ref: str,
        token: str,
        variables: Mapping[str, str],
    ) -> Pipeline:
        data = {"token": token, "ref": ref}
        for key, value in variables.items():
            data[f"variables[{key}]"] = value
        resp = self._request(
            "POST",
            f"/projects/{project_id}/trigger/pipeline",
            retry=False,
            data=data,
        )
        body = self._json(resp)
        try:
            return Pipeline(
                id=int(body["id"]),
                web_url=body.get("web_url", ""),
                status=body.get("status", ""),
            )
        except (KeyError, TypeError, ValueError) as exc:
            raise GatewayError(
                f"Unexpected trigger response: {body!r}", str(resp.request.url)
            ) from exc

    def get_pipeline_status(self, project_id: int, pipeline_id: int) -> str:
        resp = self._request("GET", f"/projects/{project_id}/pipelines/{pipeline_id}")
        body = self._json(resp)
        if not isinstance(body, dict) or "status" not in body:
            raise GatewayError(
                f"Unexpected pipeline response: {body!r}", str(resp.request.url)
            )
        return body["status"]

    def list_jobs(self, project_id: int, pipeline_id: int) -> list[Job]:
        """List every job of a pipeline, following X-Next-Page pagination."""
        jobs: list[Job] = []
        page = "1"
        while page:
            resp = self._request(
                "GET",
                f"/projects/{project_id}/pipelines/{pipeline_id}/jobs",
                params={"per_page": JOBS_PER_PAGE, "page": page},
            )
            body = self._json(resp)
            if not isinstance(body, list):
                raise GatewayError(
                    f"Unexpected jobs response: {body!r}", str(resp.request.url)
                )
            try:
                jobs.extend(
                    Job(
                        id=int(item["id"]),
                        name=item.get("name", ""),
                        web_url=item.get("web_url", ""),
                        status=item.get("status", ""),
                    )
                    for item in body
                )
            except (AttributeError, KeyError, TypeError, ValueError) as exc:
                raise GatewayError(
                    f"Unexpected jobs response: {body!r}", str(resp.request.url)
                ) from exc
            page = resp.headers.get("X-Next-Page", "").strip()
        return jobs

    def fetch_job_log(self, project_id: int, job_id: int) -> bytes:
        resp = self._request("GET", f"/projects/{project_id}/jobs/{job_id}/trace")
        return resp.content
