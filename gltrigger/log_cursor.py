"""Per-job byte offsets for incremental log emission.

The hosting service only serves whole job logs, so every poll fetches the full
log and the tracker decides which suffix has not been written yet.
"""

from typing import Iterable

from gltrigger.models import Job


class LogCursorTracker:
    def __init__(self):
        self._cursors: dict[int, int] = {}
        self._jobs: dict[int, Job] = {}

    def observe(self, jobs: Iterable[Job]) -> list[Job]:
        """Register unseen jobs at offset 0 and return all known jobs.

        Jobs keep the order they were first seen in; jobs first seen in the
        same listing are ordered by id.
        """
        for job in sorted(jobs, key=lambda j: j.id):
            if job.id not in self._cursors:
                self._cursors[job.id] = 0
            self._jobs[job.id] = job
        return list(self._jobs.values())

    def cursor(self, job_id: int) -> int:
        return self._cursors.get(job_id, 0)

    def advance(self, job_id: int, content: bytes) -> bytes:
        """Return the part of ``content`` not emitted yet and move the cursor past it."""
        offset = self._cursors.setdefault(job_id, 0)
        if len(content) <= offset:
            # Log shrank or raced with a rotation, nothing new this tick
            return b""
        chunk = content[offset:]
        self._cursors[job_id] = offset + len(chunk)
        return chunk
