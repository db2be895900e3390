from dataclasses import dataclass
from enum import Enum

TERMINAL_STATUSES = ("failed", "manual", "canceled", "success", "skipped")
SUCCESS_STATUSES = ("manual", "success")


class Outcome(str, Enum):
    succeeded = "succeeded"
    failed = "failed"


@dataclass(frozen=True)
class Pipeline:
    id: int
    web_url: str
    status: str = ""


@dataclass(frozen=True)
class Job:
    id: int
    name: str
    web_url: str
    status: str = ""
