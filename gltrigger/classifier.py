from gltrigger.models import SUCCESS_STATUSES, TERMINAL_STATUSES, Outcome


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES


def classify(status: str) -> Outcome:
    """Map a terminal pipeline status to an Outcome.

    Statuses outside the known success set fail closed: anything that cannot
    be positively confirmed successful is reported as failed.
    """
    if status in SUCCESS_STATUSES:
        return Outcome.succeeded
    return Outcome.failed
