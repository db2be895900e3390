"""CLI that triggers a downstream GitLab pipeline and waits for it."""

import logging
import re
import signal
import sys
import threading

import click
import structlog

from gltrigger.ci_adapters.base import GatewayError
from gltrigger.ci_adapters.gitlab import GitLabGateway
from gltrigger.config import ConfigError, RunConfig, settings
from gltrigger.errors import TriggerError
from gltrigger.trigger import TriggerOrchestrator

logger = structlog.get_logger()

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"h": 3600.0, "m": 60.0, "s": 1.0, "ms": 0.001}


class Duration(click.ParamType):
    """Go-style durations (``30m``, ``1h30m``, ``90s``) or plain seconds."""

    name = "duration"

    def convert(self, value, param, ctx):
        if isinstance(value, (int, float)):
            seconds = float(value)
        else:
            seconds = self._parse(str(value).strip(), param, ctx)
        if seconds < 0:
            self.fail(f"{value!r} must not be negative", param, ctx)
        return seconds

    def _parse(self, text, param, ctx):
        try:
            return float(text)
        except ValueError:
            pass
        parts = _DURATION_PART.findall(text)
        if not parts or "".join(num + unit for num, unit in parts) != text:
            self.fail(f"{text!r} is not a valid duration", param, ctx)
        return sum(float(num) * _DURATION_UNITS[unit] for num, unit in parts)


class KeyValue(click.ParamType):
    """``KEY:VALUE`` pairs; the value may itself contain colons."""

    name = "key:value"

    def convert(self, value, param, ctx):
        if isinstance(value, tuple):
            return value
        key, sep, val = str(value).partition(":")
        if not sep or not key:
            self.fail(
                f"{value!r}: key value pair should be split with ':'", param, ctx
            )
        return key, val


def _configure_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=False,
    )


def _install_signal_handlers(cancel: threading.Event) -> None:
    def _handler(signum, frame):
        logger.warning("Cancelling run", signal=signal.Signals(signum).name)
        cancel.set()

    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGINT, _handler)
        signal.signal(signal.SIGTERM, _handler)


def _usage_error(ctx: click.Context, message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    click.echo(ctx.get_usage(), err=True)
    ctx.exit(2)


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--p-id", "project_id", type=int, default=0, envvar="GLTRIGGER_PROJECT_ID",
    help="Project ID.",
)
@click.option(
    "--u-token", "user_token", default="", envvar="GLTRIGGER_USER_TOKEN",
    help="User token.",
)
@click.option(
    "--p-token", "pipeline_token", default="", envvar="GLTRIGGER_PIPELINE_TOKEN",
    help="Pipeline trigger token (defaults to the user token).",
)
@click.option("--ref", default="master", show_default=True, help="Ref to run.")
@click.option(
    "--url", "gitlab_url", default=settings.gitlab_url, show_default=True,
    help="GitLab URL.",
)
@click.option(
    "-t", "--timeout", type=Duration(), default=f"{settings.wait_timeout_seconds}s",
    show_default=True, help="Timeout for waiting for pipeline to finish (0 waits forever).",
)
@click.option(
    "-v", "variables", type=KeyValue(), multiple=True,
    help="Pipeline variable as KEY:VALUE (repeatable).",
)
@click.option("--verbose", is_flag=True, help="Log poll progress.")
@click.pass_context
def main(
    ctx, project_id, user_token, pipeline_token, ref, gitlab_url, timeout,
    variables, verbose,
):
    """Trigger a downstream pipeline and stream its job logs until it finishes."""
    _configure_logging(verbose)

    config = RunConfig(
        project_id=project_id,
        user_token=user_token,
        ref=ref,
        pipeline_token=pipeline_token or None,
        variables=dict(variables),
        gitlab_url=gitlab_url,
        timeout=timeout or None,
    )
    try:
        config.validate()
    except ConfigError as e:
        _usage_error(ctx, str(e))

    cancel = threading.Event()
    _install_signal_handlers(cancel)

    try:
        with GitLabGateway(
            config.gitlab_url, config.user_token, cancel=cancel
        ) as gateway:
            TriggerOrchestrator(config, gateway, cancel=cancel).run()
    except (TriggerError, GatewayError) as e:
        logger.error("Run failed", error=str(e))
        sys.exit(1)
    except Exception:
        logger.exception("Unexpected error")
        sys.exit(1)


if __name__ == "__main__":
    main()
