"""Command dispatch.

Maps each protocol command to its typed options and lifecycle operation.
Every request runs under a single guard: it either completes and returns a
fresh health report, or fails as a whole with the error description.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from proxy_overlord.adapters.server.protocol import Request, Response
from proxy_overlord.core.lifecycle import LifecycleController
from proxy_overlord.core.readiness import Escape
from proxy_overlord.domain.exceptions import OverlordError, ProtocolError
from proxy_overlord.domain.options import (
    CommandOptions,
    NoOptions,
    ReconfigureOptions,
    ResetOptions,
    StopOptions,
    WaitActiveRequestsOptions,
)

logger = logging.getLogger(__name__)

Operation = Callable[[LifecycleController, Request, Any, Escape | None], Any]


@dataclass(frozen=True)
class Command:
    """A protocol command.

    Attributes:
        options: Typed options class (defines the accepted option names)
        run: Operation; its return value is the answer
        has_answer: Whether the response carries the operation's answer
    """

    options: type[CommandOptions]
    run: Operation
    has_answer: bool = False


def _reset(controller: LifecycleController, request: Request, options: ResetOptions, escape: Escape | None) -> None:
    controller.reset(options.settings(), request.text(), options.shutdown_manner, escape)


def _stop(controller: LifecycleController, request: Request, options: StopOptions, escape: Escape | None) -> None:
    controller.stop(options.shutdown_manner, escape)


def _reconfigure(
    controller: LifecycleController, request: Request, options: ReconfigureOptions, escape: Escape | None
) -> None:
    controller.reconfigure(options.workers, options.diskers, escape)


def _wait_active_requests(
    controller: LifecycleController,
    request: Request,
    options: WaitActiveRequestsOptions,
    escape: Escape | None,
) -> None:
    controller.wait_active_requests(options.request_path, options.count, escape)


COMMANDS: dict[tuple[str, str], Command] = {
    ("POST", "/reset"): Command(ResetOptions, _reset),
    ("GET", "/check"): Command(NoOptions, lambda controller, request, options, escape: None),
    ("GET", "/stop"): Command(StopOptions, _stop),
    ("GET", "/restart"): Command(
        NoOptions, lambda controller, request, options, escape: controller.restart(escape)
    ),
    ("GET", "/reconfigure"): Command(ReconfigureOptions, _reconfigure),
    ("GET", "/finishCaching"): Command(
        NoOptions, lambda controller, request, options, escape: controller.finish_caching(escape)
    ),
    ("GET", "/waitActiveRequests"): Command(WaitActiveRequestsOptions, _wait_active_requests),
    ("GET", "/getAccessRecords"): Command(
        NoOptions,
        lambda controller, request, options, escape: controller.access_records(),
        has_answer=True,
    ),
    ("GET", "/executionEnvironment"): Command(
        NoOptions,
        lambda controller, request, options, escape: controller.execution_environment(),
        has_answer=True,
    ),
}


def find_command(request: Request) -> Command:
    """Look up the command for a request.

    Raises:
        ProtocolError: If the method and path name no supported command
    """
    command = COMMANDS.get(request.command)
    if command is None:
        raise ProtocolError(
            f"unsupported Proxy Overlord Protocol request: {request.method} {request.path}"
        )
    return command


class RequestHandler:
    """Executes requests against the lifecycle controller."""

    def __init__(self, controller: LifecycleController):
        self.controller = controller

    def handle(self, request: Request, escape: Escape | None = None) -> Response:
        """Handle a single request.

        Args:
            request: Parsed request
            escape: Cancellation condition for readiness waits

        Returns:
            Success response with a fresh health report, or a failure response
        """
        try:
            command = find_command(request)
            options = command.options.from_options(request.options)
            logger.info(f"Handling {request.method} {request.path} with {options}")
            answer = command.run(self.controller, request, options, escape)
            health = self.controller.health()
            return Response.success(health.to_dict(), answer, command.has_answer)
        except OverlordError as e:
            logger.error(f"{request.method} {request.path} failed: {e}")
            return Response.failure(str(e))
        except Exception as e:
            logger.exception(f"Error handling {request.method} {request.path}: {e}")
            return Response.failure(f"Internal error: {e}")
