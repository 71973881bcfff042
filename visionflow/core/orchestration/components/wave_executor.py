"""Bounded concurrent execution of one wave of independent nodes."""

import asyncio
from collections.abc import Awaitable, Callable, Sequence

from visionflow.core.logging import get_logger
from visionflow.core.orchestration.cancellation import (
    CancellationToken,
    CancellationTokenSource,
)
from visionflow.core.orchestration.models import NodeExecutionResult

logger = get_logger(__name__)

__all__ = ["RunOne", "WaveExecutor"]

RunOne = Callable[[str, CancellationToken], Awaitable[NodeExecutionResult]]


class WaveExecutor:
    """Runs the nodes of a wave concurrently, at most ``max_concurrent_nodes`` at once.

    All nodes of a wave share a child cancellation token linked to the run
    token. The first critical failure cancels that child token: nodes still
    waiting for a slot come back cancelled without starting, and running
    nodes see the cancellation at their next check. The wave always waits
    for every node before returning.
    """

    def __init__(self, max_concurrent_nodes: int) -> None:
        if max_concurrent_nodes < 1:
            raise ValueError("max_concurrent_nodes must be at least 1")
        self.max_concurrent_nodes = max_concurrent_nodes

    async def execute_wave(
        self,
        wave: Sequence[str],
        run_one: RunOne,
        parent_token: CancellationToken,
    ) -> tuple[list[NodeExecutionResult], bool]:
        """Execute ``wave`` and return ``(results, critical_failure)``.

        Parameters
        ----------
        wave : Sequence[str]
            Ids of the nodes to run
        run_one : RunOne
            Coroutine function running one node under the given token; it must
            turn node faults into results rather than raise
        parent_token : CancellationToken
            The run's token

        Returns
        -------
        tuple[list[NodeExecutionResult], bool]
            Results in completion order, and whether a critical node failed
        """
        semaphore = asyncio.Semaphore(self.max_concurrent_nodes)
        wave_source = CancellationTokenSource.linked(parent_token)
        results: list[NodeExecutionResult] = []
        critical_failure = False

        async def execute_with_limit(node_id: str) -> NodeExecutionResult:
            nonlocal critical_failure
            async with semaphore:
                result = await run_one(node_id, wave_source.token)
            results.append(result)
            if not critical_failure and result.aborts_run(parent_token.is_cancelled):
                critical_failure = True
                logger.debug(
                    "Critical node '{node}' failed, cancelling {count} sibling(s)",
                    node=result.name,
                    count=len(wave) - len(results),
                )
                wave_source.cancel()
            return result

        try:
            outcomes = await asyncio.gather(
                *[execute_with_limit(node_id) for node_id in wave],
                return_exceptions=True,
            )
        finally:
            wave_source.close()

        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                logger.error("Unexpected exception during wave execution: {error}", error=outcome)
                raise outcome
        return results, critical_failure
