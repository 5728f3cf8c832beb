"""
Route and arbitrage execution.

Handles:
- Revalidation against fresh pool state before anything is built
- Transaction building, signing and pre-flight simulation
- Submission with bounded exponential backoff on transient errors
- Priority-fee escalation, higher for time-sensitive arbitrage
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .arbitrage_detector import ArbitrageDetector
from .exceptions import (
    DataUnavailable,
    RouteInvalidated,
    RoutingError,
    SimulationFailed,
)
from .interfaces import (
    MarketDataProvider,
    Signer,
    TimeProvider,
    TransactionSubmitter,
    get_time_provider,
)
from .metrics import RoutingMetrics
from .retry import TRANSIENT_ERRORS, PriorityFeePolicy, RetryPolicy, is_transient
from .route_finder import RouteFinder
from .types import (
    ONE,
    ZERO,
    ArbitrageCycle,
    ExecutionReceipt,
    Pool,
    Route,
    RouteCandidate,
    SplitRoute,
)
from .utils import calculate_percentage, format_duration, get_logger, shorten_address

logger = get_logger(__name__)

Executable = Union[Route, SplitRoute, ArbitrageCycle]


@dataclass(frozen=True)
class SwapInstruction:
    """One pool swap inside a transaction payload."""

    pool: str
    token_in: str
    token_out: str
    amount_in: Decimal
    min_amount_out: Decimal


@dataclass(frozen=True)
class ExecutionPayload:
    """
    Chain-agnostic description of what the transaction must do.

    Attributes:
        result_id: Route or cycle id being executed
        kind: "route" or "arbitrage"
        instructions: Swaps in execution order
        amount_in: Total input amount
        expected_output: Quoted total output
        min_output: Output below which the transaction should revert
        estimated_cost: Expected network cost of the transaction
    """

    result_id: str
    kind: str
    instructions: Tuple[SwapInstruction, ...]
    amount_in: Decimal
    expected_output: Decimal
    min_output: Decimal
    estimated_cost: Decimal = ZERO


def _instructions(route: Route, slippage: Decimal) -> List[SwapInstruction]:
    return [
        SwapInstruction(
            pool=hop.pool.address,
            token_in=hop.token_in.address,
            token_out=hop.token_out.address,
            amount_in=hop.amount_in,
            min_amount_out=hop.amount_out * (ONE - slippage),
        )
        for hop in route.hops
    ]


def build_payload(target: Executable) -> ExecutionPayload:
    """Translate a re-quoted route or cycle into a submission payload."""
    if isinstance(target, ArbitrageCycle):
        # A cycle must at least return its input
        return ExecutionPayload(
            result_id=target.cycle_id,
            kind="arbitrage",
            instructions=tuple(_instructions(target.route, ZERO)),
            amount_in=target.amount_in,
            expected_output=target.amount_out,
            min_output=target.amount_in,
            estimated_cost=target.execution_cost,
        )

    slippage = target.max_slippage or ZERO
    legs = target.routes if isinstance(target, SplitRoute) else (target,)
    instructions = [i for leg in legs for i in _instructions(leg, slippage)]
    return ExecutionPayload(
        result_id=target.route_id,
        kind="route",
        instructions=tuple(instructions),
        amount_in=target.amount_in,
        expected_output=target.amount_out,
        min_output=target.amount_out * (ONE - slippage),
        estimated_cost=target.execution_cost,
    )


class RouteExecutor:
    """
    Turns computed routes and cycles into confirmed transactions.

    The signer is passed per call and never stored.
    """

    def __init__(
        self,
        route_finder: RouteFinder,
        detector: ArbitrageDetector,
        submitter: TransactionSubmitter,
        provider: Optional[MarketDataProvider] = None,
        retry_policy: Optional[RetryPolicy] = None,
        fee_policy: Optional[PriorityFeePolicy] = None,
        time_provider: Optional[TimeProvider] = None,
        metrics: Optional[RoutingMetrics] = None,
    ):
        self.route_finder = route_finder
        self.detector = detector
        self.submitter = submitter
        self.provider = provider
        self.retry_policy = retry_policy or RetryPolicy()
        self.fee_policy = fee_policy or PriorityFeePolicy()
        self.time_provider = time_provider or get_time_provider()
        self.metrics = metrics

        # Execution statistics
        self.executions_attempted = 0
        self.executions_confirmed = 0
        self.executions_simulated = 0
        self.executions_failed = 0
        self.executions_invalidated = 0
        self.submission_retries = 0

    async def execute(
        self,
        route: RouteCandidate,
        signer: Signer,
        amount=None,
        simulate_only: bool = False,
    ) -> ExecutionReceipt:
        """
        Revalidate, build, simulate and submit a route.

        Args:
            route: Route or split route from the route finder
            signer: Caller-owned signer
            amount: Input amount override (defaults to the quoted amount)
            simulate_only: Stop after a successful simulation

        Returns:
            Receipt with status "confirmed", "simulated" or "failed"

        Raises:
            RouteInvalidated: If the route moved since it was computed
            SimulationFailed: If the pre-flight simulation rejected it
            RoutingError: Permanent submission errors
        """
        self.executions_attempted += 1
        fresh = await self._fresh_pools(route.pool_addresses)
        try:
            requoted = self.route_finder.validate(route, fresh, amount)
        except RouteInvalidated as e:
            self._record_invalidation("route", e)
            raise

        return await self._run(build_payload(requoted), signer, False, simulate_only)

    async def execute_arbitrage(
        self,
        cycle: ArbitrageCycle,
        signer: Signer,
        simulate_only: bool = False,
    ) -> ExecutionReceipt:
        """
        Revalidate, build, simulate and submit an arbitrage cycle.

        Raises:
            StaleOpportunity: If the cycle no longer clears its profit threshold
            SimulationFailed: If the pre-flight simulation rejected it
            RoutingError: Permanent submission errors
        """
        self.executions_attempted += 1
        fresh = await self._fresh_pools(cycle.pool_addresses)
        try:
            requoted = self.detector.revalidate(cycle, fresh)
        except RouteInvalidated as e:
            self._record_invalidation("arbitrage", e)
            raise

        logger.info(
            f"Executing cycle {requoted.describe()} "
            f"(expected +${requoted.net_profit_usd:.4f})"
        )
        return await self._run(build_payload(requoted), signer, True, simulate_only)

    async def execute_batch(
        self,
        items: Iterable[Executable],
        signer: Signer,
        simulate_only: bool = False,
    ) -> List[ExecutionReceipt]:
        """
        Execute several routes or cycles, one receipt per item.

        A failing item yields a failed receipt and the batch carries on.
        """
        receipts = []
        for item in items:
            result_id = item.cycle_id if isinstance(item, ArbitrageCycle) else item.route_id
            try:
                if isinstance(item, ArbitrageCycle):
                    receipt = await self.execute_arbitrage(item, signer, simulate_only)
                else:
                    receipt = await self.execute(item, signer, simulate_only=simulate_only)
            except Exception as e:
                logger.error(f"Batch item {result_id} failed: {e}")
                receipt = ExecutionReceipt(
                    success=False, status="failed", result_id=result_id, error=str(e)
                )
            receipts.append(receipt)
        return receipts

    async def _fresh_pools(self, addresses: Sequence[str]) -> Dict[str, Pool]:
        """Latest pool state from the provider; missing entries fall back to the graph."""
        if self.provider is None:
            return {}

        fresh: Dict[str, Pool] = {}
        for address in dict.fromkeys(addresses):
            try:
                fresh[address] = await self.provider.get_pool(address)
            except (DataUnavailable,) + TRANSIENT_ERRORS as e:
                logger.warning(
                    f"Could not refresh pool {shorten_address(address)}, "
                    f"using graph snapshot: {e}"
                )
        return fresh

    async def _build(self, signer: Signer, payload: ExecutionPayload, priority_fee: Decimal):
        if priority_fee > 0:
            tx = await self.submitter.build_priority(signer.address, payload, priority_fee)
        else:
            tx = await self.submitter.build(signer.address, payload)
        return signer.sign(tx)

    async def _simulate(self, signed, payload: ExecutionPayload) -> None:
        """Pre-flight check; transport errors propagate to the caller."""
        if not await self.submitter.simulate(signed):
            raise SimulationFailed(
                f"Simulation rejected {payload.result_id}",
                route_id=payload.result_id,
                details={"kind": payload.kind},
            )

    async def _run(
        self,
        payload: ExecutionPayload,
        signer: Signer,
        arbitrage: bool,
        simulate_only: bool,
    ) -> ExecutionReceipt:
        kind = payload.kind
        fee = self.fee_policy.fee_for(arbitrage, 1)
        signed = await self._build(signer, payload, fee)

        try:
            await self._simulate(signed, payload)
        except SimulationFailed:
            self._record_final(kind, "simulation_failed")
            raise
        except (RoutingError,) + TRANSIENT_ERRORS as e:
            self._record_final(kind, "simulation_failed")
            raise SimulationFailed(
                f"Simulation of {payload.result_id} errored: {e}",
                route_id=payload.result_id,
                details={"error": str(e)},
            ) from e

        if simulate_only:
            self.executions_simulated += 1
            self._record_final(kind, "simulated")
            return ExecutionReceipt(
                success=True,
                status="simulated",
                result_id=payload.result_id,
                realized_output=payload.expected_output,
                priority_fee=fee,
            )

        started = self.time_provider.current_timestamp()
        attempt = 0
        last_error: Optional[BaseException] = None
        while True:
            attempt += 1
            try:
                if attempt > 1:
                    # Rebuilt transactions are simulated again before submission
                    fee = self.fee_policy.fee_for(arbitrage, attempt)
                    signed = await self._build(signer, payload, fee)
                    await self._simulate(signed, payload)
                confirmation = await self.submitter.submit(signed)
            except SimulationFailed:
                self.executions_failed += 1
                self._record_final(kind, "simulation_failed")
                logger.error(f"Rebuilt transaction for {payload.result_id} failed simulation")
                raise
            except Exception as e:
                if not is_transient(e):
                    self.executions_failed += 1
                    self._record_final(kind, "rejected")
                    logger.error(f"Submission of {payload.result_id} failed permanently: {e}")
                    raise
                last_error = e
                elapsed = self.time_provider.current_timestamp() - started
                if not self.retry_policy.should_retry(attempt, elapsed):
                    break
                delay = self.retry_policy.delay_for(attempt)
                self.submission_retries += 1
                if self.metrics:
                    self.metrics.record_submission_retry(kind)
                logger.warning(
                    f"Submission attempt {attempt} for {payload.result_id} failed: {e}, "
                    f"retrying in {delay:.2f}s"
                )
                await self.time_provider.sleep(delay)
                continue

            elapsed = self.time_provider.current_timestamp() - started
            self.executions_confirmed += 1
            self._record_final(kind, "confirmed", elapsed)
            logger.info(
                f"Confirmed {payload.result_id} as {confirmation.tx_id} "
                f"after {attempt} attempt(s)"
            )
            return ExecutionReceipt(
                success=True,
                status="confirmed",
                result_id=payload.result_id,
                tx_id=confirmation.tx_id,
                realized_output=confirmation.realized_output,
                fee_paid=confirmation.fee_paid,
                priority_fee=fee,
                attempts=attempt,
                elapsed=elapsed,
            )

        elapsed = self.time_provider.current_timestamp() - started
        self.executions_failed += 1
        self._record_final(kind, "failed", elapsed)
        logger.error(
            f"Giving up on {payload.result_id} after {attempt} attempts "
            f"({format_duration(elapsed)}): {last_error}"
        )
        return ExecutionReceipt(
            success=False,
            status="failed",
            result_id=payload.result_id,
            priority_fee=fee,
            attempts=attempt,
            elapsed=elapsed,
            error=str(last_error),
        )

    def _record_invalidation(self, kind: str, error: RouteInvalidated) -> None:
        self.executions_invalidated += 1
        logger.warning(f"Execution aborted, {kind} moved: {error}")
        if self.metrics:
            self.metrics.record_revalidation_failure(kind, error.reason or "unknown")

    def _record_final(self, kind: str, status: str, elapsed: float = 0.0) -> None:
        if self.metrics:
            self.metrics.record_execution(kind, status, elapsed)

    def statistics(self) -> Dict[str, float]:
        """Get execution statistics."""
        attempted = self.executions_attempted
        return {
            "executions_attempted": attempted,
            "executions_confirmed": self.executions_confirmed,
            "executions_simulated": self.executions_simulated,
            "executions_failed": self.executions_failed,
            "executions_invalidated": self.executions_invalidated,
            "submission_retries": self.submission_retries,
            "success_rate_pct": calculate_percentage(self.executions_confirmed, attempted),
        }
