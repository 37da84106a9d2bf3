"""Resource reconciler realizing resource specs on a management server.

Each top-level spec is planned, then sent: all add steps of one resource
and its descendants travel in one composite operation, so the server
applies them atomically. Failures are raised, never compensated.
"""
import logging
from typing import TYPE_CHECKING, Optional

from ..utils.logging_config import timed_section
from .diff import DiffEngine
from .errors import OperationFailedError
from .interpreter import ResultInterpreter
from .operations import build_composite_operation
from .planner import OperationPlanner
from .schema import (
    Address,
    ExecutionResult,
    ExistingResourcePolicy,
    OperationPlan,
    ResourceSpec,
    ResourceState,
)

if TYPE_CHECKING:
    from ..management.base import ManagementClient

logger = logging.getLogger(__name__)

PROFILE = "profile"


def profile_parents(parent: Address, profiles: Optional[list[str]]) -> list[Address]:
    """Parent addresses to apply a spec under, one per domain profile."""
    if not profiles:
        return [parent]
    return [Address(((PROFILE, profile),)) + parent for profile in profiles]


class ResourceReconciler:
    """Add resource specs to a server through a management client."""

    def __init__(
        self,
        diff_engine: Optional[DiffEngine] = None,
        planner: Optional[OperationPlanner] = None,
        interpreter: Optional[ResultInterpreter] = None
    ):
        self.interpreter = interpreter or ResultInterpreter()
        self.diff_engine = diff_engine or DiffEngine(self.interpreter)
        self.planner = planner or OperationPlanner()

    async def plan(
        self,
        spec: ResourceSpec,
        client: "ManagementClient",
        parent: Optional[Address] = None,
        profiles: Optional[list[str]] = None
    ) -> list[OperationPlan]:
        """
        Plan a spec without sending any change.

        Reads the server for policies that depend on the current state.

        Returns:
            One OperationPlan per profile (or a single plan)
        """
        plans = []
        for target in profile_parents(parent or Address(), profiles):
            address = target + spec.address
            state = await self._current_state(spec, client, address)
            plans.append(self.planner.plan(spec, address, state))
        return plans

    async def add_resource(
        self,
        spec: ResourceSpec,
        client: "ManagementClient",
        parent: Optional[Address] = None,
        profiles: Optional[list[str]] = None
    ) -> ExecutionResult:
        """
        Realize a resource spec and all its children on the server.

        Args:
            spec: Resource spec, address relative to ``parent``
            client: Connected management client
            parent: Address the resource is added under (default: root)
            profiles: Domain profiles; the resource is added once per profile

        Returns:
            ExecutionResult of the send. With several profiles the value is
            the list of per-profile results.

        Raises:
            OperationFailedError: If the server rejects any operation
            TransportError: If the server cannot be reached
        """
        results = []
        for plan in await self.plan(spec, client, parent, profiles):
            results.append(await self.apply(plan, client))

        if len(results) == 1:
            return results[0]
        return ExecutionResult.ok(results)

    async def add_resources(
        self,
        specs: list[ResourceSpec],
        client: "ManagementClient",
        parent: Optional[Address] = None,
        profiles: Optional[list[str]] = None
    ) -> list[ExecutionResult]:
        """Add specs in declaration order, stopping at the first failure."""
        results = []
        for spec in specs:
            results.append(await self.add_resource(spec, client, parent, profiles))
        return results

    async def apply(self, plan: OperationPlan, client: "ManagementClient") -> ExecutionResult:
        """Send a plan: pre-operations one by one, then the steps."""
        if plan.no_change:
            logger.info(f"Resource {plan.address} already present, nothing to do")
            return ExecutionResult.ok()

        server_id = getattr(client, "server_id", None)
        async with timed_section("add_resource", server_id, address=str(plan.address)):
            for op in plan.pre_operations:
                logger.info(f"Sending {op}")
                self.interpreter.check(await client.execute(op), op)

            if plan.atomic and len(plan.steps) > 1:
                composite = build_composite_operation(plan.steps)
                logger.info(
                    f"Sending composite of {len(plan.steps)} steps for {plan.address}"
                )
                return self.interpreter.check(await client.execute(composite), composite)

            result = ExecutionResult.ok()
            for index, op in enumerate(plan.steps):
                logger.info(f"Sending {op}")
                result = self.interpreter.interpret(await client.execute(op), op)
                if not result.success:
                    if len(plan.steps) > 1:
                        result.failed_step = index
                    raise OperationFailedError(result)
            return result

    async def _current_state(
        self,
        spec: ResourceSpec,
        client: "ManagementClient",
        address: Address
    ) -> Optional[ResourceState]:
        if spec.if_exists == ExistingResourcePolicy.ADD:
            return None
        recursive = spec.if_exists == ExistingResourcePolicy.UPDATE
        return await self.diff_engine.calculate(client, address, recursive=recursive)
