"""Operation planner turning resource specs into operation plans.

A plan holds everything needed to realize one top-level resource spec:
optional pre-operations sent on their own, then the main steps that are
sent as one composite when the plan is atomic.
"""
from typing import Iterator, Optional

from .diff import changed_attributes, find_child_state
from .operations import (
    build_add_operation,
    build_enable_operation,
    build_remove_operation,
    build_write_attribute_operation,
)
from .schema import (
    Address,
    ChangeType,
    ExecutionPhase,
    ExistingResourcePolicy,
    Operation,
    OperationPlan,
    ResourceSpec,
    ResourceState,
)


def walk(spec: ResourceSpec, address: Address) -> Iterator[tuple[ResourceSpec, Address]]:
    """Yield a spec and its descendants with absolute addresses, parents first."""
    yield spec, address
    for child in spec.children:
        yield from walk(child, address + child.address)


class OperationPlanner:
    """Generate operation plans from resource specs."""

    def plan(
        self,
        spec: ResourceSpec,
        address: Address,
        state: Optional[ResourceState] = None
    ) -> OperationPlan:
        """
        Generate the plan for one resource spec.

        Args:
            spec: Resource spec with its children
            address: Absolute address of the resource
            state: Current state, required for every policy except ``add``

        Returns:
            OperationPlan with pre-operations and steps
        """
        atomic = spec.phase != ExecutionPhase.AT_EXECUTION
        policy = spec.if_exists

        if policy == ExistingResourcePolicy.ADD or state is None or not state.exists:
            return OperationPlan(
                address=address,
                change_type=ChangeType.CREATE,
                steps=self._add_steps(spec, address),
                atomic=atomic,
            )

        if policy == ExistingResourcePolicy.SKIP:
            return OperationPlan(address=address, change_type=ChangeType.NO_CHANGE, atomic=atomic)

        if policy == ExistingResourcePolicy.REPLACE:
            return OperationPlan(
                address=address,
                change_type=ChangeType.REPLACE,
                pre_operations=[build_remove_operation(address, recursive=True)],
                steps=self._add_steps(spec, address),
                atomic=atomic,
            )

        steps = self._update_steps(spec, address, state)
        return OperationPlan(
            address=address,
            change_type=ChangeType.MODIFY if steps else ChangeType.NO_CHANGE,
            steps=steps,
            atomic=atomic,
        )

    def _add_steps(self, spec: ResourceSpec, address: Address) -> list[Operation]:
        """One add per resource, parents before children, enable after add."""
        steps = []
        for node, node_address in walk(spec, address):
            steps.append(build_add_operation(node_address, node.attributes))
            if node.enable:
                steps.append(build_enable_operation(node_address))
        return steps

    def _update_steps(
        self,
        spec: ResourceSpec,
        address: Address,
        state: ResourceState
    ) -> list[Operation]:
        """Write changed attributes of existing resources, add missing ones."""
        steps: list[Operation] = []
        top_depth = len(address.segments)
        added: set[Address] = set()

        for node, node_address in walk(spec, address):
            if node_address.parent in added:
                # Whole subtree already added with its parent
                added.add(node_address)
                continue

            relative = Address(node_address.segments[top_depth:])
            current = find_child_state(state.current, relative)
            if current is None:
                steps.extend(self._add_steps(node, node_address))
                added.add(node_address)
                continue

            desired = build_add_operation(node_address, node.attributes).params
            for name, value in changed_attributes(desired, current).items():
                steps.append(build_write_attribute_operation(node_address, name, value))

        return steps


def describe_plan(plan: OperationPlan) -> str:
    """One-line description of what a plan changes."""
    if plan.change_type == ChangeType.CREATE:
        return f"Added {plan.address} ({len(plan.steps)} operations)"
    if plan.change_type == ChangeType.REPLACE:
        return f"Replaced {plan.address} ({len(plan.steps)} operations)"
    if plan.change_type == ChangeType.MODIFY:
        return f"Updated {plan.address} ({len(plan.steps)} operations)"
    return f"Kept {plan.address} (already present)"


def summarize_plans(plans: list[OperationPlan]) -> str:
    """
    Create a human-readable summary of operation plans.

    Useful for dry-run output and logging.
    """
    if all(plan.no_change for plan in plans):
        return "No changes needed - server already matches the resource specs"

    total = sum(plan.total_operations for plan in plans)
    lines = [f"Operations to send ({total} total):", ""]

    markers = {
        ChangeType.CREATE: "[+] Add",
        ChangeType.REPLACE: "[!] Replace",
        ChangeType.MODIFY: "[~] Update",
        ChangeType.NO_CHANGE: "[=] Keep",
    }

    for plan in plans:
        lines.append(f"  {markers[plan.change_type]} {plan.address}")
        for op in plan.pre_operations:
            lines.append(f"      before: {op}")
        if plan.atomic and len(plan.steps) > 1:
            lines.append(f"      composite of {len(plan.steps)} steps:")
        for op in plan.steps:
            lines.append(f"      {op}")

    return "\n".join(lines)
