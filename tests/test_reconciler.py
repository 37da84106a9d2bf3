"""Tests for the resource reconciler."""
import pytest

from mcp_app_server.config_engine.errors import (
    ConfigurationError,
    OperationFailedError,
    TransportError,
)
from mcp_app_server.config_engine.operations import build_read_attribute_operation
from mcp_app_server.config_engine.interpreter import ResultInterpreter
from mcp_app_server.config_engine.planner import OperationPlanner, summarize_plans
from mcp_app_server.config_engine.reconciler import ResourceReconciler, profile_parents
from mcp_app_server.config_engine.schema import (
    Address,
    ChangeType,
    ExecutionPhase,
    ExistingResourcePolicy,
    ResourceSpec,
    ResourceState,
    ResultShape,
)


def spec(address: str, children=None, **kwargs) -> ResourceSpec:
    return ResourceSpec(address=Address.parse(address), children=children or [], **kwargs)


def datasource_spec(**kwargs) -> ResourceSpec:
    """A datasource with two connection properties."""
    return spec(
        "subsystem=datasources,data-source=AppDS",
        attributes={"jndi-name": "java:/AppDS", "driver-name": "h2"},
        children=[
            spec("connection-properties=url", attributes={"value": "jdbc:h2:mem:app"}),
            spec("connection-properties=user", attributes={"value": "sa"}),
        ],
        **kwargs,
    )


async def read_value(client, address: str, name: str = "value") -> str:
    op = build_read_attribute_operation(Address.parse(address), name)
    return ResultInterpreter().check(await client.execute(op), op, ResultShape.STRING).value


class TestAddResource:
    """Tests for ResourceReconciler.add_resource."""

    @pytest.mark.asyncio
    async def test_system_property(self, controller, client):
        """A single resource is added and can be read back."""
        await ResourceReconciler().add_resource(
            spec("system-property=org.jboss.maven.plugin", attributes={"value": "true"}),
            client,
        )

        assert await read_value(client, "system-property=org.jboss.maven.plugin") == "true"

    @pytest.mark.asyncio
    async def test_single_add_is_not_wrapped(self, controller, client):
        """One step is sent as a plain add."""
        await ResourceReconciler().add_resource(
            spec("system-property=a", attributes={"value": "1"}), client
        )
        assert controller.sent_operations() == ["add"]

    @pytest.mark.asyncio
    async def test_children_sent_as_one_composite(self, controller, client):
        """Exactly one composite with one step per spec, parents first."""
        controller.add("subsystem=datasources")

        result = await ResourceReconciler().add_resource(datasource_spec(), client)

        assert result.success
        assert controller.sent_operations() == ["composite"]
        steps = controller.received[0]["steps"]
        assert len(steps) == 1 + 2
        assert [s["address"] for s in steps] == [
            [{"subsystem": "datasources"}, {"data-source": "AppDS"}],
            [{"subsystem": "datasources"}, {"data-source": "AppDS"}, {"connection-properties": "url"}],
            [{"subsystem": "datasources"}, {"data-source": "AppDS"}, {"connection-properties": "user"}],
        ]
        assert controller.exists("subsystem=datasources,data-source=AppDS,connection-properties=user")

    @pytest.mark.asyncio
    async def test_step_count_with_nested_descendants(self, controller, client):
        """Grandchildren count as descendants too."""
        tree = spec("a=1", children=[
            spec("b=1", children=[spec("c=1"), spec("c=2")]),
            spec("b=2"),
        ])
        await ResourceReconciler().add_resource(tree, client)

        assert len(controller.received[0]["steps"]) == 1 + len(list(tree.descendants()))
        assert controller.exists("a=1,b=1,c=2")

    @pytest.mark.asyncio
    async def test_parent_address(self, controller, client):
        """Specs are relative to the given parent."""
        controller.add("subsystem=datasources")
        await ResourceReconciler().add_resource(
            spec("data-source=ds", attributes={"jndi-name": "java:/ds"}),
            client,
            parent=Address.parse("subsystem=datasources"),
        )
        assert controller.exists("subsystem=datasources,data-source=ds")

    @pytest.mark.asyncio
    async def test_failed_step_rolls_back_everything(self, controller, client):
        """A failing child leaves nothing behind and names the step."""
        controller.add("subsystem=datasources")
        controller.fail(
            "add",
            "subsystem=datasources,data-source=AppDS,connection-properties=user",
            "WFLYJCA0047: invalid property",
        )

        with pytest.raises(OperationFailedError) as exc_info:
            await ResourceReconciler().add_resource(datasource_spec(), client)

        error = exc_info.value
        assert error.failed_step == 2
        assert error.result.failed_step_id == "step-3"
        assert error.result.rolled_back
        assert "WFLYJCA0047: invalid property" in error.description
        assert not controller.exists("subsystem=datasources,data-source=AppDS")

    @pytest.mark.asyncio
    async def test_duplicate_add_fails(self, controller, client):
        """Adding twice reports the server's duplicate error verbatim."""
        reconciler = ResourceReconciler()
        resource = spec("system-property=a", attributes={"value": "1"})
        await reconciler.add_resource(resource, client)

        with pytest.raises(OperationFailedError) as exc_info:
            await reconciler.add_resource(resource, client)

        assert "WFLYCTL0212: Duplicate resource" in exc_info.value.description
        assert exc_info.value.description.startswith(
            "Operation 'add' at address '/system-property=a' failed:"
        )

    @pytest.mark.asyncio
    async def test_execution_phase_failure_is_raised(self, controller, client):
        """Execution-phase failures propagate with the server's text."""
        controller.fail("add", "deployment=app.war", "WFLYSRV0205: deployment content missing")
        resource = spec("deployment=app.war", phase=ExecutionPhase.AT_EXECUTION)

        with pytest.raises(OperationFailedError) as exc_info:
            await ResourceReconciler().add_resource(resource, client)

        assert "WFLYSRV0205: deployment content missing" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_execution_phase_sends_sequentially(self, controller, client):
        """Execution-phase specs are not wrapped in a composite."""
        controller.add("subsystem=datasources")
        await ResourceReconciler().add_resource(
            datasource_spec(phase=ExecutionPhase.AT_EXECUTION), client
        )
        assert controller.sent_operations() == ["add", "add", "add"]

    @pytest.mark.asyncio
    async def test_execution_phase_reports_failed_index(self, controller, client):
        """A sequential failure reports its index and keeps earlier adds."""
        controller.add("subsystem=datasources")
        controller.fail(
            "add",
            "subsystem=datasources,data-source=AppDS,connection-properties=url",
            "bad url",
        )

        with pytest.raises(OperationFailedError) as exc_info:
            await ResourceReconciler().add_resource(
                datasource_spec(phase=ExecutionPhase.AT_EXECUTION), client
            )

        assert exc_info.value.failed_step == 1
        # No compensation: the first add stays
        assert controller.exists("subsystem=datasources,data-source=AppDS")
        assert len(controller.received) == 2

    @pytest.mark.asyncio
    async def test_enable_step(self, controller, client):
        """enable-resource appends an enable step."""
        await ResourceReconciler().add_resource(spec("a=1", enable=True), client)

        steps = controller.received[0]["steps"]
        assert [s["operation"] for s in steps] == ["add", "enable"]
        assert controller.attributes("a=1")["enabled"] is True

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self, controller, client):
        """Transport errors are raised unchanged."""
        client.unreachable = True
        with pytest.raises(TransportError):
            await ResourceReconciler().add_resource(spec("a=1"), client)

    @pytest.mark.asyncio
    async def test_profiles(self, controller, client):
        """Domain mode adds once below every profile."""
        controller.add("profile=full")
        controller.add("profile=ha")

        result = await ResourceReconciler().add_resource(
            spec("system-property=x", attributes={"value": "1"}),
            client,
            profiles=["full", "ha"],
        )

        assert result.success
        assert len(result.value) == 2
        assert controller.exists("profile=full,system-property=x")
        assert controller.exists("profile=ha,system-property=x")

    @pytest.mark.asyncio
    async def test_add_resources_stops_at_first_failure(self, controller, client):
        """Later resources are not sent after a failure."""
        controller.fail("add", "a=2", "nope")
        with pytest.raises(OperationFailedError):
            await ResourceReconciler().add_resources(
                [spec("a=1"), spec("a=2"), spec("a=3")], client
            )
        assert controller.exists("a=1")
        assert not controller.exists("a=3")
        assert len(controller.received) == 2


class TestExistingResourcePolicies:
    """Tests for skip/replace/update policies."""

    @pytest.mark.asyncio
    async def test_add_policy_does_not_read(self, controller, client):
        """The plain add policy sends no read."""
        await ResourceReconciler().add_resource(spec("a=1"), client)
        assert controller.sent_operations() == ["add"]

    @pytest.mark.asyncio
    async def test_skip_existing(self, controller, client):
        """An existing resource is left alone."""
        controller.add("system-property=a", value="old")

        result = await ResourceReconciler().add_resource(
            spec("system-property=a", attributes={"value": "new"},
                 if_exists=ExistingResourcePolicy.SKIP),
            client,
        )

        assert result.success
        assert controller.writes() == []
        assert controller.attributes("system-property=a") == {"value": "old"}

    @pytest.mark.asyncio
    async def test_skip_absent_adds(self, controller, client):
        """A missing resource is added under the skip policy."""
        await ResourceReconciler().add_resource(
            spec("system-property=a", attributes={"value": "new"},
                 if_exists=ExistingResourcePolicy.SKIP),
            client,
        )
        assert controller.sent_operations() == ["read-resource", "add"]
        assert controller.attributes("system-property=a") == {"value": "new"}

    @pytest.mark.asyncio
    async def test_replace_existing(self, controller, client):
        """Existing resource is removed recursively before the add."""
        controller.add("a=1", x="old")
        controller.add("a=1,b=stale")

        await ResourceReconciler().add_resource(
            spec("a=1", attributes={"x": "new"}, if_exists=ExistingResourcePolicy.REPLACE),
            client,
        )

        assert controller.sent_operations() == ["read-resource", "remove", "add"]
        assert controller.received[1]["recursive"] is True
        assert controller.attributes("a=1") == {"x": "new"}
        assert not controller.exists("a=1,b=stale")

    @pytest.mark.asyncio
    async def test_update_writes_changed_attributes(self, controller, client):
        """Only changed attributes are written."""
        controller.add("a=1", x="same", y="old", z=5)

        await ResourceReconciler().add_resource(
            spec("a=1", attributes={"x": "same", "y": "new", "z": "5"},
                 if_exists=ExistingResourcePolicy.UPDATE),
            client,
        )

        writes = controller.writes()
        assert len(writes) == 1
        assert writes[0]["operation"] == "write-attribute"
        assert writes[0]["name"] == "y"
        assert controller.attributes("a=1")["y"] == "new"

    @pytest.mark.asyncio
    async def test_update_adds_missing_children(self, controller, client):
        """Missing children are added with their own children."""
        controller.add("a=1")
        controller.add("a=1,b=1", v="1")

        await ResourceReconciler().add_resource(
            spec("a=1", if_exists=ExistingResourcePolicy.UPDATE, children=[
                spec("b=1", attributes={"v": "2"}),
                spec("b=2", attributes={"v": "3"}, children=[spec("c=1")]),
            ]),
            client,
        )

        composite = controller.writes()[0]
        assert composite["operation"] == "composite"
        assert [s["operation"] for s in composite["steps"]] == ["write-attribute", "add", "add"]
        assert controller.attributes("a=1,b=1")["v"] == "2"
        assert controller.exists("a=1,b=2,c=1")

    @pytest.mark.asyncio
    async def test_update_no_change(self, controller, client):
        """Equal attributes cause no writes."""
        controller.add("a=1", x="1")
        await ResourceReconciler().add_resource(
            spec("a=1", attributes={"x": 1}, if_exists=ExistingResourcePolicy.UPDATE),
            client,
        )
        assert controller.writes() == []

    @pytest.mark.asyncio
    async def test_read_failure_other_than_missing_raises(self, controller, client):
        """Read failures other than not-found are raised."""
        controller.fail("read-resource", "a=1", "WFLYCTL0313: Unauthorized")
        with pytest.raises(OperationFailedError, match="Unauthorized"):
            await ResourceReconciler().add_resource(
                spec("a=1", if_exists=ExistingResourcePolicy.SKIP), client
            )


class TestPlanning:
    """Tests for planning without sending."""

    @pytest.mark.asyncio
    async def test_plan_sends_no_changes(self, controller, client):
        """Planning reads but never writes."""
        controller.add("a=1")
        plans = await ResourceReconciler().plan(
            spec("a=1", if_exists=ExistingResourcePolicy.REPLACE, children=[spec("b=1")]),
            client,
        )

        assert controller.writes() == []
        assert plans[0].change_type == ChangeType.REPLACE
        assert plans[0].total_operations == 3

    def test_planner_create_without_state(self):
        """Without state every spec is created atomically."""
        plan = OperationPlanner().plan(datasource_spec(), Address.parse("subsystem=datasources,data-source=AppDS"))
        assert plan.change_type == ChangeType.CREATE
        assert plan.atomic
        assert len(plan.steps) == 3

    def test_planner_skip_existing(self):
        """An existing resource under the skip policy needs nothing."""
        address = Address.parse("a=1")
        state = ResourceState(address=address, exists=True)
        plan = OperationPlanner().plan(spec("a=1", if_exists=ExistingResourcePolicy.SKIP), address, state)
        assert plan.no_change

    def test_planner_add_rejects_root(self):
        """The root resource cannot be added."""
        with pytest.raises(ConfigurationError):
            OperationPlanner().plan(ResourceSpec(address=Address()), Address())

    def test_summarize_plans(self):
        """The summary lists each plan."""
        planner = OperationPlanner()
        plans = [planner.plan(datasource_spec(), Address.parse("subsystem=datasources,data-source=AppDS"))]
        summary = summarize_plans(plans)
        assert "[+] Add /subsystem=datasources/data-source=AppDS" in summary
        assert "composite of 3 steps" in summary

    def test_summarize_no_change(self):
        """No plans means no changes."""
        assert summarize_plans([]).startswith("No changes needed")

    def test_profile_parents(self):
        """Profiles prefix the address; none leaves it as is."""
        assert profile_parents(Address(), None) == [Address()]
        assert profile_parents(Address.parse("subsystem=x"), ["full"]) == [
            Address.parse("profile=full,subsystem=x")
        ]
