import threading
import time

import pytest

from stackrecon import api, config
from stackrecon.engine.deployer import STACK_RESOURCE_TYPE, lookup_attribute
from stackrecon.engine.entities import ResourceStatus, StackStatus
from stackrecon.engine.errors import ProviderFatalError, RollbackFailedError, StackNotFoundError
from stackrecon.engine.planner import ChangeAction, ReplacementStrategy

STACK_NAME = "test-stack"


def res(properties: dict = None, **kwargs) -> dict:
    return {"Type": "Test::Resource", "Properties": properties or {}, **kwargs}


def chain_template(**outputs) -> dict:
    template = {
        "Resources": {
            "A": res({"Size": "1"}),
            "B": res({"Parent": {"Ref": "A"}}),
            "C": res({"ParentArn": {"Fn::GetAtt": ["B", "Arn"]}}),
        }
    }
    if outputs:
        template["Outputs"] = outputs
    return template


def stack_statuses(result) -> list[StackStatus]:
    return [event.status for event in result.events if event.resource_type == STACK_RESOURCE_TYPE]


def resource_statuses(result, logical_id: str) -> list[ResourceStatus]:
    return [event.status for event in result.events if event.logical_resource_id == logical_id]


@pytest.fixture
def deploy(registry, store):
    def _deploy(template: dict, **kwargs) -> api.DeploymentResult:
        return api.deploy_stack(template, STACK_NAME, store=store, registry=registry, **kwargs)

    return _deploy


class TestApply:
    def test_resources_are_created_in_dependency_order(self, deploy, provider, store):
        result = deploy(
            chain_template(
                Arn={"Value": {"Fn::GetAtt": ["C", "Arn"]}, "Export": {"Name": "chain-arn"}}
            )
        )

        assert result.status == StackStatus.COMPLETE
        assert result.succeeded
        assert provider.calls_of("create") == ["A", "B", "C"]
        assert provider.resources["B-2"]["Parent"] == "A-1"
        assert provider.resources["C-3"]["ParentArn"] == "arn:test:B-2"
        assert result.outputs == {"Arn": "arn:test:C-3"}
        assert result.exports == {"chain-arn": "arn:test:C-3"}
        assert stack_statuses(result) == [StackStatus.IN_PROGRESS, StackStatus.COMPLETE]

        state = store.get(STACK_NAME)
        assert state.status == StackStatus.COMPLETE
        assert state.resources["B"]["PhysicalResourceId"] == "B-2"
        assert state.resources["B"]["Dependencies"] == ["A"]
        assert state.resources["B"]["DeclaredProperties"] == {"Parent": {"Ref": "A"}}
        assert state.outputs == {"Arn": "arn:test:C-3"}

    def test_resource_events(self, deploy):
        result = deploy({"Resources": {"A": res()}})
        assert resource_statuses(result, "A") == [ResourceStatus.IN_PROGRESS, ResourceStatus.COMPLETE]
        in_progress, complete = [e for e in result.events if e.logical_resource_id == "A"]
        assert in_progress.reason == "Resource creation initiated"
        assert complete.physical_resource_id == "A-1"

    def test_independent_resources_are_created_concurrently(self, deploy, provider):
        barrier = threading.Barrier(2, timeout=5)
        provider.on("create", "X", lambda _: barrier.wait())
        provider.on("create", "Y", lambda _: barrier.wait())

        result = deploy({"Resources": {"X": res(), "Y": res()}})

        assert result.status == StackStatus.COMPLETE
        assert sorted(provider.calls_of("create")) == ["X", "Y"]

    def test_dependents_wait_for_their_dependencies(self, registry, store, provider):
        observed = {}
        deployment = api.create_deployment(
            chain_template(), STACK_NAME, store=store, registry=registry
        )
        provider.on(
            "create", "A", lambda _: observed.update(B=deployment.deployer.wait_for("B", 0.05))
        )
        provider.on(
            "create", "B", lambda _: observed.update(A=deployment.deployer.wait_for("A", 1))
        )

        result = deployment.run()

        assert result.status == StackStatus.COMPLETE
        assert observed == {"A": ResourceStatus.COMPLETE, "B": None}
        assert deployment.deployer.wait_for("C", 0) == ResourceStatus.COMPLETE

    def test_unchanged_stack_is_not_touched(self, deploy, provider):
        deploy(chain_template())
        provider.calls.clear()

        result = deploy(chain_template())

        assert result.status == StackStatus.COMPLETE
        assert not result.change_set.has_changes
        assert provider.calls == []
        assert resource_statuses(result, "A") == []

    def test_update_in_place(self, deploy, provider, store):
        deploy(chain_template())
        template = chain_template()
        template["Resources"]["A"]["Properties"]["Size"] = "2"

        result = deploy(template)

        assert result.status == StackStatus.COMPLETE
        assert provider.calls_of("update") == ["A"]
        assert provider.resources["A-1"]["Size"] == "2"
        assert store.get(STACK_NAME).resources["A"]["Properties"] == {"Size": "2"}

    def test_replacement_with_dependents_creates_before_destroying(self, deploy, provider, store):
        deploy({"Resources": {"A": res({"Immutable": "x"}), "B": res({"Size": {"Ref": "A"}})}})
        provider.calls.clear()

        result = deploy(
            {"Resources": {"A": res({"Immutable": "y"}), "B": res({"Size": {"Ref": "A"}})}}
        )

        assert result.status == StackStatus.COMPLETE
        assert provider.calls == [("create", "A"), ("update", "B"), ("delete", "A")]
        assert sorted(provider.resources) == ["A-3", "B-2"]
        assert provider.resources["B-2"]["Size"] == "A-3"

        record = store.get(STACK_NAME).resources["A"]
        assert record["PhysicalResourceId"] == "A-3"
        assert record["Generation"] == 1

    def test_replacement_without_dependents_destroys_first(self, deploy, provider):
        deploy({"Resources": {"A": res({"Immutable": "x"})}})
        provider.calls.clear()

        result = deploy({"Resources": {"A": res({"Immutable": "y"})}})

        assert result.status == StackStatus.COMPLETE
        assert provider.calls == [("delete", "A"), ("create", "A")]
        assert list(provider.resources) == ["A-2"]

    def test_removed_resources_are_deleted_dependents_first(self, deploy, provider, store):
        deploy(chain_template())
        provider.calls.clear()

        result = deploy({"Resources": {"A": res({"Size": "1"})}})

        assert result.status == StackStatus.COMPLETE
        assert provider.calls == [("delete", "C"), ("delete", "B")]
        assert list(store.get(STACK_NAME).resources) == ["A"]

    def test_failed_cleanup_does_not_fail_the_stack(self, deploy, provider, store):
        deploy(chain_template())
        provider.fail("delete", "C", ProviderFatalError("stuck"))

        result = deploy({"Resources": {"A": res({"Size": "1"})}})

        assert result.status == StackStatus.COMPLETE
        assert ResourceStatus.DELETE_FAILED in resource_statuses(result, "C")
        assert "C" in store.get(STACK_NAME).resources


    def test_in_place_update_reaches_dependents(self, deploy, provider, store):
        template = {
            "Resources": {
                "A": res({"Size": "1"}),
                "B": res({"Size": {"Fn::GetAtt": ["A", "Size"]}}),
            }
        }
        deploy(template)
        template["Resources"]["A"]["Properties"]["Size"] = "2"

        result = deploy(template)

        assert result.status == StackStatus.COMPLETE
        assert provider.calls_of("update") == ["A", "B"]
        assert provider.resources["B-2"]["Size"] == "2"
        change = result.change_set.changes["B"]
        assert change.action == ChangeAction.MODIFY
        assert change.changed_properties == ["Size"]
        assert store.get(STACK_NAME).resources["B"]["Properties"] == {"Size": "2"}

    def test_resolved_create_only_change_replaces_dependent(self, deploy, provider, store):
        template = {
            "Resources": {
                "A": res({"Size": "1"}),
                "B": res({"Immutable": {"Fn::GetAtt": ["A", "Size"]}}),
            }
        }
        deploy(template)
        provider.calls.clear()
        template["Resources"]["A"]["Properties"]["Size"] = "2"

        result = deploy(template)

        assert result.status == StackStatus.COMPLETE
        assert provider.calls == [("update", "A"), ("delete", "B"), ("create", "B")]
        change = result.change_set.changes["B"]
        assert change.replacement
        assert change.strategy == ReplacementStrategy.DESTROY_BEFORE_CREATE
        assert store.get(STACK_NAME).resources["B"]["PhysicalResourceId"] == "B-3"
        assert provider.resources["B-3"]["Immutable"] == "2"

    def test_unchanged_dependents_of_updates_are_not_touched(self, deploy, provider):
        deploy(chain_template())
        provider.calls.clear()
        template = chain_template()
        template["Resources"]["A"]["Properties"]["Size"] = "2"

        result = deploy(template)

        assert result.status == StackStatus.COMPLETE
        assert provider.calls == [("update", "A")]
        assert result.change_set.changes["B"].action == ChangeAction.NONE
        assert resource_statuses(result, "C") == []

    def test_removed_resource_with_retain_policy_is_kept(self, deploy, provider, store):
        deploy({"Resources": {"A": res(), "B": res(DeletionPolicy="Retain")}})
        assert store.get(STACK_NAME).resources["B"]["DeletionPolicy"] == "Retain"

        result = deploy({"Resources": {"A": res()}})

        assert result.status == StackStatus.COMPLETE
        assert provider.calls_of("delete") == []
        assert "B-2" in provider.resources
        assert list(store.get(STACK_NAME).resources) == ["A"]
        retained = [e for e in result.events if e.logical_resource_id == "B"]
        assert [e.status for e in retained] == [ResourceStatus.DELETE_COMPLETE]
        assert retained[0].reason == "Resource retained"


class TestRollback:
    def test_failure_rolls_back_in_reverse_order(self, deploy, provider, store):
        provider.fail("create", "C", ProviderFatalError("boom"))

        result = deploy(chain_template())

        assert result.status == StackStatus.ROLLED_BACK
        assert not result.succeeded
        assert result.error.message == "boom"
        assert result.error.logical_resource_id == "C"
        assert provider.calls_of("delete") == ["B", "A"]
        assert provider.resources == {}
        assert stack_statuses(result) == [
            StackStatus.IN_PROGRESS,
            StackStatus.ROLLBACK_IN_PROGRESS,
            StackStatus.ROLLED_BACK,
        ]
        assert store.get(STACK_NAME).resources == {}

    def test_pending_resources_are_skipped(self, registry, store, provider):
        provider.fail("create", "A", ProviderFatalError("boom"))
        deployment = api.create_deployment(
            chain_template(), STACK_NAME, store=store, registry=registry
        )

        result = deployment.run()

        assert result.status == StackStatus.ROLLED_BACK
        assert provider.calls_of("create") == ["A"]
        assert deployment.deployer.statuses == {
            "A": ResourceStatus.FAILED,
            "B": ResourceStatus.SKIPPED,
            "C": ResourceStatus.SKIPPED,
        }
        assert deployment.deployer.wait_for("C", 0) == ResourceStatus.SKIPPED

    def test_disabled_rollback_keeps_the_applied_changes(self, deploy, provider, store):
        provider.fail("create", "C", ProviderFatalError("boom"))

        result = deploy(chain_template(), disable_rollback=True)

        assert result.status == StackStatus.FAILED
        assert provider.calls_of("delete") == []
        assert sorted(store.get(STACK_NAME).resources) == ["A", "B"]

    def test_updates_are_restored(self, deploy, provider, store):
        deploy({"Resources": {"A": res({"Size": "1"})}})
        provider.fail("create", "C", ProviderFatalError("boom"))

        result = deploy(
            {"Resources": {"A": res({"Size": "2"}), "C": res(DependsOn="A")}}
        )

        assert result.status == StackStatus.ROLLED_BACK
        assert provider.calls_of("update") == ["A", "A"]
        assert provider.resources["A-1"]["Size"] == "1"
        state = store.get(STACK_NAME)
        assert state.resources["A"]["Properties"] == {"Size": "1"}
        assert state.template == {"Resources": {"A": res({"Size": "1"})}}

    def test_destroyed_resources_are_recreated(self, deploy, provider, store):
        deploy({"Resources": {"A": res({"Immutable": "x"})}})
        provider.fail("create", "C", ProviderFatalError("boom"))

        result = deploy({"Resources": {"A": res({"Immutable": "y"}), "C": res()}})

        assert result.status == StackStatus.ROLLED_BACK
        assert [model["Immutable"] for model in provider.resources.values()] == ["x"]
        record = store.get(STACK_NAME).resources["A"]
        assert record["Properties"] == {"Immutable": "x"}
        assert record["PhysicalResourceId"] in provider.resources
        assert record["PhysicalResourceId"] != "A-1"
        assert "C" not in store.get(STACK_NAME).resources

    def test_failed_rollback(self, deploy, provider):
        provider.fail("create", "C", ProviderFatalError("boom"))
        provider.fail("delete", "A", ProviderFatalError("stuck"))

        result = deploy(chain_template())

        assert result.status == StackStatus.FAILED
        assert isinstance(result.error, RollbackFailedError)
        assert [f.logical_resource_id for f in result.error.failures] == ["A"]
        assert ResourceStatus.DELETE_FAILED in resource_statuses(result, "A")
        assert "A-1" in provider.resources

    def test_unresolvable_output_rolls_back(self, deploy, provider):
        result = deploy(
            {
                "Resources": {"A": res()},
                "Outputs": {"Missing": {"Value": {"Fn::GetAtt": ["A", "Unknown"]}}},
            }
        )
        assert result.status == StackStatus.ROLLED_BACK
        assert "Unknown" in result.error.message
        assert provider.resources == {}

    def test_cancellation_rolls_back(self, registry, store, provider):
        deployment = api.create_deployment(
            chain_template(), STACK_NAME, store=store, registry=registry
        )
        provider.on("create", "A", lambda _: deployment.cancel())

        result = deployment.run()

        assert result.status == StackStatus.ROLLED_BACK
        assert result.error.message == "Deployment cancelled by user"
        assert provider.calls_of("create") == ["A"]
        assert provider.calls_of("delete") == ["A"]
        assert deployment.deployer.cancelled


    def test_error_names_the_operation(self, deploy, provider):
        provider.fail("create", "A", ProviderFatalError("boom"))

        result = deploy({"Resources": {"A": res()}})

        assert result.status == StackStatus.ROLLED_BACK
        assert result.error.logical_resource_id == "A"
        assert result.error.operation == "Add"
        assert str(result.error) == "boom (resource: A, operation: Add)"

    def test_creation_completing_after_its_timeout_is_rolled_back(
        self, deploy, provider, store, monkeypatch
    ):
        monkeypatch.setattr(config, "PER_RESOURCE_TIMEOUT", 0.2)
        monkeypatch.setattr(config, "PROVIDER_MAX_RETRIES", 0)
        provider.on("create", "Slow", lambda _: time.sleep(0.6))

        result = deploy({"Resources": {"Slow": res()}})

        assert result.status == StackStatus.ROLLED_BACK
        assert "timed out" in result.error.message
        assert provider.calls_of("delete") == ["Slow"]
        assert provider.resources == {}
        assert store.get(STACK_NAME).resources == {}

    def test_creation_completing_after_its_timeout_is_tracked_without_rollback(
        self, deploy, provider, store, monkeypatch
    ):
        monkeypatch.setattr(config, "PER_RESOURCE_TIMEOUT", 0.2)
        monkeypatch.setattr(config, "PROVIDER_MAX_RETRIES", 0)
        provider.on("create", "Slow", lambda _: time.sleep(0.6))

        result = deploy({"Resources": {"Slow": res()}}, disable_rollback=True)

        assert result.status == StackStatus.FAILED
        assert store.get(STACK_NAME).resources["Slow"]["PhysicalResourceId"] == "Slow-1"
        assert list(provider.resources) == ["Slow-1"]

        provider.on("create", "Slow", lambda _: None)
        redeployed = deploy({"Resources": {"Slow": res()}})
        assert redeployed.status == StackStatus.COMPLETE
        assert provider.calls_of("create") == ["Slow"]

    @pytest.mark.parametrize(
        "disable_rollback,expected",
        [(None, StackStatus.FAILED), (False, StackStatus.ROLLED_BACK)],
    )
    def test_rollback_can_be_disabled_by_config(
        self, deploy, provider, monkeypatch, disable_rollback, expected
    ):
        monkeypatch.setattr(config, "DISABLE_ROLLBACK", True)
        provider.fail("create", "C", ProviderFatalError("boom"))

        result = deploy(chain_template(), disable_rollback=disable_rollback)

        assert result.status == expected


class TestTeardown:
    def test_retained_resources_survive_the_stack(self, deploy, registry, store, provider):
        deploy({"Resources": {"A": res(DeletionPolicy="Retain"), "B": res({"P": {"Ref": "A"}})}})

        result = api.delete_stack(STACK_NAME, store=store, registry=registry)

        assert result.status == StackStatus.DELETE_COMPLETE
        assert provider.calls_of("delete") == ["B"]
        assert list(provider.resources) == ["A-1"]
        assert store.get(STACK_NAME).resources == {}
        assert resource_statuses(result, "A") == [ResourceStatus.DELETE_COMPLETE]

    def test_delete_stack(self, deploy, registry, store, provider):
        deploy(chain_template(Arn={"Value": {"Fn::GetAtt": ["C", "Arn"]}}))
        provider.calls.clear()
        events = []

        result = api.delete_stack(STACK_NAME, store=store, registry=registry, on_event=events.append)

        assert result.status == StackStatus.DELETE_COMPLETE
        assert provider.calls_of("delete") == ["C", "B", "A"]
        assert provider.resources == {}
        assert events == result.events
        state = store.get(STACK_NAME)
        assert state.resources == {}
        assert state.outputs == {}
        with pytest.raises(StackNotFoundError):
            api.get_outputs(STACK_NAME, store=store)

    def test_failed_delete_keeps_dependencies(self, deploy, registry, store, provider):
        deploy(chain_template())
        provider.fail("delete", "B", ProviderFatalError("stuck"))

        result = api.delete_stack(STACK_NAME, store=store, registry=registry)

        assert result.status == StackStatus.DELETE_FAILED
        assert provider.calls_of("delete") == ["C", "B"]
        assert sorted(store.get(STACK_NAME).resources) == ["A", "B"]

    def test_deleted_stack_can_be_redeployed(self, deploy, registry, store):
        first = deploy(chain_template())
        stack_id = store.get(STACK_NAME).stack_id
        api.delete_stack(STACK_NAME, store=store, registry=registry)

        result = deploy(chain_template())

        assert first.status == result.status == StackStatus.COMPLETE
        assert store.get(STACK_NAME).stack_id != stack_id
        assert [c.action.value for c in result.change_set.changes.values()] == ["Add"] * 3

    def test_unknown_stack(self, registry, store):
        with pytest.raises(StackNotFoundError):
            api.delete_stack("unknown", store=store, registry=registry)


def test_lookup_attribute():
    record = {"Attributes": {"Endpoint.Address": "a", "Nested": {"Port": 80}}}
    assert lookup_attribute(record, "Endpoint.Address") == "a"
    assert lookup_attribute(record, "Nested.Port") == 80
    with pytest.raises(KeyError):
        lookup_attribute(record, "Nested.Host")
