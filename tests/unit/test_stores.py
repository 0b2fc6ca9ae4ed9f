import pytest

from stackrecon.engine.entities import StackStatus
from stackrecon.engine.errors import StackNotFoundError
from stackrecon.stores import StackStore


def deploy_state(store: StackStore, stack_name: str, exports: dict = None):
    state = store.get(stack_name)
    state.document["StackId"] = f"arn:aws:cloudformation:us-east-1:000000000000:stack/{stack_name}/1"
    state.document["Exports"] = exports or {}
    state.set_resource("Vpc", {"Type": "AWS::EC2::VPC", "PhysicalResourceId": "vpc-1"})
    state.set_status(StackStatus.COMPLETE)
    return state


class TestStackStore:
    def test_new_stack_is_empty(self):
        state = StackStore(persistent=False).get("network")
        assert not state.exists
        assert state.status is None
        assert state.resources == {}
        assert state.outputs == {}
        assert state.template is None

    def test_documents_are_persisted(self, tmp_path):
        state_dir = str(tmp_path)
        deploy_state(StackStore(state_dir), "network")

        state = StackStore(state_dir).get("network")
        assert state.exists
        assert state.status == StackStatus.COMPLETE
        assert state.resources["Vpc"]["PhysicalResourceId"] == "vpc-1"
        assert (tmp_path / "network.stack.json").exists()

    def test_snapshot_is_a_copy(self):
        state = deploy_state(StackStore(persistent=False), "network")
        snapshot = state.snapshot_resources()
        snapshot["Vpc"]["PhysicalResourceId"] = "vpc-2"
        assert state.resources["Vpc"]["PhysicalResourceId"] == "vpc-1"

    def test_remove_resource(self):
        state = deploy_state(StackStore(persistent=False), "network")
        state.remove_resource("Vpc")
        state.remove_resource("Unknown")
        assert state.resources == {}

    def test_require(self):
        store = StackStore(persistent=False)
        with pytest.raises(StackNotFoundError):
            store.require("network")

        state = deploy_state(store, "network")
        assert store.require("network").stack_id == state.stack_id

        state.set_status(StackStatus.DELETE_COMPLETE)
        with pytest.raises(StackNotFoundError):
            store.require("network")

    def test_delete(self, tmp_path):
        store = StackStore(str(tmp_path))
        deploy_state(store, "network")
        store.delete("network")

        assert not (tmp_path / "network.stack.json").exists()
        assert not store.get("network").exists
        assert store.list_stacks() == []

    def test_list_stacks(self, tmp_path):
        store = StackStore(str(tmp_path))
        deploy_state(store, "network")
        deploy_state(store, "app")
        store.get("never-deployed")

        assert store.list_stacks() == ["app", "network"]
        assert StackStore(str(tmp_path)).list_stacks() == ["app", "network"]

    @pytest.mark.parametrize("stack_name", ["", "1stack", "my_stack", "a" * 129, "../etc"])
    def test_invalid_stack_names(self, stack_name):
        with pytest.raises(ValueError):
            StackStore(persistent=False).get(stack_name)

    def test_exports(self):
        store = StackStore(persistent=False)
        deploy_state(store, "network", {"network-VpcId": "vpc-1"})
        deployed = deploy_state(store, "app", {"app-Url": "http://app"})

        assert store.exports == {
            "network-VpcId": {"ExportingStackName": "network", "Value": "vpc-1"},
            "app-Url": {"ExportingStackName": "app", "Value": "http://app"},
        }

        deployed.set_status(StackStatus.DELETE_COMPLETE)
        assert list(store.exports) == ["network-VpcId"]
