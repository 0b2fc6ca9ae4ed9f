import logging

import pytest

from stackrecon import config
from stackrecon.constants import CONTROL_PLANE_STATE_FILE
from stackrecon.engine.errors import ProviderFatalError, ResourceNotFound
from stackrecon.providers.autoscaling import AutoScalingAutoScalingGroupProvider
from stackrecon.providers.base import generate_default_name
from stackrecon.providers.control_plane import (
    LocalControlPlane,
    get_control_plane,
    set_control_plane,
)
from stackrecon.providers.ec2 import (
    EC2EIPProvider,
    EC2LaunchTemplateProvider,
    EC2NatGatewayProvider,
    EC2SubnetProvider,
    EC2VPCProvider,
)
from stackrecon.providers.elbv2 import (
    ElasticLoadBalancingV2ListenerProvider,
    ElasticLoadBalancingV2LoadBalancerProvider,
)
from stackrecon.resource_provider import OperationStatus, ResourceRequest, idempotency_token


def make_request(
    resource_type: str,
    properties: dict,
    logical_id: str = "Resource",
    action: str = "Add",
    **kwargs,
) -> ResourceRequest:
    return ResourceRequest(
        stack_name="network",
        stack_id="stack-id",
        account_id="000000000000",
        region_name="eu-west-1",
        action=action,
        desired_state=properties,
        logical_resource_id=logical_id,
        resource_type=resource_type,
        logger=logging.getLogger(__name__),
        idempotency_token=kwargs.pop("token", idempotency_token("stack-id", logical_id)),
        **kwargs,
    )


def create(provider, properties: dict, logical_id: str = "Resource") -> dict:
    event = provider.create(make_request(provider.TYPE, properties, logical_id))
    assert event.status == OperationStatus.SUCCESS, event.message
    return event.resource_model


class TestLocalControlPlane:
    def test_create_is_idempotent_per_token(self, control_plane):
        built = []

        def build():
            built.append(1)
            return f"res-{len(built)}", {"Id": f"res-{len(built)}"}

        first = control_plane.create("Test::Type", "token", build)
        second = control_plane.create("Test::Type", "token", build)

        assert first == second == {"Id": "res-1"}
        assert len(built) == 1
        assert control_plane.count() == 1

    def test_delete_of_referenced_resource_fails(self, control_plane):
        control_plane.create("Test::Vpc", "", lambda: ("vpc-1", {"VpcId": "vpc-1"}))
        control_plane.create(
            "Test::Subnet", "", lambda: ("subnet-1", {"SubnetId": "subnet-1", "VpcId": "vpc-1"})
        )

        with pytest.raises(ProviderFatalError, match="DependencyViolation"):
            control_plane.delete("Test::Vpc", "vpc-1")

        control_plane.delete("Test::Subnet", "subnet-1")
        control_plane.delete("Test::Vpc", "vpc-1")
        assert control_plane.count() == 0

    def test_references_are_exact_matches(self, control_plane):
        control_plane.create("Test::Vpc", "", lambda: ("vpc-1", {"VpcId": "vpc-1"}))
        control_plane.create("Test::Other", "", lambda: ("other", {"Name": "vpc-1-copy"}))
        control_plane.delete("Test::Vpc", "vpc-1")

    def test_missing_resources(self, control_plane):
        with pytest.raises(ResourceNotFound):
            control_plane.get("Test::Vpc", "vpc-1")
        with pytest.raises(ResourceNotFound):
            control_plane.delete("Test::Vpc", "vpc-1")
        with pytest.raises(ResourceNotFound):
            control_plane.put("Test::Vpc", "vpc-1", {})

    def test_state_is_persisted(self, tmp_path):
        path = str(tmp_path / "resources.json")
        control_plane = LocalControlPlane(path)
        control_plane.create("Test::Vpc", "token", lambda: ("vpc-1", {"VpcId": "vpc-1"}))

        reloaded = LocalControlPlane(path)
        assert reloaded.get("Test::Vpc", "vpc-1") == {"VpcId": "vpc-1"}
        assert reloaded.create("Test::Vpc", "token", lambda: ("vpc-2", {})) == {"VpcId": "vpc-1"}


    @pytest.mark.parametrize("persist", [True, False])
    def test_shared_control_plane_persistence(self, monkeypatch, tmp_path, persist):
        monkeypatch.setattr(config, "PERSIST_CONTROL_PLANE", persist)
        monkeypatch.setattr(config, "STATE_DIR", str(tmp_path))
        set_control_plane(None)

        control_plane = get_control_plane()
        control_plane.create("Test::Vpc", "token", lambda: ("vpc-1", {"VpcId": "vpc-1"}))

        assert get_control_plane() is control_plane
        assert (tmp_path / CONTROL_PLANE_STATE_FILE).exists() is persist


class TestEC2Providers:
    def test_vpc(self, control_plane):
        model = create(EC2VPCProvider(), {"CidrBlock": "10.0.0.0/16"})

        assert model["VpcId"].startswith("vpc-")
        assert model["CidrBlock"] == "10.0.0.0/16"
        assert model["DefaultSecurityGroup"].startswith("sg-")
        assert control_plane.exists("AWS::EC2::VPC", model["VpcId"])

    def test_subnet_requires_existing_vpc(self):
        event = EC2SubnetProvider().create(
            make_request("AWS::EC2::Subnet", {"VpcId": "vpc-unknown", "CidrBlock": "10.0.1.0/24"})
        )
        assert event.status == OperationStatus.FAILED
        assert "vpc-unknown" in event.message

    def test_subnet_requires_vpc_id(self):
        event = EC2SubnetProvider().create(make_request("AWS::EC2::Subnet", {}))
        assert event.status == OperationStatus.FAILED
        assert event.message == "Property VpcId is required for AWS::EC2::Subnet"

    def test_subnet_defaults_to_first_availability_zone(self):
        vpc = create(EC2VPCProvider(), {"CidrBlock": "10.0.0.0/16"}, "Vpc")
        subnet = create(
            EC2SubnetProvider(), {"VpcId": vpc["VpcId"], "CidrBlock": "10.0.1.0/24"}, "Subnet"
        )
        assert subnet["AvailabilityZone"] == "eu-west-1a"

    def test_nat_gateway_becomes_available(self, control_plane):
        vpc = create(EC2VPCProvider(), {"CidrBlock": "10.0.0.0/16"}, "Vpc")
        subnet = create(EC2SubnetProvider(), {"VpcId": vpc["VpcId"]}, "Subnet")
        eip = create(EC2EIPProvider(), {"Domain": "vpc"}, "Eip")
        provider = EC2NatGatewayProvider()
        properties = {"SubnetId": subnet["SubnetId"], "AllocationId": eip["AllocationId"]}

        event = provider.create(make_request(provider.TYPE, properties, "Nat"))
        assert event.status == OperationStatus.IN_PROGRESS
        assert event.resource_model["State"] == "pending"
        nat_gateway_id = event.custom_context["NatGatewayId"]

        event = provider.create(
            make_request(provider.TYPE, properties, "Nat", custom_context=event.custom_context)
        )
        assert event.status == OperationStatus.SUCCESS
        assert event.resource_model["State"] == "available"
        assert control_plane.get(provider.TYPE, nat_gateway_id)["State"] == "available"

    def test_nat_gateway_requires_existing_allocation(self):
        vpc = create(EC2VPCProvider(), {"CidrBlock": "10.0.0.0/16"}, "Vpc")
        subnet = create(EC2SubnetProvider(), {"VpcId": vpc["VpcId"]}, "Subnet")
        event = EC2NatGatewayProvider().create(
            make_request(
                "AWS::EC2::NatGateway",
                {"SubnetId": subnet["SubnetId"], "AllocationId": "eipalloc-unknown"},
            )
        )
        assert event.status == OperationStatus.FAILED

    def test_launch_template_update_creates_new_version(self):
        provider = EC2LaunchTemplateProvider()
        properties = {"LaunchTemplateData": {"InstanceType": "t3.micro"}}
        model = create(provider, properties)
        assert model["LatestVersionNumber"] == "1"
        assert model["LaunchTemplateName"] == "network-Resource"

        event = provider.update(
            make_request(
                provider.TYPE,
                {"LaunchTemplateData": {"InstanceType": "t3.large"}},
                action="Modify",
                physical_resource_id=model["LaunchTemplateId"],
                previous_state=properties,
            )
        )
        assert event.status == OperationStatus.SUCCESS
        assert event.resource_model["LatestVersionNumber"] == "2"
        assert event.resource_model["LaunchTemplateId"] == model["LaunchTemplateId"]
        assert event.resource_model["LaunchTemplateName"] == "network-Resource"

    def test_update_of_create_only_property_is_rejected(self):
        provider = EC2VPCProvider()
        model = create(provider, {"CidrBlock": "10.0.0.0/16"})
        event = provider.update(
            make_request(
                provider.TYPE,
                {"CidrBlock": "10.1.0.0/16"},
                action="Modify",
                physical_resource_id=model["VpcId"],
                previous_state={"CidrBlock": "10.0.0.0/16"},
            )
        )
        assert event.status == OperationStatus.FAILED
        assert event.error_code == "NotUpdatable"

    def test_delete_of_missing_resource_succeeds(self):
        event = EC2VPCProvider().delete(
            make_request("AWS::EC2::VPC", {}, action="Remove", physical_resource_id="vpc-gone")
        )
        assert event.status == OperationStatus.SUCCESS


class TestLoadBalancingProviders:
    def test_load_balancer_attributes(self):
        model = create(
            ElasticLoadBalancingV2LoadBalancerProvider(),
            {"Name": "web", "Scheme": "internal", "Type": "network"},
        )
        assert model["LoadBalancerArn"].startswith(
            "arn:aws:elasticloadbalancing:eu-west-1:000000000000:loadbalancer/net/web/"
        )
        assert model["LoadBalancerName"] == "web"
        assert model["DNSName"].startswith("internal-web-")
        assert model["LoadBalancerFullName"].startswith("net/web/")

    def test_load_balancer_with_listener_cannot_be_deleted(self, control_plane):
        load_balancer = create(ElasticLoadBalancingV2LoadBalancerProvider(), {}, "Lb")
        listener = create(
            ElasticLoadBalancingV2ListenerProvider(),
            {
                "LoadBalancerArn": load_balancer["LoadBalancerArn"],
                "DefaultActions": [{"Type": "fixed-response"}],
            },
            "Listener",
        )
        assert listener["ListenerArn"].split(":")[-1].startswith("listener/app/Lb-")

        with pytest.raises(ProviderFatalError):
            ElasticLoadBalancingV2LoadBalancerProvider().delete(
                make_request(
                    "AWS::ElasticLoadBalancingV2::LoadBalancer",
                    {},
                    action="Remove",
                    physical_resource_id=load_balancer["LoadBalancerArn"],
                )
            )


class TestAutoScalingProviders:
    def test_group_name_defaults_to_generated_name(self):
        model = create(AutoScalingAutoScalingGroupProvider(), {"MinSize": "1", "MaxSize": "2"}, "Asg")
        assert model["AutoScalingGroupName"].startswith("network-Asg-")
        assert model["AutoScalingGroupARN"].endswith(
            f"autoScalingGroupName/{model['AutoScalingGroupName']}"
        )

    def test_required_properties(self):
        event = AutoScalingAutoScalingGroupProvider().create(
            make_request("AWS::AutoScaling::AutoScalingGroup", {"MinSize": "1"})
        )
        assert event.status == OperationStatus.FAILED
        assert "MaxSize" in event.message


def test_generate_default_name():
    name = generate_default_name("stack", "LogicalId")
    assert name.startswith("stack-LogicalId-")
    assert len(generate_default_name("s" * 300, "L" * 40)) <= 255
