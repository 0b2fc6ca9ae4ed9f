from stackrecon.providers.base import ControlPlaneResourceProvider, generate_default_name
from stackrecon.resource_provider import ResourceRequest
from stackrecon.utils.strings import long_uid

AUTO_SCALING_GROUP = "AWS::AutoScaling::AutoScalingGroup"


class AutoScalingAutoScalingGroupProvider(ControlPlaneResourceProvider):
    TYPE = AUTO_SCALING_GROUP
    SCHEMA = {
        "typeName": AUTO_SCALING_GROUP,
        "primaryIdentifier": ["/properties/AutoScalingGroupName"],
        "createOnlyProperties": ["/properties/AutoScalingGroupName", "/properties/InstanceId"],
        "readOnlyProperties": ["/properties/AutoScalingGroupARN"],
        "required": ["MaxSize", "MinSize"],
    }

    def generate_id(self, request: ResourceRequest[dict]) -> str:
        return request.desired_state.get("AutoScalingGroupName") or generate_default_name(
            request.stack_name, request.logical_resource_id
        )

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        return {
            "AutoScalingGroupARN": (
                f"arn:aws:autoscaling:{request.region_name}:{request.account_id}:autoScalingGroup:"
                f"{long_uid()}:autoScalingGroupName/{model['AutoScalingGroupName']}"
            ),
        }


class AutoScalingScalingPolicyProvider(ControlPlaneResourceProvider):
    TYPE = "AWS::AutoScaling::ScalingPolicy"
    REFERENCES = {"AutoScalingGroupName": (AUTO_SCALING_GROUP, None)}
    SCHEMA = {
        "typeName": "AWS::AutoScaling::ScalingPolicy",
        "primaryIdentifier": ["/properties/Arn"],
        "createOnlyProperties": [],
        "readOnlyProperties": ["/properties/PolicyName"],
        "required": ["AutoScalingGroupName"],
    }

    def generate_id(self, request: ResourceRequest[dict]) -> str:
        policy_name = generate_default_name(request.stack_name, request.logical_resource_id)
        return (
            f"arn:aws:autoscaling:{request.region_name}:{request.account_id}:scalingPolicy:"
            f"{long_uid()}:autoScalingGroupName/{request.desired_state['AutoScalingGroupName']}"
            f":policyName/{policy_name}"
        )

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        return {"PolicyName": model["Arn"].split(":policyName/")[-1]}
