from stackrecon.providers.base import ControlPlaneResourceProvider
from stackrecon.resource_provider import ResourceRequest
from stackrecon.utils.strings import get_random_hex

LOAD_BALANCER = "AWS::ElasticLoadBalancingV2::LoadBalancer"
TARGET_GROUP = "AWS::ElasticLoadBalancingV2::TargetGroup"

# hosted zone of the load balancers of us-east-1, returned as CanonicalHostedZoneID
CANONICAL_HOSTED_ZONE_ID = "Z35SXDOTRQ7X7K"


def elbv2_arn(request: ResourceRequest[dict], resource: str) -> str:
    return (
        f"arn:aws:elasticloadbalancing:{request.region_name}:{request.account_id}:{resource}"
    )


def default_name(request: ResourceRequest[dict]) -> str:
    # load balancer and target group names are limited to 32 characters
    return f"{request.logical_resource_id[:23]}-{get_random_hex(8)}"


class ElasticLoadBalancingV2LoadBalancerProvider(ControlPlaneResourceProvider):
    TYPE = LOAD_BALANCER
    SCHEMA = {
        "typeName": LOAD_BALANCER,
        "primaryIdentifier": ["/properties/LoadBalancerArn"],
        "createOnlyProperties": ["/properties/Name", "/properties/Scheme", "/properties/Type"],
        "readOnlyProperties": [
            "/properties/CanonicalHostedZoneID",
            "/properties/DNSName",
            "/properties/LoadBalancerFullName",
            "/properties/LoadBalancerName",
        ],
        "required": [],
    }

    def generate_id(self, request: ResourceRequest[dict]) -> str:
        properties = request.desired_state
        name = properties.get("Name") or default_name(request)
        kind = "net" if properties.get("Type") == "network" else "app"
        return elbv2_arn(request, f"loadbalancer/{kind}/{name}/{get_random_hex(16)}")

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        full_name = model["LoadBalancerArn"].split(":loadbalancer/")[-1]
        name = full_name.split("/")[1]
        scheme = model.get("Scheme", "internet-facing")
        dns_name = f"{name}-{get_random_hex(8)}.elb.{request.region_name}.amazonaws.com"
        if scheme == "internal":
            dns_name = f"internal-{dns_name}"
        return {
            "CanonicalHostedZoneID": CANONICAL_HOSTED_ZONE_ID,
            "DNSName": dns_name,
            "LoadBalancerFullName": full_name,
            "LoadBalancerName": name,
            "Scheme": scheme,
            "Type": model.get("Type", "application"),
        }


class ElasticLoadBalancingV2TargetGroupProvider(ControlPlaneResourceProvider):
    TYPE = TARGET_GROUP
    REFERENCES = {"VpcId": ("AWS::EC2::VPC", None)}
    SCHEMA = {
        "typeName": TARGET_GROUP,
        "primaryIdentifier": ["/properties/TargetGroupArn"],
        "createOnlyProperties": [
            "/properties/Name",
            "/properties/Port",
            "/properties/Protocol",
            "/properties/TargetType",
            "/properties/VpcId",
        ],
        "readOnlyProperties": [
            "/properties/LoadBalancerArns",
            "/properties/TargetGroupFullName",
            "/properties/TargetGroupName",
        ],
        "required": [],
    }

    def generate_id(self, request: ResourceRequest[dict]) -> str:
        name = request.desired_state.get("Name") or default_name(request)
        return elbv2_arn(request, f"targetgroup/{name}/{get_random_hex(16)}")

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        full_name = model["TargetGroupArn"].split(":")[-1]
        return {
            "LoadBalancerArns": [],
            "TargetGroupFullName": full_name,
            "TargetGroupName": full_name.split("/")[1],
        }


class ElasticLoadBalancingV2ListenerProvider(ControlPlaneResourceProvider):
    TYPE = "AWS::ElasticLoadBalancingV2::Listener"
    REFERENCES = {"LoadBalancerArn": (LOAD_BALANCER, None)}
    SCHEMA = {
        "typeName": "AWS::ElasticLoadBalancingV2::Listener",
        "primaryIdentifier": ["/properties/ListenerArn"],
        "createOnlyProperties": ["/properties/LoadBalancerArn"],
        "readOnlyProperties": [],
        "required": ["DefaultActions", "LoadBalancerArn"],
    }

    def generate_id(self, request: ResourceRequest[dict]) -> str:
        load_balancer = request.desired_state["LoadBalancerArn"].split(":loadbalancer/")[-1]
        return elbv2_arn(request, f"listener/{load_balancer}/{get_random_hex(16)}")
