import random

from stackrecon.providers.base import ControlPlaneResourceProvider
from stackrecon.resource_provider import (
    OperationStatus,
    ProgressEvent,
    ResourceRequest,
)
from stackrecon.utils.strings import get_random_hex

VPC = "AWS::EC2::VPC"
SUBNET = "AWS::EC2::Subnet"
INTERNET_GATEWAY = "AWS::EC2::InternetGateway"
ROUTE_TABLE = "AWS::EC2::RouteTable"
EIP = "AWS::EC2::EIP"
NAT_GATEWAY = "AWS::EC2::NatGateway"
SECURITY_GROUP = "AWS::EC2::SecurityGroup"
LAUNCH_TEMPLATE = "AWS::EC2::LaunchTemplate"


def random_public_ip() -> str:
    return "54.{}.{}.{}".format(*(random.randint(1, 254) for _ in range(3)))


def random_private_ip(cidr_block: str = "10.0.0.0/16") -> str:
    prefix = cidr_block.split("/")[0].split(".")[:2]
    return ".".join(prefix + [str(random.randint(0, 254)), str(random.randint(4, 254))])


class EC2VPCProvider(ControlPlaneResourceProvider):
    TYPE = VPC
    ID_PREFIX = "vpc"
    SCHEMA = {
        "typeName": VPC,
        "primaryIdentifier": ["/properties/VpcId"],
        "createOnlyProperties": [
            "/properties/CidrBlock",
            "/properties/Ipv4IpamPoolId",
            "/properties/Ipv4NetmaskLength",
        ],
        "readOnlyProperties": [
            "/properties/CidrBlockAssociations",
            "/properties/DefaultNetworkAcl",
            "/properties/DefaultSecurityGroup",
            "/properties/Ipv6CidrBlocks",
        ],
        "required": [],
    }

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        return {
            "CidrBlockAssociations": [f"vpc-cidr-assoc-{get_random_hex(17)}"],
            "DefaultNetworkAcl": f"acl-{get_random_hex(17)}",
            "DefaultSecurityGroup": f"sg-{get_random_hex(17)}",
            "Ipv6CidrBlocks": [],
        }


class EC2SubnetProvider(ControlPlaneResourceProvider):
    TYPE = SUBNET
    ID_PREFIX = "subnet"
    REFERENCES = {"VpcId": (VPC, None)}
    SCHEMA = {
        "typeName": SUBNET,
        "primaryIdentifier": ["/properties/SubnetId"],
        "createOnlyProperties": [
            "/properties/VpcId",
            "/properties/AvailabilityZone",
            "/properties/AvailabilityZoneId",
            "/properties/CidrBlock",
            "/properties/OutpostArn",
        ],
        "readOnlyProperties": ["/properties/NetworkAclAssociationId"],
        "required": ["VpcId"],
    }

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        return {
            "AvailabilityZone": model.get("AvailabilityZone") or f"{request.region_name}a",
            "NetworkAclAssociationId": f"aclassoc-{get_random_hex(17)}",
        }


class EC2InternetGatewayProvider(ControlPlaneResourceProvider):
    TYPE = INTERNET_GATEWAY
    ID_PREFIX = "igw"
    SCHEMA = {
        "typeName": INTERNET_GATEWAY,
        "primaryIdentifier": ["/properties/InternetGatewayId"],
        "createOnlyProperties": [],
        "readOnlyProperties": [],
        "required": [],
    }


class EC2VPCGatewayAttachmentProvider(ControlPlaneResourceProvider):
    TYPE = "AWS::EC2::VPCGatewayAttachment"
    ID_PREFIX = "igw-attach"
    REFERENCES = {"VpcId": (VPC, None), "InternetGatewayId": (INTERNET_GATEWAY, None)}
    SCHEMA = {
        "typeName": "AWS::EC2::VPCGatewayAttachment",
        "primaryIdentifier": ["/properties/Id"],
        "createOnlyProperties": ["/properties/VpcId"],
        "readOnlyProperties": ["/properties/AttachmentType"],
        "required": ["VpcId"],
    }

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        return {"AttachmentType": "igw" if model.get("InternetGatewayId") else "vgw"}


class EC2RouteTableProvider(ControlPlaneResourceProvider):
    TYPE = ROUTE_TABLE
    ID_PREFIX = "rtb"
    REFERENCES = {"VpcId": (VPC, None)}
    SCHEMA = {
        "typeName": ROUTE_TABLE,
        "primaryIdentifier": ["/properties/RouteTableId"],
        "createOnlyProperties": ["/properties/VpcId"],
        "readOnlyProperties": [],
        "required": ["VpcId"],
    }


class EC2RouteProvider(ControlPlaneResourceProvider):
    TYPE = "AWS::EC2::Route"
    ID_PREFIX = "r"
    REFERENCES = {
        "RouteTableId": (ROUTE_TABLE, None),
        "GatewayId": (INTERNET_GATEWAY, None),
        "NatGatewayId": (NAT_GATEWAY, None),
    }
    SCHEMA = {
        "typeName": "AWS::EC2::Route",
        "primaryIdentifier": ["/properties/Id"],
        "createOnlyProperties": [
            "/properties/RouteTableId",
            "/properties/DestinationCidrBlock",
            "/properties/DestinationIpv6CidrBlock",
        ],
        "readOnlyProperties": ["/properties/CidrBlock"],
        "required": ["RouteTableId"],
    }

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        return {"CidrBlock": model.get("DestinationCidrBlock")}


class EC2SubnetRouteTableAssociationProvider(ControlPlaneResourceProvider):
    TYPE = "AWS::EC2::SubnetRouteTableAssociation"
    ID_PREFIX = "rtbassoc"
    REFERENCES = {"SubnetId": (SUBNET, None), "RouteTableId": (ROUTE_TABLE, None)}
    SCHEMA = {
        "typeName": "AWS::EC2::SubnetRouteTableAssociation",
        "primaryIdentifier": ["/properties/Id"],
        "createOnlyProperties": ["/properties/SubnetId", "/properties/RouteTableId"],
        "readOnlyProperties": [],
        "required": ["RouteTableId", "SubnetId"],
    }


class EC2EIPProvider(ControlPlaneResourceProvider):
    TYPE = EIP
    SCHEMA = {
        "typeName": EIP,
        "primaryIdentifier": ["/properties/PublicIp"],
        "createOnlyProperties": [
            "/properties/Domain",
            "/properties/NetworkBorderGroup",
            "/properties/TransferAddress",
        ],
        "readOnlyProperties": ["/properties/AllocationId"],
        "required": [],
    }

    def generate_id(self, request: ResourceRequest[dict]) -> str:
        return random_public_ip()

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        return {"AllocationId": f"eipalloc-{get_random_hex(17)}", "Domain": model.get("Domain", "vpc")}


class EC2NatGatewayProvider(ControlPlaneResourceProvider):
    """
    NAT gateways take a while to become available: ``create`` registers a pending gateway and reports
    IN_PROGRESS, the next poll (carrying the gateway id in the custom context) completes it.
    """

    TYPE = NAT_GATEWAY
    ID_PREFIX = "nat"
    REFERENCES = {"SubnetId": (SUBNET, None), "AllocationId": (EIP, "AllocationId")}
    SCHEMA = {
        "typeName": NAT_GATEWAY,
        "primaryIdentifier": ["/properties/NatGatewayId"],
        "createOnlyProperties": [
            "/properties/SubnetId",
            "/properties/AllocationId",
            "/properties/ConnectivityType",
            "/properties/PrivateIpAddress",
        ],
        "readOnlyProperties": ["/properties/State"],
        "required": ["SubnetId"],
    }

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        return {"State": "pending", "ConnectivityType": model.get("ConnectivityType", "public")}

    def create(self, request: ResourceRequest[dict]) -> ProgressEvent[dict]:
        nat_gateway_id = request.custom_context.get("NatGatewayId")
        if not nat_gateway_id:
            event = super().create(request)
            if event.status != OperationStatus.SUCCESS:
                return event
            model = event.resource_model
            if model["State"] == "available":
                return event
            return ProgressEvent(
                status=OperationStatus.IN_PROGRESS,
                resource_model=model,
                custom_context={"NatGatewayId": model["NatGatewayId"]},
            )

        model = self.control_plane.get(self.TYPE, nat_gateway_id)
        model["State"] = "available"
        model = self.control_plane.put(self.TYPE, nat_gateway_id, model)
        return ProgressEvent(status=OperationStatus.SUCCESS, resource_model=model)


class EC2SecurityGroupProvider(ControlPlaneResourceProvider):
    TYPE = SECURITY_GROUP
    ID_PREFIX = "sg"
    REFERENCES = {"VpcId": (VPC, None)}
    SCHEMA = {
        "typeName": SECURITY_GROUP,
        "primaryIdentifier": ["/properties/GroupId"],
        "createOnlyProperties": [
            "/properties/GroupDescription",
            "/properties/GroupName",
            "/properties/VpcId",
        ],
        "readOnlyProperties": [],
        "required": ["GroupDescription"],
    }

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        return {
            "GroupName": model.get("GroupName") or f"{request.stack_name}-{request.logical_resource_id}",
        }


class EC2LaunchTemplateProvider(ControlPlaneResourceProvider):
    TYPE = LAUNCH_TEMPLATE
    ID_PREFIX = "lt"
    SCHEMA = {
        "typeName": LAUNCH_TEMPLATE,
        "primaryIdentifier": ["/properties/LaunchTemplateId"],
        "createOnlyProperties": ["/properties/LaunchTemplateName"],
        "readOnlyProperties": [
            "/properties/DefaultVersionNumber",
            "/properties/LatestVersionNumber",
        ],
        "required": ["LaunchTemplateData"],
    }

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        return {
            "LaunchTemplateName": model.get("LaunchTemplateName")
            or f"{request.stack_name}-{request.logical_resource_id}",
            "DefaultVersionNumber": "1",
            "LatestVersionNumber": "1",
        }

    def on_update(self, current: dict, model: dict):
        # every update of the launch template data creates a new version
        model["LatestVersionNumber"] = str(int(current.get("LatestVersionNumber", "1")) + 1)
        model["LaunchTemplateName"] = current.get("LaunchTemplateName")


class EC2InstanceProvider(ControlPlaneResourceProvider):
    TYPE = "AWS::EC2::Instance"
    ID_PREFIX = "i"
    REFERENCES = {"SubnetId": (SUBNET, None)}
    SCHEMA = {
        "typeName": "AWS::EC2::Instance",
        "primaryIdentifier": ["/properties/InstanceId"],
        "createOnlyProperties": [
            "/properties/AvailabilityZone",
            "/properties/ImageId",
            "/properties/KeyName",
            "/properties/LaunchTemplate",
            "/properties/SubnetId",
        ],
        "readOnlyProperties": [
            "/properties/PrivateDnsName",
            "/properties/PrivateIp",
            "/properties/PublicDnsName",
            "/properties/PublicIp",
        ],
        "required": [],
    }

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        private_ip = random_private_ip()
        public_ip = random_public_ip()
        return {
            "AvailabilityZone": model.get("AvailabilityZone") or f"{request.region_name}a",
            "PrivateIp": private_ip,
            "PrivateDnsName": f"ip-{private_ip.replace('.', '-')}.ec2.internal",
            "PublicIp": public_ip,
            "PublicDnsName": f"ec2-{public_ip.replace('.', '-')}.compute-1.amazonaws.com",
        }


class EC2VPCEndpointServiceProvider(ControlPlaneResourceProvider):
    """Endpoint service of a network load balancer. Accepting connection requests is not managed here."""

    TYPE = "AWS::EC2::VPCEndpointService"
    ID_PREFIX = "vpce-svc"
    SCHEMA = {
        "typeName": "AWS::EC2::VPCEndpointService",
        "primaryIdentifier": ["/properties/ServiceId"],
        "createOnlyProperties": [],
        "readOnlyProperties": ["/properties/ServiceName"],
        "required": [],
    }

    def attributes(self, request: ResourceRequest[dict], model: dict) -> dict:
        return {"ServiceName": f"com.amazonaws.vpce.{request.region_name}.{model['ServiceId']}"}
