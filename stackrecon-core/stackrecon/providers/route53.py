from stackrecon.providers.base import ControlPlaneResourceProvider
from stackrecon.resource_provider import ResourceRequest


class Route53RecordSetProvider(ControlPlaneResourceProvider):
    """
    Record sets are identified by their (normalized) domain name. The hosted zone itself is not managed
    by the local control plane.
    """

    TYPE = "AWS::Route53::RecordSet"
    SCHEMA = {
        "typeName": "AWS::Route53::RecordSet",
        "primaryIdentifier": ["/properties/Id"],
        "createOnlyProperties": [
            "/properties/HostedZoneId",
            "/properties/HostedZoneName",
            "/properties/Name",
        ],
        "readOnlyProperties": [],
        "required": ["Name", "Type"],
    }

    def generate_id(self, request: ResourceRequest[dict]) -> str:
        return request.desired_state["Name"].rstrip(".")
