"""
Resource provider plugins of the shipped providers. Every plugin defers importing its provider until it is
loaded; third-party providers register plugins of the same kind through the
``stackrecon.resource_providers`` entry point namespace.
"""

from typing import Optional, Type

from stackrecon.resource_provider import ResourceProvider, StackreconResourceProviderPlugin


class EC2VPCProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::VPC"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2VPCProvider

        self.factory = EC2VPCProvider


class EC2SubnetProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::Subnet"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2SubnetProvider

        self.factory = EC2SubnetProvider


class EC2InternetGatewayProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::InternetGateway"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2InternetGatewayProvider

        self.factory = EC2InternetGatewayProvider


class EC2VPCGatewayAttachmentProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::VPCGatewayAttachment"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2VPCGatewayAttachmentProvider

        self.factory = EC2VPCGatewayAttachmentProvider


class EC2RouteTableProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::RouteTable"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2RouteTableProvider

        self.factory = EC2RouteTableProvider


class EC2RouteProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::Route"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2RouteProvider

        self.factory = EC2RouteProvider


class EC2SubnetRouteTableAssociationProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::SubnetRouteTableAssociation"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2SubnetRouteTableAssociationProvider

        self.factory = EC2SubnetRouteTableAssociationProvider


class EC2EIPProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::EIP"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2EIPProvider

        self.factory = EC2EIPProvider


class EC2NatGatewayProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::NatGateway"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2NatGatewayProvider

        self.factory = EC2NatGatewayProvider


class EC2SecurityGroupProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::SecurityGroup"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2SecurityGroupProvider

        self.factory = EC2SecurityGroupProvider


class EC2LaunchTemplateProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::LaunchTemplate"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2LaunchTemplateProvider

        self.factory = EC2LaunchTemplateProvider


class EC2InstanceProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::Instance"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2InstanceProvider

        self.factory = EC2InstanceProvider


class EC2VPCEndpointServiceProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::EC2::VPCEndpointService"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.ec2 import EC2VPCEndpointServiceProvider

        self.factory = EC2VPCEndpointServiceProvider


class ElasticLoadBalancingV2LoadBalancerProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::ElasticLoadBalancingV2::LoadBalancer"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.elbv2 import ElasticLoadBalancingV2LoadBalancerProvider

        self.factory = ElasticLoadBalancingV2LoadBalancerProvider


class ElasticLoadBalancingV2TargetGroupProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::ElasticLoadBalancingV2::TargetGroup"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.elbv2 import ElasticLoadBalancingV2TargetGroupProvider

        self.factory = ElasticLoadBalancingV2TargetGroupProvider


class ElasticLoadBalancingV2ListenerProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::ElasticLoadBalancingV2::Listener"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.elbv2 import ElasticLoadBalancingV2ListenerProvider

        self.factory = ElasticLoadBalancingV2ListenerProvider


class AutoScalingAutoScalingGroupProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::AutoScaling::AutoScalingGroup"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.autoscaling import AutoScalingAutoScalingGroupProvider

        self.factory = AutoScalingAutoScalingGroupProvider


class AutoScalingScalingPolicyProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::AutoScaling::ScalingPolicy"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.autoscaling import AutoScalingScalingPolicyProvider

        self.factory = AutoScalingScalingPolicyProvider


class Route53RecordSetProviderPlugin(StackreconResourceProviderPlugin):
    name = "AWS::Route53::RecordSet"

    def __init__(self):
        self.factory: Optional[Type[ResourceProvider]] = None

    def load(self):
        from stackrecon.providers.route53 import Route53RecordSetProvider

        self.factory = Route53RecordSetProvider
