"""
Vendor backends that adapt cloud APIs to the common instance interface.
"""

from .aws_provider import AwsEc2Backend, AwsNetworkApi, Ec2ClientCache, aws_quota_classifier

__all__ = [
    "AwsEc2Backend",
    "AwsNetworkApi",
    "Ec2ClientCache",
    "aws_quota_classifier",
]
