"""
Storage stack - S3 bucket for Twenty file attachments.
"""

from dataclasses import dataclass

from aws_cdk import (
    Aws,
    CfnOutput,
    Duration,
    RemovalPolicy,
    Stack,
    Tags,
)
from aws_cdk import (
    aws_s3 as s3,
)
from constructs import Construct

INFREQUENT_ACCESS_AFTER_DAYS = 90
ABORT_MULTIPART_UPLOAD_AFTER_DAYS = 7


@dataclass(frozen=True)
class StorageOutputs:
    bucket: s3.IBucket


class StorageStack(Stack):
    """
    Creates the private file storage bucket.

    Features:
    - S3-managed encryption, all public access blocked
    - Lifecycle: Infrequent Access after 90 days, stale multipart uploads aborted
    - CORS for direct browser uploads and downloads
    - Retained on stack deletion
    """

    def __init__(
        self,
        scope: Construct,
        construct_id: str,
        *,
        resource_prefix: str,
        export_prefix: str,
        **kwargs,
    ) -> None:
        super().__init__(scope, construct_id, **kwargs)

        bucket = s3.Bucket(
            self,
            "StorageBucket",
            bucket_name=f"{resource_prefix}-storage-{Aws.ACCOUNT_ID}-{Aws.REGION}",
            encryption=s3.BucketEncryption.S3_MANAGED,
            block_public_access=s3.BlockPublicAccess.BLOCK_ALL,
            versioned=False,  # Cost optimization
            lifecycle_rules=[
                s3.LifecycleRule(
                    transitions=[
                        s3.Transition(
                            storage_class=s3.StorageClass.INFREQUENT_ACCESS,
                            transition_after=Duration.days(INFREQUENT_ACCESS_AFTER_DAYS),
                        )
                    ],
                ),
                s3.LifecycleRule(
                    abort_incomplete_multipart_upload_after=Duration.days(
                        ABORT_MULTIPART_UPLOAD_AFTER_DAYS
                    ),
                ),
            ],
            cors=[
                s3.CorsRule(
                    allowed_methods=[
                        s3.HttpMethods.GET,
                        s3.HttpMethods.PUT,
                        s3.HttpMethods.POST,
                        s3.HttpMethods.DELETE,
                    ],
                    # TODO: restrict to the application domain once every deployment sets one
                    allowed_origins=["*"],
                    allowed_headers=["*"],
                    exposed_headers=["ETag"],
                    max_age=3600,
                )
            ],
            removal_policy=RemovalPolicy.RETAIN,
            auto_delete_objects=False,
        )

        Tags.of(bucket).add("Component", "Storage")

        CfnOutput(
            self,
            "StorageBucketName",
            value=bucket.bucket_name,
            description="S3 bucket for file storage",
            export_name=f"{export_prefix}StorageBucketName",
        )

        CfnOutput(
            self,
            "StorageBucketArn",
            value=bucket.bucket_arn,
            description="S3 bucket ARN",
            export_name=f"{export_prefix}StorageBucketArn",
        )

        self.outputs = StorageOutputs(bucket=bucket)
