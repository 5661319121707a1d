import io
from typing import BinaryIO, Optional

import boto3
from botocore.credentials import (
    AssumeRoleCredentialFetcher,
    CredentialProvider,
    CredentialResolver,
    DeferredRefreshableCredentials,
)
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
from botocore.session import get_session

from .base import BackendError, BackendNotFoundError, DirEntry, StateBackend, clean_path

ROLE_SESSION_NAME = "tfstate-browser"

NO_CREDENTIALS_MESSAGE = (
    "AWS credentials not found. "
    "Please provide profile_name, set environment variables, "
    "or provide access keys explicitly."
)


class AssumedRoleProvider(CredentialProvider):
    """Credential provider handing out STS AssumeRole credentials that refresh on expiry"""

    METHOD = 'sts-assume-role'

    def __init__(self, fetcher: AssumeRoleCredentialFetcher):
        self._fetcher = fetcher

    def load(self):
        return DeferredRefreshableCredentials(
            method=self.METHOD,
            refresh_using=self._fetcher.fetch_credentials
        )


class S3Backend(StateBackend):
    """S3 backend implementation for Terraform state"""

    def __init__(
        self,
        bucket_name: str,
        profile_name: Optional[str] = None,
        region_name: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        aws_session_token: Optional[str] = None,
        role_arn: Optional[str] = None
    ):
        """
        Initialize S3 backend

        Args:
            bucket_name: S3 bucket name
            profile_name: AWS profile name
            region_name: AWS region name
            aws_access_key_id: AWS access key ID
            aws_secret_access_key: AWS secret access key
            aws_session_token: AWS session token
            role_arn: IAM role to assume before reading the bucket
        """
        self.bucket_name = bucket_name
        self.role_arn = role_arn
        self.client = self._get_s3_client(
            profile_name,
            region_name,
            aws_access_key_id,
            aws_secret_access_key,
            aws_session_token,
            role_arn
        )

    def _get_s3_client(
        self,
        profile_name: Optional[str] = None,
        region_name: Optional[str] = None,
        aws_access_key_id: Optional[str] = None,
        aws_secret_access_key: Optional[str] = None,
        aws_session_token: Optional[str] = None,
        role_arn: Optional[str] = None
    ) -> boto3.client:
        """Create boto3 S3 client with provided credentials"""
        try:
            session_kwargs = {}
            if profile_name:
                session_kwargs['profile_name'] = profile_name
            if region_name:
                session_kwargs['region_name'] = region_name

            # If explicit credentials are provided, they override profile/env
            if aws_access_key_id and aws_secret_access_key:
                session_kwargs['aws_access_key_id'] = aws_access_key_id
                session_kwargs['aws_secret_access_key'] = aws_secret_access_key
                if aws_session_token:
                    session_kwargs['aws_session_token'] = aws_session_token

            session = boto3.Session(**session_kwargs)
            if role_arn:
                session = self._assume_role(session, role_arn)
            return session.client('s3')

        except BackendError:
            raise
        except Exception as e:
            raise BackendError(f"Failed to create S3 client: {str(e)}")

    def _assume_role(self, session, role_arn: str):
        """
        Return a session whose credentials come from STS.

        The role is assumed on first use and again before the temporary
        credentials expire. The region resolved by the source session
        (explicit, or from its profile) carries over.
        """
        source_credentials = session.get_credentials()
        if source_credentials is None:
            raise BackendError(NO_CREDENTIALS_MESSAGE)

        fetcher = AssumeRoleCredentialFetcher(
            client_creator=session.client,
            source_credentials=source_credentials,
            role_arn=role_arn,
            extra_args={'RoleSessionName': ROLE_SESSION_NAME}
        )
        botocore_session = get_session()
        botocore_session.register_component(
            'credential_provider',
            CredentialResolver(providers=[AssumedRoleProvider(fetcher)])
        )

        return boto3.Session(botocore_session=botocore_session, region_name=session.region_name)

    def _raise_for(self, e: Exception, path: str):
        if isinstance(e, NoCredentialsError):
            raise BackendError(NO_CREDENTIALS_MESSAGE)
        elif isinstance(e, BotoCoreError):
            raise BackendError(f"S3 Error: {str(e)}")

        error_code = e.response['Error']['Code']
        if error_code in ('NoSuchKey', '404'):
            raise BackendNotFoundError(f"File '{path}' not found in bucket '{self.bucket_name}'.")
        elif error_code == 'NoSuchBucket':
            raise BackendError(f"Bucket '{self.bucket_name}' not found.")
        elif error_code == 'AccessDenied':
            raise BackendError(f"Access denied to '{path}' in bucket '{self.bucket_name}'.")
        else:
            raise BackendError(f"S3 Error: {str(e)}")

    def list_dir(self, path: str) -> list[DirEntry]:
        """List the objects and common prefixes directly under a prefix"""
        key = clean_path(path)
        prefix = f"{key}/" if key else ""
        entries = {}
        found = False

        try:
            paginator = self.client.get_paginator('list_objects_v2')
            pages = paginator.paginate(Bucket=self.bucket_name, Prefix=prefix, Delimiter='/')

            for page in pages:
                for common in page.get('CommonPrefixes', []):
                    found = True
                    name = common['Prefix'][len(prefix):].rstrip('/')
                    if name:
                        entries[name] = DirEntry(name=name, is_dir=True)
                for obj in page.get('Contents', []):
                    found = True
                    name = obj['Key'][len(prefix):]
                    # "dir/" marker objects stand for the directory itself
                    if name and name not in entries:
                        entries[name] = DirEntry(name=name, is_dir=False)

        except (ClientError, BotoCoreError) as e:
            self._raise_for(e, path)

        if prefix and not found:
            raise BackendNotFoundError(f"Directory '{path}' not found in bucket '{self.bucket_name}'.")

        return [entries[name] for name in sorted(entries)]

    def open_file(self, path: str) -> BinaryIO:
        """Read an object body and return it as a stream"""
        key = clean_path(path)
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=key)
            return io.BytesIO(response['Body'].read())

        except (ClientError, BotoCoreError) as e:
            self._raise_for(e, path)
