"""
Database password provider plugins

Allows swapping password retrieval mechanism without changing core code.
Supports: .pgpass file, AWS Secrets Manager, and environment variables.
"""

import os
import json
from pathlib import Path
from typing import Mapping, Optional
from gexwatch.errors import ConfigurationError
from gexwatch.utils import get_logger

logger = get_logger(__name__)


def get_db_password(provider: str = "pgpass", env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """
    Get database password from the given provider

    Supported providers:
    - 'pgpass' (default - uses ~/.pgpass file, no password needed in code)
    - 'aws_secrets_manager' (for AWS RDS deployments)
    - 'env' (direct from DB_PASSWORD, not recommended for production)

    Args:
        provider: Provider name (DB_PASSWORD_PROVIDER)
        env: Mapping holding provider settings (default: os.environ)

    Returns:
        Database password string, or None if using .pgpass

    Raises:
        ConfigurationError: If password cannot be retrieved
    """
    env = os.environ if env is None else env

    logger.debug(f"Using password provider: {provider}")

    if provider == 'pgpass':
        return _get_password_from_pgpass()
    elif provider == 'aws_secrets_manager':
        return _get_password_from_aws_secrets_manager(env)
    elif provider == 'env':
        return _get_password_from_env(env)
    else:
        raise ConfigurationError(f"Unknown password provider: {provider}")


def _get_password_from_pgpass() -> None:
    """
    Use .pgpass file for authentication (PostgreSQL standard)

    When using .pgpass, we don't pass a password to psycopg2.
    libpq reads ~/.pgpass automatically.

    Raises:
        ConfigurationError: If .pgpass file doesn't exist or has wrong permissions
    """
    pgpass_path = Path.home() / '.pgpass'

    if not pgpass_path.exists():
        raise ConfigurationError(
            f".pgpass file not found at {pgpass_path}\n"
            "Format: hostname:port:database:username:password\n"
            "Then run: chmod 600 ~/.pgpass"
        )

    # libpq ignores the file unless it is 0600
    pgpass_mode = oct(pgpass_path.stat().st_mode)[-3:]

    if pgpass_mode != '600':
        raise ConfigurationError(
            f".pgpass file has incorrect permissions: {pgpass_mode}\n"
            f"Fix with: chmod 600 {pgpass_path}"
        )

    logger.info(f"Using .pgpass file for authentication: {pgpass_path}")
    return None


def _get_password_from_aws_secrets_manager(env: Mapping[str, str]) -> str:
    """
    Retrieve database password from AWS Secrets Manager

    Requires the optional 'aws' extra (boto3).

    Raises:
        ConfigurationError: If secret cannot be retrieved
    """
    try:
        import boto3
        from botocore.exceptions import ClientError
    except ImportError:
        raise ConfigurationError(
            "boto3 is required for AWS Secrets Manager. "
            "Install with: pip install gexwatch[aws]"
        )

    secret_name = env.get('DB_SECRET_NAME')
    region_name = env.get('AWS_REGION', 'us-east-1')

    if not secret_name:
        raise ConfigurationError(
            "DB_SECRET_NAME environment variable is required for AWS Secrets Manager"
        )

    logger.info(f"Fetching secret '{secret_name}' from AWS Secrets Manager")

    try:
        session = boto3.session.Session()
        client = session.client(service_name='secretsmanager', region_name=region_name)
        response = client.get_secret_value(SecretId=secret_name)
    except ClientError as e:
        error_code = e.response['Error']['Code']
        if error_code == 'ResourceNotFoundException':
            raise ConfigurationError(f"Secret '{secret_name}' not found in AWS Secrets Manager")
        raise ConfigurationError(f"Failed to retrieve secret '{secret_name}': {e}")

    if 'SecretString' not in response:
        raise ConfigurationError(f"Secret '{secret_name}' does not contain SecretString")

    secret = json.loads(response['SecretString'])

    # AWS RDS secrets have a 'password' key
    if 'password' not in secret:
        raise ConfigurationError(
            f"Secret '{secret_name}' does not contain 'password' key. "
            f"Available keys: {list(secret.keys())}"
        )

    return secret['password']


def _get_password_from_env(env: Mapping[str, str]) -> str:
    """
    Retrieve database password directly from DB_PASSWORD

    Raises:
        ConfigurationError: If DB_PASSWORD not set
    """
    password = env.get('DB_PASSWORD')

    if not password:
        raise ConfigurationError(
            "DB_PASSWORD environment variable is required when using 'env' provider"
        )

    logger.warning("Using password from environment variable (not recommended for production)")
    return password
