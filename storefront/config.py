"""
Configuration management for the storefront session service.
Loads settings from environment variables and AWS Secrets Manager.
"""
import os
import json
import logging
from decimal import Decimal
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)


class Config:
    """Application configuration"""

    # Application settings
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))
    PROJECT_NAME: str = os.getenv("PROJECT_NAME", "bookstore-storefront")
    REGION: str = os.getenv("REGION", "ap-south-1")

    # Backend and asset locations
    API_URL: str = os.getenv("API_URL", "http://localhost:5000/api")
    ASSET_BASE_URL: str = os.getenv("ASSET_BASE_URL", "http://localhost:5000")

    # Payment gateway
    RAZORPAY_KEY_ID: Optional[str] = os.getenv("RAZORPAY_KEY_ID")
    RAZORPAY_SCRIPT_URL: str = os.getenv(
        "RAZORPAY_SCRIPT_URL", "https://checkout.razorpay.com/v1/checkout.js"
    )
    PAYMENT_WINDOW_SECONDS: int = int(os.getenv("PAYMENT_WINDOW_SECONDS", str(15 * 60)))

    # Storefront presentation values handed to the payment widget
    STORE_NAME: str = os.getenv("STORE_NAME", "BookStore")
    STORE_LOGO: str = os.getenv("STORE_LOGO", "/logo.png")
    THEME_COLOR: str = os.getenv("THEME_COLOR", "#4F46E5")
    CURRENCY: str = os.getenv("CURRENCY", "INR")
    DEFAULT_COUNTRY: str = os.getenv("DEFAULT_COUNTRY", "India")
    TAX_RATE: Decimal = Decimal(os.getenv("TAX_RATE", "0.18"))

    # Redis settings
    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_AUTH_TOKEN: Optional[str] = os.getenv("REDIS_AUTH_TOKEN")
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))
    REDIS_SSL: bool = os.getenv("REDIS_SSL", "false").lower() == "true"

    # Session storage settings
    SESSION_TTL_SECONDS: int = int(os.getenv("SESSION_TTL_SECONDS", str(7 * 24 * 60 * 60)))  # 7 days default
    GUEST_CART_TTL_SECONDS: int = int(os.getenv("GUEST_CART_TTL_SECONDS", str(30 * 24 * 60 * 60)))
    SESSION_CACHE_SIZE: int = int(os.getenv("SESSION_CACHE_SIZE", "10000"))

    # Redis connection settings
    REDIS_SOCKET_CONNECT_TIMEOUT: int = 5
    REDIS_SOCKET_TIMEOUT: int = 5
    REDIS_RETRY_ON_TIMEOUT: bool = True
    REDIS_MAX_CONNECTIONS: int = 50

    @classmethod
    def load_secrets(cls) -> None:
        """Load the gateway key and Redis token from AWS Secrets Manager"""
        secret_name = os.getenv("STOREFRONT_SECRET_NAME")
        if not secret_name:
            return  # Nothing to overlay, environment values stand

        try:
            client = boto3.client("secretsmanager", region_name=cls.REGION)
            response = client.get_secret_value(SecretId=secret_name)
            secret_data = json.loads(response["SecretString"])
        except (BotoCoreError, ClientError, KeyError, ValueError) as e:
            logger.warning(f"Could not load storefront secrets from Secrets Manager: {e}")
            return

        if not cls.RAZORPAY_KEY_ID:
            cls.RAZORPAY_KEY_ID = secret_data.get("razorpay_key_id")
        if not cls.REDIS_AUTH_TOKEN:
            cls.REDIS_AUTH_TOKEN = secret_data.get("redis_auth_token")
        if "redis_endpoint" in secret_data:
            cls.REDIS_HOST = secret_data["redis_endpoint"]


# Load secrets at module import
Config.load_secrets()
