"""
Configuration management for the Score Report Analyzer.
Loads AWS credentials, storage, and language-model settings from environment variables.
"""
import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """Configuration class for AWS credentials, storage and external services."""

    # AWS Credentials
    AWS_PROFILE: Optional[str] = os.getenv('AWS_PROFILE')
    AWS_ACCESS_KEY_ID: Optional[str] = os.getenv('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY: Optional[str] = os.getenv('AWS_SECRET_ACCESS_KEY')
    AWS_SESSION_TOKEN: Optional[str] = os.getenv('AWS_SESSION_TOKEN')
    AWS_REGION: str = os.getenv('AWS_REGION', 'us-east-1')

    # Document Storage
    # S3 is used when a bucket is set, a local directory otherwise
    REPORT_BUCKET: Optional[str] = os.getenv('REPORT_BUCKET')
    LOCAL_STORAGE_DIR: str = os.getenv('LOCAL_STORAGE_DIR', 'output/uploads')

    # Transcription backend: textract | vision
    TRANSCRIPTION_BACKEND: str = os.getenv('TRANSCRIPTION_BACKEND', 'textract').lower()

    # Language model (OpenAI-compatible chat completions endpoint)
    LLM_API_KEY: Optional[str] = os.getenv('LLM_API_KEY') or os.getenv('OPENAI_API_KEY')
    LLM_API_BASE: str = os.getenv('LLM_API_BASE', 'https://api.openai.com/v1')
    LLM_MODEL: str = os.getenv('LLM_MODEL', 'gpt-4o-mini')
    LLM_TIMEOUT: int = int(os.getenv('LLM_TIMEOUT', '120'))

    # Rate Limiting
    MAX_TOTAL_CALLS: int = int(os.getenv('MAX_TOTAL_CALLS', '50'))
    ENABLE_RATE_LIMITING: bool = os.getenv('ENABLE_RATE_LIMITING', 'true').lower() == 'true'

    # Pipeline
    MAX_SINGLE_DOCUMENTS: int = int(os.getenv('MAX_SINGLE_DOCUMENTS', '5'))
    MAX_WORKERS: int = int(os.getenv('MAX_WORKERS', '4'))

    # API Settings
    API_HOST: str = os.getenv('API_HOST', '0.0.0.0')
    API_PORT: int = int(os.getenv('API_PORT', '8000'))
    CORS_ORIGINS: list = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')

    @classmethod
    def validate(cls) -> bool:
        """
        Validate that required configuration is present.
        """
        if cls.TRANSCRIPTION_BACKEND not in ('textract', 'vision'):
            raise ValueError(
                f"TRANSCRIPTION_BACKEND must be 'textract' or 'vision', got '{cls.TRANSCRIPTION_BACKEND}'."
            )

        if cls.TRANSCRIPTION_BACKEND == 'vision' and not cls.LLM_API_KEY:
            raise ValueError("LLM_API_KEY (or OPENAI_API_KEY) is required for the vision transcription backend.")

        needs_aws = cls.TRANSCRIPTION_BACKEND == 'textract' or bool(cls.REPORT_BUCKET)
        if needs_aws and not cls.AWS_PROFILE and (not cls.AWS_ACCESS_KEY_ID or not cls.AWS_SECRET_ACCESS_KEY):
            raise ValueError(
                "AWS credentials not found. Please set either:\n"
                "  - AWS_PROFILE environment variable (for profile-based auth), or\n"
                "  - AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY environment variables"
            )

        # Check if temporary credentials (ASIA) are used without session token
        if cls.AWS_ACCESS_KEY_ID and cls.AWS_ACCESS_KEY_ID.startswith('ASIA'):
            if not cls.AWS_SESSION_TOKEN:
                raise ValueError(
                    "Temporary credentials (ASIA) detected but AWS_SESSION_TOKEN is not set.\n"
                    "Temporary credentials require a session token to work."
                )

        if needs_aws and not cls.AWS_REGION:
            raise ValueError("AWS_REGION environment variable is required.")

        if cls.MAX_SINGLE_DOCUMENTS < 0:
            raise ValueError("MAX_SINGLE_DOCUMENTS must not be negative.")
        return True

    @classmethod
    def get_boto3_config(cls) -> dict:
        """
        Get AWS configuration dictionary for boto3.
        """
        config = {'region_name': cls.AWS_REGION}

        if cls.AWS_PROFILE:
            return {'profile_name': cls.AWS_PROFILE, 'region_name': cls.AWS_REGION}
        elif cls.AWS_ACCESS_KEY_ID and cls.AWS_SECRET_ACCESS_KEY:
            config.update({
                'aws_access_key_id': cls.AWS_ACCESS_KEY_ID,
                'aws_secret_access_key': cls.AWS_SECRET_ACCESS_KEY
            })
            if cls.AWS_SESSION_TOKEN:
                config['aws_session_token'] = cls.AWS_SESSION_TOKEN

        return config

    @classmethod
    def get_llm_config(cls) -> dict:
        """
        Get keyword arguments for the language-model backed services.
        """
        return {
            'api_key': cls.LLM_API_KEY,
            'api_base': cls.LLM_API_BASE,
            'model_name': cls.LLM_MODEL,
            'timeout': cls.LLM_TIMEOUT,
        }
