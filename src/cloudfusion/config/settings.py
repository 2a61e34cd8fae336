"""Configuration settings for the CloudFusion runtime.

Settings are loaded from environment variables and ``.env`` files and
passed explicitly into :class:`cloudfusion.runtime.Runtime`.
"""

import json
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime settings loaded from environment variables.

    :param key: AWS access key identifier
    :type key: Optional[str]
    :param secret_key: AWS secret access key
    :type secret_key: Optional[str]
    :param account_id: Optional AWS account identifier
    :type account_id: Optional[str]
    :param assoc_id: Optional Amazon associate identifier
    :type assoc_id: Optional[str]
    :param cache_location: Cache backend selector (path, ``apc``, ``pdo.`` DSN
        or a list of host/port pairs)
    :type cache_location: Optional[Union[str, List[Dict[str, Any]]]]
    :param cache_gzip: Compress cached payloads
    :type cache_gzip: bool
    :param max_retries: Retries allowed on HTTP 500/503
    :type max_retries: int
    :param proxy: Optional proxy URL
    :type proxy: Optional[str]
    :param hostname: Optional alternate hostname
    :type hostname: Optional[str]
    :param port: Optional alternate port
    :type port: Optional[int]
    :param use_ssl: Use https for requests
    :type use_ssl: bool
    :param verify_ssl: Verify TLS certificates
    :type verify_ssl: bool
    :param connect_timeout: Connect timeout in seconds
    :type connect_timeout: float
    :param request_timeout: Overall request timeout in seconds
    :type request_timeout: float
    :param log_level: Logging level for the application
    :type log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # Credentials
    key: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("AWS_KEY", "AWS_ACCESS_KEY_ID"),
        description="AWS access key identifier",
    )
    secret_key: Optional[str] = Field(
        None,
        validation_alias=AliasChoices("AWS_SECRET_KEY", "AWS_SECRET_ACCESS_KEY"),
        description="AWS secret access key",
    )
    account_id: Optional[str] = Field(
        None, alias="AWS_ACCOUNT_ID", description="AWS account identifier"
    )
    assoc_id: Optional[str] = Field(
        None, alias="AWS_ASSOC_ID", description="Amazon associate identifier"
    )

    # Cache
    cache_location: Optional[Union[str, List[Dict[str, Any]]]] = Field(
        None, alias="AWS_CACHE_LOCATION", description="Cache backend selector"
    )
    cache_gzip: bool = Field(
        True, alias="AWS_CACHE_GZIP", description="Compress cached payloads"
    )

    # Transport
    max_retries: int = Field(
        3, alias="AWS_MAX_RETRIES", ge=0, description="Retries on HTTP 500/503"
    )
    proxy: Optional[str] = Field(None, alias="AWS_PROXY", description="Proxy URL")
    hostname: Optional[str] = Field(
        None, alias="AWS_HOSTNAME", description="Alternate hostname"
    )
    port: Optional[int] = Field(None, alias="AWS_PORT", description="Alternate port")
    use_ssl: bool = Field(True, alias="AWS_USE_SSL", description="Use https")
    verify_ssl: bool = Field(
        True, alias="AWS_VERIFY_SSL", description="Verify TLS certificates"
    )
    connect_timeout: float = Field(
        120.0, alias="AWS_CONNECT_TIMEOUT", description="Connect timeout (seconds)"
    )
    request_timeout: float = Field(
        5184000.0, alias="AWS_REQUEST_TIMEOUT", description="Overall timeout (seconds)"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        "INFO", alias="LOG_LEVEL", description="Logging level"
    )

    @field_validator("cache_location", mode="before")
    @classmethod
    def parse_cache_location(cls, v: Any) -> Any:
        """Accept a JSON list of servers for the distributed backend.

        ``AWS_CACHE_LOCATION='[{"host": "cache1"}]'`` selects the
        distributed backend; any other string is kept verbatim.

        :param v: Raw value from the environment or constructor
        :type v: Any
        :return: Parsed location
        :rtype: Any
        """
        if isinstance(v, str):
            stripped = v.strip()
            if stripped.startswith("["):
                try:
                    return json.loads(stripped)
                except ValueError:
                    return v
            return stripped or None
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: Any) -> Any:
        """Upper-case the log level so ``debug`` is accepted."""
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def has_credentials(self) -> bool:
        """Check whether both halves of the credential pair are present.

        :return: True if key and secret key are set
        :rtype: bool
        """
        return bool(self.key and self.secret_key)


def get_settings(**overrides: Any) -> Settings:
    """Build a fresh :class:`Settings` instance.

    :param overrides: Field values that take precedence over the environment
    :return: Loaded settings
    :rtype: Settings
    """
    return Settings(**overrides)
