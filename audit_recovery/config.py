"""
Configuration module for the recovery toolkit.

Provides centralized configuration for the operation log, soft delete
lifecycle, cleanup scanner and store adapters.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union, get_args, get_origin

from pydantic import BaseModel, Field, field_validator


class StorageBackend(str, Enum):
    """Supported document store backends."""

    MEMORY = "memory"
    SQLITE = "sqlite"
    POSTGRESQL = "postgresql"


class SlotCollectionConfig(BaseModel):
    """Layout of a collection whose documents hold a list of dated slots."""

    slots_field: str = Field("slots", description="Field holding the slot list")
    slot_time_field: str = Field(
        "dateTime", description="Timestamp field inside each slot"
    )
    order_field: str = Field(
        "createdAt", description="Parent field used to order the scan"
    )


class RecoveryConfig(BaseModel):
    """Central configuration for audit log backed recovery.

    Values can be set programmatically or loaded from ``RECOVERY_`` prefixed
    environment variables. The retention window and the permanent-delete grace
    period are read once by each service at construction time, so tests can
    inject short windows without touching the global instance.

    Example:
        >>> config = RecoveryConfig(log_retention_days=7)
        >>> os.environ["RECOVERY_STORE_BATCH_SIZE"] = "100"
        >>> config = RecoveryConfig.from_env()

    Environment Variables:
        - RECOVERY_DATABASE_URL
        - RECOVERY_LOG_RETENTION_DAYS
        - RECOVERY_PERMANENT_DELETE_GRACE_DAYS
        - RECOVERY_SOFT_DELETE_COLLECTIONS (comma separated)
    """

    # General settings
    application_name: str = Field(
        "Recovery Admin", description="Name of the application"
    )
    environment: str = Field(
        "production", description="Environment (development, staging, production)"
    )
    log_level: str = Field("INFO", description="Logging level for CLI and services")

    # Store settings
    storage_backend: StorageBackend = Field(
        StorageBackend.SQLITE, description="Document store backend"
    )
    database_url: Optional[str] = Field(
        "sqlite:///./recovery.db", description="SQLAlchemy connection string"
    )
    store_batch_size: int = Field(
        450, description="Maximum writes per atomic batch", gt=1, le=500
    )
    store_timeout_seconds: float = Field(
        10.0, description="Timeout applied to every store call", gt=0
    )

    # Operation log settings
    log_collection: str = Field(
        "operationLogs", description="Collection holding operation log entries"
    )
    log_retention_days: int = Field(
        30, description="Days before a log entry expires", gt=0
    )
    default_list_limit: int = Field(
        50, description="Page size when none is requested", gt=0
    )
    max_list_limit: int = Field(500, description="Upper bound on page size", gt=0)

    # Soft delete settings
    soft_delete_collections: List[str] = Field(
        default_factory=lambda: ["videos", "users"],
        description="Collections supporting soft delete",
    )
    permanent_delete_grace_days: int = Field(
        30, description="Days after soft delete before permanent delete", ge=0
    )
    log_permanent_deletes: bool = Field(
        True, description="Record permanent deletes in the operation log"
    )

    # Cleanup settings
    cleanup_date_fields: Dict[str, str] = Field(
        default_factory=lambda: {"videos": "startTime"},
        description="Date field checked per flat collection",
    )
    slot_collections: Dict[str, SlotCollectionConfig] = Field(
        default_factory=lambda: {"eventSlots": SlotCollectionConfig()},
        description="Collections holding dated slots",
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is valid."""
        valid_environments = {"development", "staging", "production", "test"}
        if v.lower() not in valid_environments:
            raise ValueError(
                f"Environment must be one of: {', '.join(sorted(valid_environments))}"
            )
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Ensure the log level is one logging understands."""
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Unknown log level: {v}")
        return level

    @field_validator("max_list_limit")
    @classmethod
    def validate_max_list_limit(cls, v: int) -> int:
        """Cap page sizes to keep responses bounded."""
        if v > 1000:
            raise ValueError("max_list_limit must not exceed 1000")
        return v

    def is_slot_collection(self, collection: str) -> bool:
        return collection in self.slot_collections

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary."""
        return self.model_dump(mode="json")

    @classmethod
    def from_env(cls, prefix: str = "RECOVERY_") -> "RecoveryConfig":
        """
        Load configuration from environment variables.

        Args:
            prefix: Prefix for environment variables

        Returns:
            Configuration instance
        """
        import os

        config_dict: Dict[str, Any] = {}

        for field_name, field_info in cls.model_fields.items():
            env_var = f"{prefix}{field_name.upper()}"
            if env_var not in os.environ:
                continue
            value = os.environ[env_var]

            field_type = field_info.annotation

            # Handle Optional types
            if get_origin(field_type) is Union:
                args = get_args(field_type)
                field_type = next((arg for arg in args if arg is not type(None)), str)

            try:
                if field_type == bool:
                    config_dict[field_name] = value.lower() in (
                        "true",
                        "1",
                        "yes",
                        "on",
                    )
                elif field_type == int:
                    config_dict[field_name] = int(value)
                elif field_type == float:
                    config_dict[field_name] = float(value)
                elif get_origin(field_type) is list:
                    config_dict[field_name] = [
                        item.strip() for item in value.split(",") if item.strip()
                    ]
                elif get_origin(field_type) is dict and get_args(field_type) == (
                    str,
                    str,
                ):
                    # key=value pairs, e.g. "videos=startTime,talks=heldAt"
                    pairs = [item.split("=", 1) for item in value.split(",") if item]
                    config_dict[field_name] = {
                        k.strip(): v.strip() for k, v in pairs
                    }
                elif isinstance(field_type, type) and issubclass(field_type, Enum):
                    config_dict[field_name] = field_type(value)
                else:
                    config_dict[field_name] = value
            except (ValueError, TypeError):
                # Let pydantic report the raw value
                config_dict[field_name] = value

        return cls.model_validate(config_dict)


# Global configuration instance
_config: Optional[RecoveryConfig] = None


def get_config() -> RecoveryConfig:
    """
    Get the global configuration instance.

    Returns:
        Global configuration
    """
    global _config

    if _config is None:
        _config = RecoveryConfig.from_env()

    return _config


def set_config(config: Optional[RecoveryConfig]) -> None:
    """
    Set the global configuration instance.

    Args:
        config: Configuration to set, or None to reload from the environment
    """
    global _config
    _config = config


def configure(**kwargs: Any) -> RecoveryConfig:
    """
    Configure the toolkit with keyword arguments.

    Args:
        **kwargs: Configuration parameters

    Returns:
        Updated configuration
    """
    global _config

    if _config is None:
        _config = RecoveryConfig(**kwargs)
    else:
        config_dict = _config.model_dump()
        config_dict.update(kwargs)
        _config = RecoveryConfig(**config_dict)

    return _config
