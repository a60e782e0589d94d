"""Invoice history configuration."""

import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

ENV_PREFIX = "INVOICE_HISTORY_"


class HistoryConfig(BaseModel):
    """
    Invoice history configuration.

    Defaults match the browser build: ten invoices kept under the
    "invoiceHistory" key, rupees when no currency was entered.
    """

    # Retention
    storage_key: str = Field(
        default="invoiceHistory",
        description="Storage key holding the serialized history",
        min_length=1,
    )
    history_limit: int = Field(
        default=10,
        description="Maximum number of snapshots kept (oldest evicted first)",
        ge=1,
        le=100,
    )

    # Notifications
    updated_event: str = Field(
        default="invoice-history-updated",
        description="Name carried by the change notification on every write",
        min_length=1,
    )

    # Analytics
    default_currency: str = Field(
        default="INR",
        description="Currency assumed when an invoice has none (history view and CSV export)",
        min_length=1,
    )

    # Backend
    backend: Literal["memory", "file", "valkey"] = Field(
        default="file",
        description=(
            "Where the history is persisted. The file backend only sees other "
            "processes' writes when the application calls FileStorage.poll()"
        ),
    )
    storage_dir: Path = Field(
        default_factory=lambda: Path.home() / ".invoice-history",
        description="Directory for the file backend",
    )
    valkey_url: str | None = Field(
        default=None,
        description="Connection URL for the valkey backend (e.g. redis://localhost:6379/0)",
    )
    valkey_channel: str = Field(
        default="invoice-history:changes",
        description="Pub/sub channel used for cross-process invalidation",
        min_length=1,
    )

    @classmethod
    def from_env(cls, env_file: str | Path | None = None) -> "HistoryConfig":
        """
        Build configuration from INVOICE_HISTORY_* environment variables.

        A .env file (env_file, or one found from the working directory) is
        loaded first; variables already set in the environment win.

        Raises:
            pydantic.ValidationError: If a variable holds an invalid value
        """
        load_dotenv(env_file, override=False)

        values = {}
        for name in cls.model_fields:
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None and raw != "":
                values[name] = raw
        return cls.model_validate(values)
