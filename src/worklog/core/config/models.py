"""
Pydantic models for worklog configuration.

Project configuration lives in `.worklog/config.yaml` with camelCase keys;
snake_case spellings are accepted too.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from worklog.core.items.jsonl import DEFAULT_DATA_FILE
from worklog.core.sync.models import DEFAULT_REF, DEFAULT_REMOTE, GitTarget


class WorklogConfig(BaseModel):
    """
    Main worklog configuration model.

    Example:
        >>> config = WorklogConfig(syncRemote="upstream")
        >>> config.sync_target.describe()
        'upstream refs/worklog/data'
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    project_name: str = Field(default="", alias="projectName")
    prefix: str = Field(
        default="WI",
        min_length=1,
        description="Prefix for work item ids (e.g. WI-0001)",
    )
    auto_export: bool = Field(
        default=True,
        alias="autoExport",
        description="Rewrite the data file after every local change",
    )
    sync_remote: str = Field(default=DEFAULT_REMOTE, alias="syncRemote", min_length=1)
    sync_ref: str = Field(
        default=DEFAULT_REF,
        alias="syncRef",
        min_length=1,
        description="Ref holding snapshots; a bare name is a branch",
    )
    auto_sync: bool = Field(
        default=False,
        alias="autoSync",
        description="Sync in the background shortly after local changes",
    )
    auto_sync_delay: float = Field(
        default=2.0,
        alias="autoSyncDelay",
        gt=0,
        description="Seconds of quiet before a background sync runs",
    )
    sync_max_retries: int = Field(default=3, alias="syncMaxRetries", ge=1)
    data_file: str = Field(
        default=DEFAULT_DATA_FILE,
        alias="dataFile",
        description="Canonical data file, relative to the project root",
    )

    @model_validator(mode="before")
    @classmethod
    def accept_legacy_sync_branch(cls, data: Any) -> Any:
        """Older configs name the ref `syncBranch`."""
        if isinstance(data, dict) and "syncBranch" in data:
            data = dict(data)
            legacy = data.pop("syncBranch")
            if "syncRef" not in data and "sync_ref" not in data:
                data["syncRef"] = legacy
        return data

    @property
    def sync_target(self) -> GitTarget:
        return GitTarget(remote=self.sync_remote, ref=self.sync_ref)
