"""Data models"""
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from pydantic import BaseModel, ConfigDict, Field
import uuid

RiskTier = Literal["low", "medium", "high"]
SessionState = Literal["idle", "streaming", "awaiting_confirmation", "executing"]


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------

class ProposedAction(BaseModel):
    """Action (tool call) proposed by the model"""
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class PendingAction(ProposedAction):
    """Proposed action held by the confirmation gate"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    risk: RiskTier
    created_at: datetime = Field(default_factory=_now)


class TextPart(BaseModel):
    kind: Literal["text"] = "text"
    text: str = ""


class ProposedActionPart(BaseModel):
    kind: Literal["proposed_action"] = "proposed_action"
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ActionResultPart(BaseModel):
    kind: Literal["action_result"] = "action_result"
    name: str
    result: Dict[str, Any] = Field(default_factory=dict)


Part = Annotated[Union[TextPart, ProposedActionPart, ActionResultPart], Field(discriminator="kind")]


class Message(BaseModel):
    """Chat message; the in-progress model message is mutated until frozen"""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    role: Literal["user", "model"]
    parts: List[Part] = Field(default_factory=list)
    frozen: bool = False

    @property
    def text(self) -> str:
        return "".join(p.text for p in self.parts if isinstance(p, TextPart))


class QueuedPrompt(BaseModel):
    """User prompt waiting for the session to become idle"""
    text: str
    seq: int


class SessionSnapshot(BaseModel):
    id: str
    state: SessionState
    busy: bool
    auto_execute: bool
    messages: List[Message]
    pending_action: Optional[PendingAction] = None
    queue: List[QueuedPrompt] = Field(default_factory=list)


class LogEntry(BaseModel):
    """Action log entry"""
    action_id: str
    action: str
    args: Dict[str, Any]
    risk: RiskTier
    outcome: Literal["executed", "rejected", "failed", "cancelled"]
    result: Optional[Any] = None
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)
    session_id: str


# ---------------------------------------------------------------------------
# Sandbox
# ---------------------------------------------------------------------------

class AssetReference(BaseModel):
    """Asset whose directory bounds a file operation"""
    type: Literal["plugin", "theme", "root"]
    identifier: str


class BackupRecord(BaseModel):
    """Snapshot of a file taken right before it was overwritten"""
    original_path: str
    backup_path: str
    stamp: int
    timestamp: datetime

    def to_payload(self) -> Dict[str, Any]:
        return {"path": self.backup_path, "timestamp": self.stamp,
                "createdAt": self.timestamp.isoformat()}


class ActionRequest(BaseModel):
    """Wire request for one approved action"""
    action: str
    payload: Dict[str, Any] = Field(default_factory=dict)


class ActionResponse(BaseModel):
    """Wire response for one action"""
    success: bool
    data: Optional[Any] = None
    message: Optional[str] = None
    code: Optional[str] = None


# Per-action arguments. Field names follow the wire's camelCase through aliases.

class _Args(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class _AssetFileArgs(_Args):
    asset_identifier: str = Field(alias="assetIdentifier", min_length=1)
    asset_type: Literal["plugin", "theme", "root"] = Field(alias="assetType")

    @property
    def asset(self) -> AssetReference:
        if self.asset_identifier == "root" or self.asset_type == "root":
            return AssetReference(type="root", identifier="root")
        return AssetReference(type=self.asset_type, identifier=self.asset_identifier)


class EmptyArgs(_Args):
    pass


class ListAssetsArgs(_Args):
    asset_type: Literal["plugin", "theme"] = Field(alias="assetType")


class ToggleAssetStatusArgs(_Args):
    asset_type: Literal["plugin", "theme"] = Field(alias="assetType")
    asset_identifier: str = Field(alias="assetIdentifier", min_length=1)
    new_status: bool = Field(alias="newStatus")


class DeleteAssetArgs(_Args):
    asset_type: Literal["plugin", "theme"] = Field(alias="assetType")
    asset_identifier: str = Field(alias="assetIdentifier", min_length=1)


class FileEntry(BaseModel):
    name: str = Field(min_length=1)
    content: str  # base64


class InstallAssetArgs(_Args):
    asset_type: Literal["plugin", "theme"] = Field(alias="assetType")
    asset_name: str = Field(alias="assetName", min_length=1)
    files: List[FileEntry] = Field(min_length=1)


class GetAssetFilesArgs(_AssetFileArgs):
    pass


class ReadFileContentArgs(_AssetFileArgs):
    relative_path: str = Field(alias="relativePath", min_length=1)


class WriteFileContentArgs(_AssetFileArgs):
    relative_path: str = Field(alias="relativePath", min_length=1)
    content: str


class GetFileHistoryArgs(_AssetFileArgs):
    relative_path: str = Field(alias="relativePath", min_length=1)


class RestoreFileArgs(_AssetFileArgs):
    relative_path: str = Field(alias="relativePath", min_length=1)
    backup_path: str = Field(alias="backupPath", min_length=1)


class ExecuteArbitraryDbQueryArgs(_Args):
    query: str


class ExecuteSafeDbQueryArgs(_Args):
    query_type: str = Field(alias="queryType")
    params: Dict[str, Any] = Field(default_factory=dict)


ACTION_ARGS: Dict[str, type] = {
    "ping": EmptyArgs,
    "list_assets": ListAssetsArgs,
    "toggle_asset_status": ToggleAssetStatusArgs,
    "delete_asset": DeleteAssetArgs,
    "install_asset": InstallAssetArgs,
    "get_asset_files": GetAssetFilesArgs,
    "read_file_content": ReadFileContentArgs,
    "write_file_content": WriteFileContentArgs,
    "get_file_history": GetFileHistoryArgs,
    "restore_file": RestoreFileArgs,
    "get_db_tables": EmptyArgs,
    "execute_arbitrary_db_query": ExecuteArbitraryDbQueryArgs,
    "execute_safe_db_query": ExecuteSafeDbQueryArgs,
    "get_debug_log": EmptyArgs,
    "run_security_scan": EmptyArgs,
    "create_site_backup": EmptyArgs,
    "list_site_backups": EmptyArgs,
}


# ---------------------------------------------------------------------------
# HTTP request bodies
# ---------------------------------------------------------------------------

class SessionStartRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    auto_execute: Optional[bool] = Field(default=None, alias="autoExecute")

class PromptRequest(BaseModel):
    text: str

class AutoExecuteRequest(BaseModel):
    enabled: bool

class QueueTailRequest(BaseModel):
    text: str
