"""
Completion provider interface and the OpenAI-compatible adapter.

A provider hands out conversations. Each call to ``Conversation.send_stream``
runs one model turn and yields ``StreamChunk`` objects until the turn ends.
The turn input is either the user's text or a ``FunctionResponse`` carrying
the result of an executed action.
"""
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Union

from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from devconsole.config import settings
from devconsole.models import ProposedAction

logger = logging.getLogger(__name__)


class StreamChunk(BaseModel):
    text: Optional[str] = None
    function_calls: List[ProposedAction] = Field(default_factory=list)


class FunctionResponse(BaseModel):
    name: str
    response: Dict[str, Any]


TurnInput = Union[str, FunctionResponse]


class Conversation(Protocol):
    def send_stream(self, turn: TurnInput) -> AsyncIterator[StreamChunk]:
        ...

    def abandon_call(self, note: str):
        """Give up on the last proposed call, e.g. because it was cancelled or failed"""
        ...


class CompletionProvider(Protocol):
    def start_conversation(self) -> Conversation:
        ...


def _asset_type(include_root: bool = False) -> Dict[str, Any]:
    values = ["plugin", "theme", "root"] if include_root else ["plugin", "theme"]
    return {"type": "string", "enum": values, "description": "The type of asset."}


_IDENTIFIER = {
    "type": "string",
    "description": 'Asset identifier, e.g. "hello-dolly/hello.php" for a plugin, '
                   '"twentytwentyfour" for a theme, or "root" for the installation root.',
}
_RELATIVE_PATH = {"type": "string", "description": "Path of the file relative to the asset's directory."}


def _fn(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "parameters": {"type": "object", "properties": properties, "required": required},
    }


FUNCTION_DECLARATIONS: List[Dict[str, Any]] = [
    _fn("list_assets", "List installed plugins or themes.",
        {"assetType": _asset_type()}, ["assetType"]),
    _fn("toggle_asset_status", "Activate or deactivate a plugin or theme.",
        {"assetType": _asset_type(), "assetIdentifier": _IDENTIFIER,
         "newStatus": {"type": "boolean", "description": "true to activate, false to deactivate."}},
        ["assetType", "assetIdentifier", "newStatus"]),
    _fn("delete_asset", "Delete a plugin or theme from the site.",
        {"assetType": _asset_type(), "assetIdentifier": _IDENTIFIER},
        ["assetType", "assetIdentifier"]),
    _fn("install_asset", "Install a new plugin or theme from a set of files.",
        {"assetType": _asset_type(),
         "assetName": {"type": "string", "description": "Folder name for the new asset."},
         "files": {"type": "array", "items": {
             "type": "object",
             "properties": {"name": {"type": "string"},
                            "content": {"type": "string", "description": "Base64 encoded file body."}},
             "required": ["name", "content"]}}},
        ["assetType", "assetName", "files"]),
    _fn("get_asset_files", "List every file within a plugin, theme or the installation root.",
        {"assetIdentifier": _IDENTIFIER, "assetType": _asset_type(True)},
        ["assetIdentifier", "assetType"]),
    _fn("read_file_content", "Read a file within an asset.",
        {"assetIdentifier": _IDENTIFIER, "assetType": _asset_type(True), "relativePath": _RELATIVE_PATH},
        ["assetIdentifier", "assetType", "relativePath"]),
    _fn("write_file_content", "Write or overwrite a file within an asset. Use with extreme caution.",
        {"assetIdentifier": _IDENTIFIER, "assetType": _asset_type(True), "relativePath": _RELATIVE_PATH,
         "content": {"type": "string", "description": "The new content for the file."}},
        ["assetIdentifier", "assetType", "relativePath", "content"]),
    _fn("get_file_history", "List backups of a file, newest first.",
        {"assetIdentifier": _IDENTIFIER, "assetType": _asset_type(True), "relativePath": _RELATIVE_PATH},
        ["assetIdentifier", "assetType", "relativePath"]),
    _fn("restore_file", "Restore a file from one of its backups.",
        {"assetIdentifier": _IDENTIFIER, "assetType": _asset_type(True), "relativePath": _RELATIVE_PATH,
         "backupPath": {"type": "string", "description": "Backup path from get_file_history."}},
        ["assetIdentifier", "assetType", "relativePath", "backupPath"]),
    _fn("get_db_tables", "List all tables in the WordPress database.", {}, []),
    _fn("execute_arbitrary_db_query", "Run a read-only SELECT query against the database.",
        {"query": {"type": "string", "description": "A single SELECT statement."}}, ["query"]),
    _fn("execute_safe_db_query", "Run a predefined read-only query.",
        {"queryType": {"type": "string", "enum": ["get_options", "list_posts"]},
         "params": {"type": "object", "description": "optionNames, or postType/limit/offset."}},
        ["queryType"]),
    _fn("get_debug_log", "Read wp-content/debug.log.", {}, []),
    _fn("ping", "Check the connector is reachable and report its version.", {}, []),
    _fn("run_security_scan", "Run basic security checks: debug mode, default admin user, table prefix, file editing.", {}, []),
    _fn("create_site_backup", "Archive wp-content as a zip and return it base64 encoded.", {}, []),
    _fn("list_site_backups", "List site backup archives, newest first.", {}, []),
]


class OpenAIConversation:
    """Chat-completions conversation with tool calling, streamed"""

    def __init__(self, client: AsyncOpenAI, model: str, system_instruction: str):
        self.client = client
        self.model = model
        self.messages: List[Dict[str, Any]] = [{"role": "system", "content": system_instruction}]
        self.tools = [{"type": "function", "function": fn} for fn in FUNCTION_DECLARATIONS]
        self._open_call: Optional[Dict[str, Any]] = None

    def abandon_call(self, note: str):
        """Close the open call without a tool response, leaving note in its place"""
        if self._open_call is None:
            return
        for message in reversed(self.messages):
            if message.get("tool_calls"):
                message.pop("tool_calls")
                message["content"] = f"{message.get('content') or ''}\n({note})".strip()
                break
        self._open_call = None

    def _settle_open_call(self):
        # A call still open when the next user turn starts was never run
        if self._open_call is not None:
            self.abandon_call(f"Proposed action `{self._open_call['name']}` was not executed.")

    def _append_turn(self, turn: TurnInput):
        if isinstance(turn, FunctionResponse):
            if self._open_call is None:
                raise ValueError(f"No open call to answer for {turn.name}")
            self.messages.append({
                "role": "tool",
                "tool_call_id": self._open_call["id"],
                "content": json.dumps(turn.response, default=str),
            })
            self._open_call = None
        else:
            self._settle_open_call()
            self.messages.append({"role": "user", "content": turn})

    async def send_stream(self, turn: TurnInput) -> AsyncIterator[StreamChunk]:
        self._append_turn(turn)
        logger.debug("OpenAI call: model=%s messages=%d", self.model, len(self.messages))

        stream = await self.client.chat.completions.create(
            model=self.model,
            messages=self.messages,
            tools=self.tools,
            stream=True,
        )

        content_parts: List[str] = []
        tool_call_parts: Dict[int, Dict[str, str]] = {}
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                content_parts.append(delta.content)
                yield StreamChunk(text=delta.content)
            for tc in delta.tool_calls or []:
                entry = tool_call_parts.setdefault(tc.index, {"id": "", "name": "", "arguments": ""})
                if tc.id:
                    entry["id"] = tc.id
                if tc.function and tc.function.name:
                    entry["name"] += tc.function.name
                if tc.function and tc.function.arguments:
                    entry["arguments"] += tc.function.arguments

        calls = []
        for index in sorted(tool_call_parts):
            entry = tool_call_parts[index]
            try:
                args = json.loads(entry["arguments"] or "{}")
            except json.JSONDecodeError as e:
                raise ValueError(f"Malformed arguments for {entry['name']}: {e}") from e
            calls.append((entry, args))

        assistant: Dict[str, Any] = {"role": "assistant", "content": "".join(content_parts) or None}
        if calls:
            # Only the first call is ever executed, so only it is recorded.
            first, _ = calls[0]
            assistant["tool_calls"] = [{
                "id": first["id"],
                "type": "function",
                "function": {"name": first["name"], "arguments": first["arguments"] or "{}"},
            }]
            self._open_call = first
        self.messages.append(assistant)

        if calls:
            yield StreamChunk(function_calls=[ProposedAction(name=e["name"], args=a) for e, a in calls])


class OpenAIProvider:
    """
    Wrapper around the OpenAI Python SDK.
    Compatible with OpenAI, OpenRouter, Ollama, vLLM, etc.
    """

    def __init__(self, api_key: str = None, base_url: str = None, model: str = None,
                 system_instruction: str = None):
        self.model = model or settings.llm_model
        self.system_instruction = system_instruction or settings.system_instruction
        self._client = AsyncOpenAI(
            api_key=api_key or settings.llm_api_key,
            base_url=(base_url or settings.llm_base_url) or None,
        )

    def start_conversation(self) -> OpenAIConversation:
        return OpenAIConversation(self._client, self.model, self.system_instruction)
