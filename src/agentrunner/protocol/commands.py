"""Outbound frames: the ``auth`` handshake and the gated commands."""

from __future__ import annotations

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class StartParams(BaseModel):
    """Run parameters, passed through to the execution engine untouched."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    task: str
    mode: str = "generate"
    model: str = ""
    source: str = ""
    publisher: str | None = None
    project_path: str = Field(default="", alias="projectPath")
    write_mode: str = Field(default="", alias="writeMode")
    project_id: str | None = Field(default=None, alias="projectId")
    region: str | None = None
    server_url: str | None = Field(default=None, alias="serverUrl")
    debug_prompt: bool = Field(default=False, alias="debugPrompt")
    no_approval: bool = Field(default=False, alias="noApproval")
    frontend: bool = False
    session_id: int | str | None = Field(default=None, alias="sessionId")

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


def encode(frame: dict[str, Any]) -> str:
    return json.dumps(frame)


def auth_frame(token: str) -> dict[str, Any]:
    return {"type": "auth", "token": token}


def run_command(params: StartParams) -> dict[str, Any]:
    return {"type": "run", "payload": params.to_wire()}


def stop_command() -> dict[str, Any]:
    return {"type": "stop"}


def stdin_command(data: str) -> dict[str, Any]:
    return {"type": "stdin", "payload": {"data": data}}


def chat_message_command(session_id: str | None, message: str, message_id: str) -> dict[str, Any]:
    return {
        "type": "chat_message",
        "payload": {"sessionId": session_id, "message": message, "messageId": message_id},
    }


def user_interrupt_command(message: str) -> dict[str, Any]:
    return {"type": "user_interrupt", "payload": {"message": message}}


def approval_response_command(
    approval_id: str, approved: bool, message: str | None = None
) -> dict[str, Any]:
    """Build an ``approval_response``; ``message`` is omitted when not given."""
    payload: dict[str, Any] = {"approvalId": approval_id, "approved": approved}
    if message is not None:
        payload["message"] = message
    return {"type": "approval_response", "payload": payload}
