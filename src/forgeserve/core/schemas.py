"""
Core data schemas for ForgeServe

HMR messages are a tagged union discriminated by their ``type`` field and
travel over the websocket as JSON objects.
"""

import time
from dataclasses import dataclass, field
from typing import Annotated, Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


def _now_ms() -> int:
    return int(time.time() * 1000)


class ConnectedMessage(BaseModel):
    """Sent once when a client channel opens"""
    type: Literal["connected"] = "connected"


class UpdateMessage(BaseModel):
    """Incremental update for a set of modules"""
    type: Literal["update"] = "update"
    module_ids: List[str] = Field(..., alias="moduleIds")
    timestamp: int = Field(default_factory=_now_ms)

    model_config = ConfigDict(populate_by_name=True)


class FullReloadMessage(BaseModel):
    """Instructs the client to reload the page"""
    type: Literal["full-reload"] = "full-reload"


class ErrorMessage(BaseModel):
    """Compilation error relayed to the client"""
    type: Literal["error"] = "error"
    payload: Dict[str, Any] = Field(default_factory=dict)


class PingMessage(BaseModel):
    type: Literal["ping"] = "ping"


class PongMessage(BaseModel):
    type: Literal["pong"] = "pong"


HmrMessage = Annotated[
    Union[
        ConnectedMessage,
        UpdateMessage,
        FullReloadMessage,
        ErrorMessage,
        PingMessage,
        PongMessage,
    ],
    Field(discriminator="type"),
]

_hmr_message_adapter = TypeAdapter(HmrMessage)


def encode_message(message: BaseModel) -> str:
    """Serialize an HMR message to its wire format"""
    return message.model_dump_json(by_alias=True)


def decode_message(raw: Union[str, bytes]) -> BaseModel:
    """
    Parse a wire payload into an HMR message.

    Raises:
        pydantic.ValidationError: If the payload is not a known message
    """
    return _hmr_message_adapter.validate_json(raw)


@dataclass
class UpdateResult:
    """Outcome of an incremental compiler update"""
    added: List[str] = field(default_factory=list)
    changed: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    # module id -> ids it depends on, discovered during the update
    dependencies: Dict[str, List[str]] = field(default_factory=dict)
    full_reload: bool = False

    @property
    def module_ids(self) -> List[str]:
        return [*self.added, *self.changed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": list(self.added),
            "changed": list(self.changed),
            "removed": list(self.removed),
            "fullReload": self.full_reload,
        }
