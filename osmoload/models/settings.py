"""
Validated runtime settings for the command line tool.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator

from osmoload.protocol.constants import ProtocolConstants


class LoaderSettings(BaseModel):
    """
    Connection and protocol settings for one invocation.

    Exactly one of socket_path or serial_url selects the broker; when
    serial_url is set it takes precedence.
    """

    model_config = ConfigDict(frozen=True)

    socket_path: str = Field(default=ProtocolConstants.DEFAULT_SOCKET_PATH, min_length=1)
    serial_url: str | None = Field(default=None, min_length=1)
    baudrate: int = Field(default=ProtocolConstants.DEFAULT_BAUD_RATE, gt=0)
    timeout: float = Field(default=ProtocolConstants.DEFAULT_QUERY_TIMEOUT, gt=0)
    max_chunk: int = Field(default=ProtocolConstants.MEM_MSG_MAX, ge=1, le=ProtocolConstants.MEM_MSG_MAX)
    print_requests: bool = False
    print_replies: bool = False

    @model_validator(mode="after")
    def check_endpoint(self) -> LoaderSettings:
        """Reject a serial URL that is only whitespace."""
        if self.serial_url is not None and not self.serial_url.strip():
            raise ValueError("serial_url must not be blank")
        return self

    @property
    def endpoint(self) -> str:
        """Broker endpoint in use."""
        return self.serial_url or self.socket_path
