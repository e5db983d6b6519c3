"""Connection configuration.

A ConnectionConfig is created once per session and never mutated; a new configuration implies a new session.
"""

from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field, NonNegativeInt, PositiveInt, field_validator
from typing_extensions import Annotated, final


@final
class ConnectionConfig(BaseModel):
    """Everything needed to open a connection to a broker."""

    url: Annotated[str, Field(min_length=1)]
    """
    Broker URL, including its scheme (i.e. mqtt://localhost:1883, wss://broker.example.com/mqtt).
    """

    username: Optional[str] = None  # noqa: FA100 (Pydantic uses runtime annotations)
    """
    Username credentials for the broker (default: anonymous)
    """

    password: Optional[str] = None  # noqa: FA100 (Pydantic uses runtime annotations)
    """
    Password credentials for the broker (default: none)
    """

    reconnect_period: NonNegativeInt = 1000
    """
    Milliseconds between two reconnection attempts made by the transport. 0 disables automatic reconnection.

    (default: 1000)
    """

    clean: bool = True
    """
    Ask the broker for a clean session on connect (default: True)
    """

    connect_timeout: PositiveInt = 4000
    """
    Milliseconds to wait for the broker to accept a connection (default: 4000)
    """

    client_id: Optional[str] = None  # noqa: FA100 (Pydantic uses runtime annotations)
    """
    Client identifier presented to the broker. A random identifier is generated when omitted.
    """

    additional_options: Dict[str, Any] = Field(default_factory=dict)  # noqa: FA100 (Pydantic uses runtime annotations)
    """
    Transport-specific options, merged into the transport configuration as-is.
    """

    @field_validator('url')
    @classmethod
    def _url_has_scheme(cls, value: str) -> str:
        parts = urlsplit(value)
        if not parts.scheme or not parts.netloc:
            msg = f'broker url must look like <scheme>://<host>[:port][/path], got {value!r}'
            raise ValueError(msg)
        return value

    # pydantic config
    model_config = ConfigDict(frozen=True, revalidate_instances='always')
