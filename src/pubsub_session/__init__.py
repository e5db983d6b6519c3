"""The root module contains the intended public API of pubsub-session.

Users should not need to import anything outside of the root.
"""

from importlib import import_module
from typing import TYPE_CHECKING

# import everything eagerly for IDEs/LSPs
if TYPE_CHECKING:
    from .app_lifecycle import SignalHandler, default_session_lifecycle_loop
    from .config import ConnectionConfig
    from .core_definitions import (
        HISTORY_CAPACITY,
        ChangeKind,
        ConnectionState,
        InboundMessage,
        OperationKind,
        PublishOptions,
    )
    from .exceptions import (
        DisconnectedError,
        NotReadyError,
        PubSubSessionError,
        TransportError,
    )
    from .session import PubSubSession
    from .version import __version__, version_info, version_string

__all__ = (
    'HISTORY_CAPACITY',
    'ChangeKind',
    'ConnectionConfig',
    'ConnectionState',
    'DisconnectedError',
    'InboundMessage',
    'NotReadyError',
    'OperationKind',
    'PubSubSession',
    'PubSubSessionError',
    'PublishOptions',
    'SignalHandler',
    'TransportError',
    '__version__',
    'default_session_lifecycle_loop',
    'version_info',
    'version_string',
)

# PEP 562 stuff: do lazy imports for people who just want to import from the top-level module

__lazy_imports = {
    'HISTORY_CAPACITY': '.core_definitions',
    'ChangeKind': '.core_definitions',
    'ConnectionConfig': '.config',
    'ConnectionState': '.core_definitions',
    'DisconnectedError': '.exceptions',
    'InboundMessage': '.core_definitions',
    'NotReadyError': '.exceptions',
    'OperationKind': '.core_definitions',
    'PubSubSession': '.session',
    'PubSubSessionError': '.exceptions',
    'PublishOptions': '.core_definitions',
    'SignalHandler': '.app_lifecycle',
    'TransportError': '.exceptions',
    '__version__': '.version',
    'default_session_lifecycle_loop': '.app_lifecycle',
    'version_info': '.version',
    'version_string': '.version',
}


def __getattr__(attr_name: str) -> object:
    attr_module = __lazy_imports.get(attr_name)
    if attr_module:
        module = import_module(attr_module, package=__spec__.parent)
        return getattr(module, attr_name)

    msg = f'module {__name__!r} has no attribute {attr_name!r}'
    raise AttributeError(msg)


def __dir__() -> list[str]:
    return list(__all__)
