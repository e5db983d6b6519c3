import importlib

import pubsub_session
import pytest

# TESTS #####################


@pytest.mark.parametrize('name', pubsub_session.__all__)
def test_root_exports_resolve(name):
    assert getattr(pubsub_session, name) is not None


def test_unknown_attribute():
    with pytest.raises(AttributeError):
        pubsub_session.not_a_real_attribute  # noqa: B018


def test_dir_lists_public_api():
    assert sorted(dir(pubsub_session)) == sorted(pubsub_session.__all__)


def test_internal_modules_import():
    for module in (
        'pubsub_session._internal.change_guard',
        'pubsub_session._internal.connection_controller',
        'pubsub_session._internal.dispatcher',
        'pubsub_session._internal.pending',
        'pubsub_session._internal.subscription_registry',
        'pubsub_session._internal.transport.mqtt_transport',
    ):
        importlib.import_module(module)
