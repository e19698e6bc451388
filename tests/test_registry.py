import json

import pytest
from pydantic import ValidationError

from constants import VALID_ROLES
from exceptions import UnknownChannelError
from registry import RoomRegistry, load_registry


def test_default_rooms(registry):
    assert registry.names() == ["admin", "orders", "kitchen", "tables", "inventory", "customers", "all_staff"]
    assert registry.describe("tables").allowed_roles == frozenset({"owner", "admin", "waiter"})
    assert registry.describe("nope") is None


def test_channels_for_role(registry):
    assert {c.name for c in registry.channels_for_role("waiter")} == {"orders", "tables", "all_staff"}
    assert {c.name for c in registry.channels_for_role("customer")} == {"customers"}
    assert len(registry.channels_for_role("owner")) == 6
    assert registry.channels_for_role("ghost") == frozenset()


def test_channel_names_for_role_keep_registry_order(registry):
    assert registry.channel_names_for_role("kitchen") == ["orders", "kitchen", "inventory", "all_staff"]


def test_require_unknown(registry):
    with pytest.raises(UnknownChannelError):
        registry.require("bar")


def test_load_from_file(tmp_path):
    path = tmp_path / "rooms.json"
    path.write_text(json.dumps({"rooms": [
        {"name": "bar", "allowed_roles": ["waiter", "owner"], "description": "Bar orders"},
        {"name": "delivery", "allowed_roles": ["admin"]},
    ]}))
    registry = load_registry(str(path))
    assert registry.names() == ["bar", "delivery"]
    assert registry.describe("delivery").description == ""


@pytest.mark.parametrize("rooms", [
    [{"name": "bar", "allowed_roles": ["waiter"]}, {"name": "bar", "allowed_roles": ["owner"]}],
    [{"name": "bar", "allowed_roles": []}],
    [{"name": "bar", "allowed_roles": ["bartender"]}],
    [{"name": "role:waiter", "allowed_roles": ["waiter"]}],
    [{"name": "user:1", "allowed_roles": ["waiter"]}],
    [{"name": "", "allowed_roles": ["waiter"]}],
])
def test_invalid_config_rejected(rooms):
    with pytest.raises(ValidationError):
        RoomRegistry.from_config({"rooms": rooms})


def test_every_role_known_to_registry(registry):
    for role in VALID_ROLES:
        assert registry.channels_for_role(role), role
