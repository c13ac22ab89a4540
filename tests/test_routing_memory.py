import threading

from conftest import pane
from turnbridge.models import TmuxPaneAddress
from turnbridge.routing_memory import RoutingMemory


def test_slots_start_empty_and_are_independent():
    memory = RoutingMemory()
    assert memory.last_routed() is None
    assert memory.last_notification_source() is None

    memory.set_last_routed(pane("%1", "a:0.0"))
    assert memory.last_notification_source() is None

    memory.set_last_notification_source(pane("%2", "b:0.0"))
    assert memory.last_routed().target_id == "%1"
    assert memory.last_notification_source().target_id == "%2"


def test_last_write_wins():
    memory = RoutingMemory()
    memory.set_last_routed(pane("%1", "a:0.0"))
    memory.set_last_routed(pane("%2", "b:0.0"))

    assert memory.last_routed().target_id == "%2"


def test_refresh_updates_label_only_for_matching_target():
    memory = RoutingMemory()
    memory.set_last_routed(pane("%1", "old:0.0"))
    memory.set_last_notification_source(pane("%2", "b:0.0"))

    memory.refresh(TmuxPaneAddress("%1", "renamed:0.0"))

    assert memory.last_routed().label == "renamed:0.0"
    assert memory.last_notification_source().label == "b:0.0"


def test_refresh_never_fills_empty_slot():
    memory = RoutingMemory()
    memory.refresh(pane("%1", "a:0.0"))

    assert memory.last_routed() is None
    assert memory.last_notification_source() is None


def test_snapshot_and_clear():
    memory = RoutingMemory()
    memory.set_last_routed(pane("%1", "a:0.0"))

    assert memory.snapshot() == {
        "last_routed_agent": {"transport": "tmux", "target_id": "%1", "label": "a:0.0"},
        "last_notification_source_agent": None,
    }

    memory.clear()
    assert memory.snapshot() == {"last_routed_agent": None, "last_notification_source_agent": None}


def test_concurrent_writers_leave_a_valid_value():
    memory = RoutingMemory()
    addresses = [pane(f"%{i}", f"s{i}:0.0") for i in range(20)]

    threads = [threading.Thread(target=memory.set_last_routed, args=(address,)) for address in addresses]
    threads += [threading.Thread(target=memory.set_last_notification_source, args=(address,)) for address in addresses]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert memory.last_routed() in addresses
    assert memory.last_notification_source() in addresses


def test_address_identity_ignores_label():
    assert pane("%1", "a").same_target(pane("%1", "b"))
    assert not pane("%1", "a").same_target(pane("%2", "a"))
    assert not pane("%1", "a").same_target(None)
    assert TmuxPaneAddress("%7", "x").pane_id == "%7"
