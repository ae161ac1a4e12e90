import pytest

from lachesis.event_hash import (
    EventHash,
    ZERO_EVENT_HASH,
    get_event_name,
    get_node_name,
    hash_of,
    hashes_to_str,
    set_event_name,
    set_node_name,
    uint32_bytes,
)


def _make(epoch, lamport, tail=b"\x00" * 24):
    return EventHash(uint32_bytes(epoch) + uint32_bytes(lamport) + tail)


def test_uint32_bytes_is_big_endian():
    assert uint32_bytes(1) == b"\x00\x00\x00\x01"
    assert int.from_bytes(uint32_bytes(0xDEADBEEF), "big") == 0xDEADBEEF


@pytest.mark.parametrize("value", [-1, 1 << 32])
def test_uint32_bytes_out_of_range(value):
    with pytest.raises(ValueError):
        uint32_bytes(value)


def test_wrong_length_rejected():
    with pytest.raises(ValueError):
        EventHash(b"\x01\x02")


def test_zero_hash():
    assert ZERO_EVENT_HASH.is_zero()
    assert EventHash() == ZERO_EVENT_HASH
    assert not _make(1, 0).is_zero()


def test_from_raw_pads_left():
    h = EventHash.from_raw(b"\x05")
    assert int.from_bytes(h, "big") == 5
    assert len(h) == 32


def test_from_raw_crops_left():
    h = EventHash.from_raw(b"\xff" + bytes(32))
    assert h.is_zero()


def test_from_hex_round_trip():
    h = hash_of(b"round trip")
    assert EventHash.from_hex("0x" + bytes(h).hex()) == h
    assert EventHash.from_hex(bytes(h).hex()) == h


def test_from_hex_odd_length():
    assert int.from_bytes(EventHash.from_hex("0xabc"), "big") == 0xABC


def test_epoch_and_lamport():
    h = _make(7, 9)
    assert h.epoch() == 7
    assert h.lamport() == 9


def test_short_id_without_name():
    h = _make(11, 12, b"\xab\xcd\xef" + bytes(21))
    assert h.short_id(3) == "11:12:abcdef"
    assert str(h) == h.short_id(3)


def test_full_id_covers_all_id_bytes():
    tail = bytes(range(1, 25))
    h = _make(3, 4, tail)
    assert h.full_id() == "3:4:" + tail.hex()


def test_registered_event_name_wins():
    h = hash_of(b"named event")
    set_event_name(h, "a1_1")
    assert get_event_name(h) == "a1_1"
    assert h.short_id(3) == "a1_1"
    assert str(h) == "a1_1"


def test_unknown_event_name_is_empty():
    assert get_event_name(hash_of(b"never named")) == ""


def test_node_names():
    set_node_name(424242, "nodeQ")
    assert get_node_name(424242) == "nodeQ"
    assert get_node_name(424243) == ""


def test_hash_of_concatenates_parts():
    assert hash_of(b"a", b"b") == hash_of(b"ab")
    assert hash_of() == EventHash.from_hex(
        "e3b0c44298fc1c149afbf4c8996fb92427ae41e4649b934ca495991b7852b855"
    )


def test_hashes_to_str():
    a = hash_of(b"first")
    b = hash_of(b"second")
    set_event_name(a, "x1")
    set_event_name(b, "y2")
    assert hashes_to_str([a, b]) == "[x1, y2]"
    assert hashes_to_str([]) == "[]"


def test_hash_usable_as_key():
    h = hash_of(b"key")
    table = {h: 1}
    assert table[EventHash(bytes(h))] == 1