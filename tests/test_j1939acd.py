import pytest

from cantools_lite.j1939acd import AddressTable, main, read_cache, write_cache
from cantools_lite.j1939addr import J1939_IDLE_ADDR


def _used(table):
    return [sa for sa, slot in enumerate(table.slots) if slot.used]


def test_parse_range_full_range_counts_all_usable():
    table = AddressTable()
    assert table.parse_range("0-253") == J1939_IDLE_ADDR
    assert len(_used(table)) == J1939_IDLE_ADDR


def test_parse_range_count_matches_marked_slots():
    table = AddressTable()
    count = table.parse_range("0x80-0xfd")
    assert count == len(_used(table))
    assert _used(table)[0] == 0x80


def test_parse_range_single_and_list():
    table = AddressTable()
    assert table.parse_range("5;7") == 2
    assert _used(table) == [5, 7]


def test_parse_range_reversed_bounds_take_start():
    table = AddressTable()
    assert table.parse_range("10-5") == 1
    assert _used(table) == [10]


def test_parse_range_stops_before_idle_address():
    table = AddressTable()
    assert table.parse_range("250-300") == 4
    assert max(_used(table)) < J1939_IDLE_ADDR


@pytest.mark.parametrize("text", ["x", "5-x"])
def test_parse_range_errors(text):
    with pytest.raises(ValueError):
        AddressTable().parse_range(text)


def test_parse_range_empty():
    assert AddressTable().parse_range("") == 0


def test_lookup_name():
    table = AddressTable()
    table.slots[0x42].name = 0x1234
    assert table.lookup_name(0x1234) == 0x42
    assert table.lookup_name(0x9999) == J1939_IDLE_ADDR


def test_choose_keeps_free_preferred_address():
    table = AddressTable()
    table.parse_range("0x80-0x82")
    assert table.choose_new_sa(10, 0x81) == 0x81


def test_choose_first_empty_when_no_preference():
    table = AddressTable()
    table.parse_range("0x80-0x82")
    assert table.choose_new_sa(10, J1939_IDLE_ADDR) == 0x80


def test_choose_skips_address_held_by_stronger_name():
    table = AddressTable()
    table.parse_range("0x80-0x82")
    table.slots[0x80].name = 5
    assert table.choose_new_sa(10, 0x80) == 0x81


def test_choose_contests_weaker_name():
    table = AddressTable()
    table.parse_range("0x80-0x81")
    table.slots[0x80].name = 50
    table.slots[0x81].name = 60
    assert table.choose_new_sa(10, J1939_IDLE_ADDR) == 0x80


def test_choose_nothing_left():
    table = AddressTable()
    table.parse_range("0x80-0x81")
    table.slots[0x80].name = 1
    table.slots[0x81].name = 2
    assert table.choose_new_sa(10, 0x80) == J1939_IDLE_ADDR


def test_dump_status():
    table = AddressTable()
    table.parse_range("0x80-0x81")
    table.slots[0x81].name = 5
    assert table.dump_status(0x80) == "80: * -\n81: + 0000000000000005\n"


def test_cache_round_trip(tmp_path):
    path = tmp_path / "node.jacd"
    write_cache(str(path), 0x80)
    text = path.read_text()
    assert text.startswith("# saved on ")
    assert text.splitlines()[-1] == "0x80"
    assert read_cache(str(path)) == 0x80


def test_read_cache_missing_file(tmp_path):
    assert read_cache(str(tmp_path / "absent")) is None


def test_read_cache_skips_comments_and_out_of_range(tmp_path):
    path = tmp_path / "cache"
    path.write_text("# 0x10\nfoo\n300\n")
    assert read_cache(str(path)) is None
    path.write_text("# comment\n\n  0x10\n")
    assert read_cache(str(path)) == 0x10


def test_read_cache_accepts_idle_address(tmp_path):
    path = tmp_path / "cache"
    path.write_text(f"{J1939_IDLE_ADDR}\n")
    assert read_cache(str(path)) == J1939_IDLE_ADDR


def test_main_bad_range(capsys):
    assert main(["-r", "x", "11"]) == 1
    assert "parsing range" in capsys.readouterr().err


def test_main_empty_range(capsys):
    assert main(["-r", "300-400", "11"]) == 1
    assert "no addresses in range" in capsys.readouterr().err


def test_main_missing_name(capsys):
    assert main(["-r", "0x80"]) == 1
    assert "bad arguments" in capsys.readouterr().err


def test_main_help_prefix(capsys):
    assert main(["-?"]) == 1
    assert "address claiming daemon" in capsys.readouterr().err