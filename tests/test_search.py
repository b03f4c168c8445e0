"""Tests for unifimon.search."""

from __future__ import annotations

from unifimon.models import CLIENT, DEVICE, Client, Device
from unifimon.search import SORT_ASC, SORT_DESC, SORT_NONE, ListSort, SearchFilter

DEVICES = (
    Device(id="1", site_id="s", name="Office AP", model="U6-Pro", status="online",
           mac="aa:bb:cc:00:00:01", ip="192.168.1.10"),
    Device(id="2", site_id="s", name="Core Switch", model="USW-24", status="offline",
           mac="aa:bb:cc:00:00:02", ip="192.168.1.2"),
    Device(id="3", site_id="s", name="garage ap", model="U6-Lite", status="online",
           mac="de:ad:be:ef:00:03", ip="10.0.0.3"),
)


def _names(entities: tuple) -> list[str]:
    return [e.name for e in entities]


class TestSearchFilter:
    def test_empty_query_is_identity(self) -> None:
        search = SearchFilter()
        assert search.apply(DEVICES) == DEVICES
        search.set_query("")
        assert search.apply(DEVICES) == DEVICES

    def test_case_insensitive_name(self) -> None:
        search = SearchFilter()
        search.set_query("AP")
        assert _names(search.apply(DEVICES)) == ["Office AP", "garage ap"]

    def test_matches_ip_and_mac(self) -> None:
        search = SearchFilter()
        search.set_query("10.0.0")
        assert _names(search.apply(DEVICES)) == ["garage ap"]
        search.set_query("DE:AD")
        assert _names(search.apply(DEVICES)) == ["garage ap"]

    def test_preserves_order(self) -> None:
        search = SearchFilter()
        search.set_query("aa:bb")
        assert _names(search.apply(DEVICES)) == ["Office AP", "Core Switch"]

    def test_monotonic_narrowing(self) -> None:
        search = SearchFilter()
        previous = DEVICES
        for q in ("", "a", "a ", "a a", "a ap"):
            search.set_query(q)
            result = search.apply(DEVICES)
            assert all(e in previous for e in result)
            previous = result

    def test_typing_and_backspace(self) -> None:
        search = SearchFilter()
        for ch in "cor":
            search.append(ch)
        assert search.query == "cor"
        assert _names(search.apply(DEVICES)) == ["Core Switch"]
        search.backspace()
        assert search.query == "co"

    def test_clear_stops_editing(self) -> None:
        search = SearchFilter()
        search.editing = True
        search.set_query("x")
        search.clear()
        assert not search.active
        assert search.editing is False

    def test_no_match(self) -> None:
        search = SearchFilter()
        search.set_query("zzz")
        assert search.apply(DEVICES) == ()

    def test_clients_searchable(self) -> None:
        client = Client(id="c", site_id="s", name="phone", ip="10.1.1.1",
                        mac="11:22", medium="wireless")
        search = SearchFilter()
        search.set_query("11:2")
        assert search.apply([client]) == (client,)


class TestListSort:
    def test_cycle_order(self) -> None:
        sort = ListSort(DEVICE)
        assert [sort.cycle_order() for _ in range(3)] == [SORT_ASC, SORT_DESC, SORT_NONE]

    def test_none_keeps_order(self) -> None:
        assert ListSort(DEVICE).apply(DEVICES) == DEVICES

    def test_ascending_by_name_case_insensitive(self) -> None:
        sort = ListSort(DEVICE, order=SORT_ASC)
        assert _names(sort.apply(DEVICES)) == ["Core Switch", "garage ap", "Office AP"]

    def test_descending(self) -> None:
        sort = ListSort(DEVICE, order=SORT_DESC)
        assert _names(sort.apply(DEVICES)) == ["Office AP", "garage ap", "Core Switch"]

    def test_next_column_wraps(self) -> None:
        sort = ListSort(CLIENT)
        names = [sort.next_column() for _ in range(4)]
        assert names == ["ip", "mac", "medium", "name"]

    def test_sort_by_status(self) -> None:
        sort = ListSort(DEVICE, column=4, order=SORT_ASC)
        assert sort.column_name == "status"
        assert [d.status for d in sort.apply(DEVICES)] == ["offline", "online", "online"]
