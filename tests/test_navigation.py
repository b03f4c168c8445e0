"""Tests for unifimon.navigation."""

from __future__ import annotations

import pytest

from unifimon.models import CLIENT, DEVICE, SITE
from unifimon.navigation import EntityDetail, EntityList, Navigator, SiteList, Stats


class TestStack:
    def test_initial_state(self) -> None:
        nav = Navigator()
        assert nav.stack == (SiteList(),)
        assert nav.site_id is None

    def test_select_back_and_switch_site(self) -> None:
        nav = Navigator()
        nav.select_site("s1")
        assert nav.stack == (SiteList(), EntityList(DEVICE, "s1"))
        nav.select_entity(DEVICE, "d1")
        assert nav.stack[-1] == EntityDetail(DEVICE, "d1", "s1")
        nav.back()
        assert nav.current == EntityList(DEVICE, "s1")
        nav.select_site("s2")
        assert nav.stack == (SiteList(), EntityList(DEVICE, "s2"))

    def test_site_change_from_detail_collapses(self) -> None:
        nav = Navigator()
        nav.select_site("s1")
        nav.select_entity(DEVICE, "d1")
        assert nav.select_site("s2") is True
        assert nav.depth == 2
        assert all(
            not isinstance(v, EntityDetail) or v.site_id == "s2" for v in nav.stack
        )

    def test_push_pop_law(self) -> None:
        nav = Navigator()
        nav.select_site("s1")
        before = nav.stack
        nav.push(Stats("s1"))
        nav.push(EntityDetail(CLIENT, "c1", "s1"))
        nav.push(EntityDetail(DEVICE, "d1", "s1"))
        for _ in range(3):
            assert nav.back()
        assert nav.stack == before

    def test_back_never_pops_root(self) -> None:
        nav = Navigator()
        assert nav.back() is False
        assert nav.stack == (SiteList(),)

    def test_push_outside_scope_rejected(self) -> None:
        nav = Navigator()
        nav.select_site("s1")
        with pytest.raises(ValueError):
            nav.push(EntityDetail(DEVICE, "d9", "s2"))

    def test_site_list_only_at_bottom(self) -> None:
        nav = Navigator()
        with pytest.raises(ValueError):
            nav.push(SiteList())

    def test_select_entity_requires_list(self) -> None:
        nav = Navigator()
        with pytest.raises(ValueError):
            nav.select_entity(DEVICE, "d1")


class TestCursorAndTabs:
    def test_cursor_wraps(self) -> None:
        nav = Navigator()
        assert nav.move_cursor(-1, 5) == 4
        assert nav.move_cursor(1, 5) == 0

    def test_cursor_restored_after_back(self) -> None:
        nav = Navigator()
        nav.select_site("s1")
        nav.move_cursor(3, 10)
        nav.select_entity(DEVICE, "d4")
        assert nav.cursor == 0
        nav.back()
        assert nav.cursor == 3

    def test_clamp_on_shrinking_list(self) -> None:
        nav = Navigator()
        nav.move_cursor(7, 10)
        assert nav.clamp_cursor(3) == 2
        assert nav.clamp_cursor(0) == 0

    def test_tabs_cycle(self) -> None:
        nav = Navigator()
        assert nav.cycle_tab(-1, 4) == 3
        assert nav.cycle_tab(1, 4) == 0


class TestListsAndStats:
    def test_show_list_switches_kind(self) -> None:
        nav = Navigator()
        nav.select_site("s1")
        assert nav.show_list(CLIENT)
        assert nav.current == EntityList(CLIENT, "s1")
        assert nav.depth == 2

    def test_remembered_kind_used_for_next_site(self) -> None:
        nav = Navigator()
        nav.show_list(CLIENT)
        nav.select_site("s1")
        assert nav.current == EntityList(CLIENT, "s1")

    def test_unknown_list_kind(self) -> None:
        with pytest.raises(ValueError):
            Navigator().show_list(SITE)

    def test_stats_needs_site(self) -> None:
        nav = Navigator()
        assert nav.open_stats() is False
        nav.select_site("s1")
        assert nav.open_stats() is True
        assert nav.current == Stats("s1")
        assert nav.open_stats() is False


class TestForgetEntity:
    def test_evicted_device_pops_detail(self) -> None:
        nav = Navigator()
        nav.select_site("s1")
        nav.select_entity(DEVICE, "d1")
        assert nav.forget_entity(DEVICE, "d1")
        assert nav.current == EntityList(DEVICE, "s1")

    def test_unrelated_entity_ignored(self) -> None:
        nav = Navigator()
        nav.select_site("s1")
        nav.select_entity(DEVICE, "d1")
        assert nav.forget_entity(CLIENT, "d1") is False
        assert nav.depth == 3

    def test_active_site_removed_clears_scope(self) -> None:
        nav = Navigator()
        nav.select_site("s1")
        nav.select_entity(DEVICE, "d1")
        assert nav.forget_entity(SITE, "s1")
        assert nav.stack == (SiteList(),)
        assert nav.site_id is None
