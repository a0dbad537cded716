"""
Browse / resolve state machine tests

Tests:
- browse events spawn pinned resolutions
- resolve results populate the store (uuid required)
- in-flight counting and completion
- removal and browse failure handling
"""

import random

import pytest

from fakes import key_for
from remote_dnssd.discovery.browser import SERVICE_TYPE, BrowseResolveMachine, SweepState
from remote_dnssd.discovery.types import BrowserEvent, IPVer


def browse_new(provider, *keys):
    for key in keys:
        provider.emit_browse(BrowserEvent.NEW, key)
    provider.run_pending()


class TestStart:

    def test_initial_state_is_idle(self, machine):
        assert machine.state == SweepState.IDLE
        assert not machine.started
        assert machine.resolvers_in_flight == 0

    def test_start_creates_browser_once(self, machine, provider):
        assert machine.start(IPVer.INET6)
        assert machine.start(IPVer.INET)
        assert provider.browse_calls == [(SERVICE_TYPE, IPVer.INET6)]
        assert machine.state == SweepState.BROWSING

    def test_start_failure_returns_false(self, machine, provider):
        provider.fail_browse = True
        assert machine.start(IPVer.UNSPEC) is False
        assert not machine.started
        assert machine.state == SweepState.IDLE


class TestResolution:

    def test_new_record_spawns_pinned_resolver(self, machine, provider):
        machine.start(IPVer.UNSPEC)
        v4 = key_for("server", IPVer.INET)
        v6 = key_for("server", IPVer.INET6)
        browse_new(provider, v4, v6)

        assert provider.resolve_calls == [(v4, IPVer.INET), (v6, IPVer.INET6)]
        assert machine.resolvers_in_flight == 2

    def test_found_record_is_stored(self, machine, provider):
        machine.start(IPVer.INET)
        browse_new(provider, key_for("server"))
        provider.found(provider.pending[0], "abc-123", address="192.168.1.10", port=5555)
        provider.run_pending()

        assert machine.store.server_urls() == {"abc-123": {IPVer.INET: "tcp://192.168.1.10:5555"}}
        assert machine.resolvers_in_flight == 0
        # resolver handle is released after its terminal event
        assert provider.pending[0] in provider.cancelled

    def test_ipv6_address_is_scoped_to_interface(self, machine, provider):
        machine.start(IPVer.INET6)
        browse_new(provider, key_for("server", IPVer.INET6))
        provider.found(provider.pending[0], "abc-123", address="fe80::10", port=5555, interface=3)
        provider.run_pending()

        assert machine.store.server_urls() == {"abc-123": {IPVer.INET6: "tcp://[fe80::10%3]:5555"}}

    def test_ipv6_without_known_interface_is_not_scoped(self, machine, provider):
        machine.start(IPVer.INET6)
        browse_new(provider, key_for("server", IPVer.INET6))
        provider.found(provider.pending[0], "abc-123", address="2001:db8::10", port=5555, interface=-1)
        provider.run_pending()

        assert machine.store.server_urls() == {"abc-123": {IPVer.INET6: "tcp://[2001:db8::10]:5555"}}

    @pytest.mark.parametrize("uuid", ["", None])
    def test_record_without_uuid_is_discarded(self, machine, provider, uuid):
        machine.start(IPVer.INET)
        browse_new(provider, key_for("server"))
        provider.found(provider.pending[0], uuid)
        provider.run_pending()

        assert machine.store.server_urls() == {}
        assert machine.resolvers_in_flight == 0

    def test_resolve_failure_decrements_and_discards(self, machine, provider):
        machine.start(IPVer.INET)
        browse_new(provider, key_for("a"), key_for("b"))
        provider.failed(provider.pending[0])
        provider.found(provider.pending[1], "b-uuid")
        provider.run_pending()

        assert machine.resolvers_in_flight == 0
        assert list(machine.store.server_urls()) == ["b-uuid"]
        # 同じパス内で再試行はしない
        assert len(provider.resolve_calls) == 2

    def test_resolver_spawn_failure_is_not_counted(self, machine, provider):
        machine.start(IPVer.INET)
        provider.fail_resolve = True
        browse_new(provider, key_for("a"))

        assert machine.resolvers_in_flight == 0
        provider.emit_browse(BrowserEvent.ALL_FOR_NOW)
        provider.run_pending()
        assert machine.complete


class TestCompletion:

    @pytest.mark.parametrize("event", [BrowserEvent.ALL_FOR_NOW, BrowserEvent.CACHE_EXHAUSTED])
    def test_flag_without_resolutions_completes(self, machine, provider, event):
        machine.start(IPVer.UNSPEC)
        provider.emit_browse(event)
        provider.run_pending()

        assert machine.browse_complete
        assert machine.state == SweepState.COMPLETE
        assert machine.wait_complete(timeout=0)

    def test_flag_with_outstanding_resolution_is_not_complete(self, machine, provider):
        machine.start(IPVer.INET)
        browse_new(provider, key_for("a"))
        provider.emit_browse(BrowserEvent.ALL_FOR_NOW)
        provider.run_pending()

        assert machine.browse_complete
        assert not machine.complete
        assert machine.state == SweepState.BROWSING
        assert machine.wait_complete(timeout=0.05) is False

        provider.found(provider.pending[0], "abc")
        provider.run_pending()
        assert machine.complete

    def test_browse_failure_forces_completion(self, machine, provider):
        machine.start(IPVer.INET)
        browse_new(provider, key_for("a"), key_for("b"))
        provider.emit_browse(BrowserEvent.FAILURE, error="network down")
        provider.run_pending()

        assert machine.complete
        assert machine.resolvers_in_flight == 0
        # stuck resolvers are cancelled through the provider
        assert all(r in provider.cancelled for r in provider.pending)

    def test_late_resolve_after_failure_is_ignored(self, machine, provider):
        machine.start(IPVer.INET)
        browse_new(provider, key_for("a"))
        provider.emit_browse(BrowserEvent.FAILURE)
        provider.run_pending()

        provider.found(provider.pending[0], "late")
        provider.run_pending()

        assert machine.store.server_urls() == {}
        assert machine.resolvers_in_flight == 0

    def test_completion_flag_never_resets(self, machine, provider):
        machine.start(IPVer.INET)
        provider.emit_browse(BrowserEvent.ALL_FOR_NOW)
        provider.run_pending()
        browse_new(provider, key_for("late-comer"))

        assert machine.browse_complete
        assert not machine.complete
        provider.found(provider.pending[0], "late")
        provider.run_pending()
        assert machine.complete


class TestRemoval:

    def test_remove_deletes_entry(self, machine, provider):
        machine.start(IPVer.INET)
        key = key_for("a")
        browse_new(provider, key)
        provider.found(provider.pending[0], "abc")
        provider.run_pending()

        provider.emit_browse(BrowserEvent.REMOVE, key)
        provider.run_pending()
        assert machine.store.server_urls() == {}
        # removal does not resolve
        assert len(provider.resolve_calls) == 1

    def test_remove_absent_key_is_noop(self, machine, provider):
        machine.start(IPVer.INET)
        browse_new(provider, key_for("a"))
        provider.found(provider.pending[0], "abc")
        provider.run_pending()

        provider.emit_browse(BrowserEvent.REMOVE, key_for("never-seen"))
        provider.run_pending()
        assert machine.store.server_urls() == {"abc": {IPVer.INET: "tcp://192.168.1.10:5555"}}


class TestReplay:
    """add/resolve/remove を任意の順で流しても、結果は「追加 - 削除」になる"""

    @pytest.mark.parametrize("seed", [1, 7, 42, 1234])
    def test_store_matches_added_minus_removed(self, provider, seed):
        rng = random.Random(seed)
        machine = BrowseResolveMachine(provider)
        machine.start(IPVer.INET)
        expected = {}
        names = [f"server-{i}" for i in range(6)]

        for step in range(60):
            name = rng.choice(names)
            key = key_for(name)
            if rng.random() < 0.65:
                uuid = f"{name}-v{step}"
                browse_new(provider, key)
                provider.found(provider.pending[-1], uuid, port=1000 + step)
                provider.run_pending()
                expected[key] = (uuid, f"tcp://192.168.1.10:{1000 + step}")
            else:
                provider.emit_browse(BrowserEvent.REMOVE, key)
                provider.run_pending()
                expected.pop(key, None)

        want = {uuid: {IPVer.INET: url} for uuid, url in expected.values()}
        assert machine.store.server_urls() == want
        assert len(machine.store) == len(expected)


class TestClose:

    def test_close_releases_browser_and_resolvers(self, machine, provider):
        machine.start(IPVer.INET)
        browse_new(provider, key_for("a"))
        machine.close()

        assert provider.pending[0] in provider.cancelled
        assert (("browser", SERVICE_TYPE, IPVer.INET)) in provider.cancelled
        assert not machine.started
        assert machine.complete
        # 閉じた後はブラウザがないので IDLE
        assert machine.state == SweepState.IDLE

    def test_abandon_without_browser_stays_idle(self, machine):
        machine.abandon()
        assert machine.complete
        assert machine.state == SweepState.IDLE
