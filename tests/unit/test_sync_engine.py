import asyncio
from datetime import date, datetime

import pytest

from knx_sync.exporters.state_exporter import StateExporter
from knx_sync.models import AccessFlags, ImportEntry
from knx_sync.runtime.mapping_store import RuntimeMappingStore
from knx_sync.runtime.sync_engine import LinkState, SyncEngine, to_store_value

SWITCH = 'ga.Lighting.1_1_1'
DIMMER_STATUS = 'ga.Lighting.1_1_2'
PASSIVE = 'ga.Lighting.1_1_3'
CLOCK = 'ga.Clock.1_1_4'


@pytest.fixture
def mapped_store(store):
    exporter = StateExporter(store)
    exporter.ensure_info_objects()
    exporter.export_entries([
        ImportEntry(id=SWITCH, name='Switch', ga='1/1/1', dpt='1.001',
                    flags=AccessFlags(write=True, transmit=True)),
        ImportEntry(id=DIMMER_STATUS, name='Dimmer status', ga='1/1/2', dpt='5.001',
                    flags=AccessFlags(read=True, transmit=True)),
        ImportEntry(id=PASSIVE, name='Passive', ga='1/1/3', dpt='9.001',
                    flags=AccessFlags.unreferenced()),
        ImportEntry(id=CLOCK, name='Clock', ga='1/1/4', dpt='19.001',
                    flags=AccessFlags(read=True, transmit=True)),
    ])
    return store


@pytest.fixture
def make_engine(mapped_store, bus, config):
    def _make(**overrides):
        cfg = dict(config)
        cfg.update(overrides)
        mapping = RuntimeMappingStore()
        mapping.rebuild(mapped_store)
        return SyncEngine(mapped_store, mapping, bus, cfg)
    return _make


def connect(engine, bus):
    assert engine.start() is True
    bus.connection.handlers.connected()


def drain(engine):
    while asyncio.run(engine.tx_queue.tick()):
        pass


class TestLifecycle:

    def test_connect_binds_every_record(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        assert engine.link_state is LinkState.CONNECTED
        assert sorted(engine.bindings) == sorted([SWITCH, DIMMER_STATUS, PASSIVE, CLOCK])
        assert bus.connection.datapoints['1/1/4'].dpt == '19.001'
        assert mapped_store.get_state('info.connection').val is True

    def test_connection_settings_passed_to_transport(self, make_engine, bus):
        connect(make_engine(gateway_port=3700), bus)
        assert bus.connection.settings.gateway_ip == '192.168.1.10'
        assert bus.connection.settings.gateway_port == 3700

    def test_no_gateway_configured(self, make_engine, bus):
        engine = make_engine(gateway_ip='')
        assert engine.start() is False
        assert bus.connections == []
        assert engine.link_state is LinkState.DISCONNECTED

    def test_transport_init_failure(self, make_engine):
        def factory(settings):
            raise OSError('no route to host')

        engine = make_engine()
        engine.connection_factory = factory
        assert engine.connect() is False
        assert engine.link_state is LinkState.DISCONNECTED

    def test_binding_failure_skips_one_datapoint(self, make_engine, bus):
        bus.fail_gas.add('1/1/2')
        engine = make_engine()
        connect(engine, bus)
        assert DIMMER_STATUS not in engine.bindings
        assert len(engine.bindings) == 3

    def test_disconnect_releases_bindings(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        switch_dp = bus.connection.datapoints['1/1/1']

        bus.connection.handlers.disconnected()

        assert engine.link_state is LinkState.DISCONNECTED
        assert engine.bindings == {}
        assert switch_dp.callbacks == []
        assert mapped_store.get_state('info.connection').val is False

    def test_transport_error_counts_as_disconnect(self, make_engine, bus):
        engine = make_engine()
        connect(engine, bus)
        bus.connection.handlers.error(RuntimeError('tunnel lost'))
        assert engine.connected is False
        assert engine.bindings == {}

    def test_reconnect_rebinds_fresh_datapoints(self, make_engine, bus):
        engine = make_engine()
        connect(engine, bus)
        old_dp = bus.connection.datapoints['1/1/1']

        bus.connection.handlers.disconnected()
        bus.connection.handlers.connected()

        new_dp = bus.connection.datapoints['1/1/1']
        assert new_dp is not old_dp
        assert old_dp.callbacks == []
        assert len(new_dp.callbacks) == 1
        assert engine.bindings[SWITCH].datapoint is new_dp

    def test_rebind_while_connected_releases_old_subscriptions(self, make_engine, bus):
        engine = make_engine()
        connect(engine, bus)
        old_dp = bus.connection.datapoints['1/1/1']
        engine.create_datapoints()
        assert old_dp.callbacks == []
        assert len(engine.bindings) == 4

    def test_stop(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        connection = bus.connection
        switch_dp = connection.datapoints['1/1/1']

        engine.stop()

        assert connection.disconnected is True
        assert engine.bindings == {}
        assert switch_dp.callbacks == []
        assert engine.connection is None
        mapped_store.set_state(SWITCH, True)
        assert len(engine.tx_queue) == 0

    def test_notifications_after_stop_are_ignored(self, make_engine, bus, mapped_store):
        engine = make_engine()

        async def scenario():
            connect(engine, bus)
            handlers = bus.connection.handlers
            switch_dp = bus.connection.datapoints['1/1/1']
            engine.stop()

            handlers.connected()
            handlers.error(RuntimeError('late'))
            handlers.disconnected()
            switch_dp.emit(None, True)
            return engine.tx_queue.running

        assert asyncio.run(scenario()) is False
        assert engine.link_state is LinkState.DISCONNECTED
        assert engine.bindings == {}
        assert mapped_store.get_state('info.connection').val is False
        assert mapped_store.get_state(SWITCH) is None

    def test_restart_after_stop(self, make_engine, bus):
        engine = make_engine()
        connect(engine, bus)
        engine.stop()
        connect(engine, bus)
        assert engine.connected is True
        assert len(engine.bindings) == 4

    def test_read_on_start(self, make_engine, bus):
        engine = make_engine(read_on_start=True)
        connect(engine, bus)
        assert sorted(engine.tx_queue.pending()) == ['read 1/1/2', 'read 1/1/4']
        drain(engine)
        assert bus.connection.datapoints['1/1/2'].reads == 1
        assert bus.connection.datapoints['1/1/1'].reads == 0


class TestBusToStore:

    def test_value_written_acknowledged(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        bus.connection.datapoints['1/1/2'].emit(None, 128)
        state = mapped_store.get_state(DIMMER_STATUS)
        assert state.val == 128
        assert state.ack is True
        assert len(engine.tx_queue) == 0

    def test_dates_become_iso_strings(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        bus.connection.datapoints['1/1/4'].emit(None, datetime(2024, 5, 1, 12, 30))
        assert mapped_store.get_state(CLOCK).val == '2024-05-01T12:30:00'

    def test_store_failure_is_dropped(self, make_engine, bus, mapped_store, monkeypatch):
        engine = make_engine()
        connect(engine, bus)

        def broken(state_id, val, ack=False):
            raise OSError('read-only file system')

        monkeypatch.setattr(mapped_store, 'set_state', broken)
        bus.connection.datapoints['1/1/2'].emit(1, 2)
        bus.connection.datapoints['1/1/2'].emit(2, 3)
        assert engine.connected is True
        assert len(engine.bindings) == 4

    def test_to_store_value(self):
        assert to_store_value(date(2024, 5, 1)) == '2024-05-01'
        assert to_store_value(21.5) == 21.5


class TestStoreToBus:

    def test_acknowledged_change_is_ignored(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        mapped_store.set_state(SWITCH, True, True)
        assert len(engine.tx_queue) == 0

    def test_write(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        mapped_store.set_state(SWITCH, 'on')
        assert engine.tx_queue.pending() == ['write 1/1/1']
        drain(engine)
        assert bus.connection.datapoints['1/1/1'].writes == [True]

    def test_read_only_address_triggers_read(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        mapped_store.set_state(DIMMER_STATUS, 50)
        assert engine.tx_queue.pending() == ['read 1/1/2']
        drain(engine)
        assert bus.connection.datapoints['1/1/2'].reads == 1
        assert bus.connection.datapoints['1/1/2'].writes == []

    def test_neither_flag_is_dropped(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        mapped_store.set_state(PASSIVE, 1)
        assert len(engine.tx_queue) == 0

    def test_outside_namespace_is_ignored(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        engine.on_state_change('info.connection', mapped_store.set_state('info.connection', False))
        assert len(engine.tx_queue) == 0

    def test_unknown_id_is_dropped(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        mapped_store.set_state('ga.Lighting.9_9_9', 1)
        assert len(engine.tx_queue) == 0

    def test_not_bound_is_dropped(self, make_engine, bus, mapped_store):
        bus.fail_gas.add('1/1/1')
        engine = make_engine()
        connect(engine, bus)
        mapped_store.set_state(SWITCH, True)
        assert len(engine.tx_queue) == 0

    def test_write_then_read_keep_order(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        mapped_store.set_state(SWITCH, 1)
        mapped_store.set_state(DIMMER_STATUS, 1)
        mapped_store.set_state(SWITCH, 0)
        assert engine.tx_queue.pending() == ['write 1/1/1', 'read 1/1/2', 'write 1/1/1']
        drain(engine)
        assert bus.connection.datapoints['1/1/1'].writes == [True, False]

    def test_date_value_coerced(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        engine.mapping.get(CLOCK).flags.write = True
        mapped_store.set_state(CLOCK, '2024-05-01T12:30:00')
        drain(engine)
        assert bus.connection.datapoints['1/1/4'].writes == [datetime(2024, 5, 1, 12, 30)]

    @pytest.mark.parametrize("state_id,value", [(SWITCH, True), (DIMMER_STATUS, 7), (PASSIVE, 3)])
    def test_ack_on_write(self, make_engine, bus, mapped_store, state_id, value):
        engine = make_engine(ack_on_write=True)
        connect(engine, bus)
        mapped_store.set_state(state_id, value)
        state = mapped_store.get_state(state_id)
        assert state.val == value
        assert state.ack is True

    def test_no_ack_by_default(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        mapped_store.set_state(SWITCH, True)
        assert mapped_store.get_state(SWITCH).ack is False

    def test_failing_job_does_not_block_queue(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)

        def broken(value):
            raise RuntimeError('gateway busy')

        bus.connection.datapoints['1/1/1'].write = broken
        mapped_store.set_state(SWITCH, True)
        mapped_store.set_state(DIMMER_STATUS, 1)
        drain(engine)
        assert engine.tx_queue.failed == 1
        assert bus.connection.datapoints['1/1/2'].reads == 1

    def test_jobs_survive_reconnect(self, make_engine, bus, mapped_store):
        engine = make_engine()
        connect(engine, bus)
        for value in (1, 0, 1):
            mapped_store.set_state(SWITCH, value)
        switch_dp = bus.connection.datapoints['1/1/1']

        bus.connection.handlers.disconnected()
        assert asyncio.run(engine.tx_queue.tick()) is False
        assert len(engine.tx_queue) == 3

        bus.connection.handlers.connected()
        drain(engine)
        assert switch_dp.writes == [True, False, True]
        assert len(engine.tx_queue) == 0
