import json

import pytest

from knx_sync.exceptions import ImportUnavailable, ParseFailure
from knx_sync.models import AccessFlags
from knx_sync.models.project import ComObjectRef, Connector, GroupAddressNode, GroupRange
from knx_sync.parsers import knx_parser
from knx_sync.parsers.flag_aggregator import (
    aggregate_com_object, build_flags_by_group_address_id, flags_for,
)
from knx_sync.parsers.knx_parser import (
    KNXParser, dpt_to_project_type_id, project_from_json,
)
from knx_sync.parsers.tree_walker import walk_group_ranges, walk_trees


def load(test_data_dir, name):
    with open(test_data_dir / name, encoding='utf8') as f:
        return json.load(f)


class TestProjectFromJson:

    def test_ets_tree_layout(self, test_data_dir):
        project = project_from_json(load(test_data_dir, 'ets_tree_project.json'))
        assert project.name == 'Demo house'
        assert project.group_address_style == 'ThreeLevel'
        assert project.count_group_addresses() == 4
        device = project.areas[0].lines[0].devices[0]
        assert device.address == '1.1.1'
        assert [cor.active for cor in device.com_object_refs] == [True, True, False]

    def test_receive_reference_spelling_variant(self, test_data_dir):
        """Receive targets using ``__groupAddressRedID`` resolve like the regular field."""
        project = project_from_json(load(test_data_dir, 'ets_tree_project.json'))
        switch = project.areas[0].lines[0].devices[0].com_object_refs[0]
        assert switch.connectors[0].send == ['GA-1']
        assert switch.connectors[0].receive == ['GA-2']

    def test_receive_target_without_reference_is_skipped(self, test_data_dir):
        project = project_from_json(load(test_data_dir, 'ets_tree_project.json'))
        status = project.areas[0].lines[0].devices[0].com_object_refs[1]
        assert status.connectors[0].receive == []

    def test_knxproject_layout(self, test_data_dir):
        project = project_from_json(load(test_data_dir, 'knxproject_two_level.json'))
        assert project.group_address_style == 'TwoLevel'
        devices = project.areas[0].lines[0].devices
        assert [d.address for d in devices] == ['1.1.1', '1.1.2']
        status = devices[1].com_object_refs[0]
        assert status.connectors[0].send == ['GA-2']
        assert status.connectors[0].receive == ['GA-1']

    def test_knxproject_loose_addresses_get_own_tree(self, test_data_dir):
        project = project_from_json(load(test_data_dir, 'knxproject_two_level.json'))
        assert len(project.group_address_trees) == 2
        loose = project.group_address_trees[1].group_ranges[0]
        assert loose.name is None
        assert [ga.id for ga in loose.group_addresses] == ['GA-3']

    def test_unknown_layout(self):
        with pytest.raises(ParseFailure):
            project_from_json({'something': 'else'})

    def test_not_an_object(self):
        with pytest.raises(ParseFailure):
            project_from_json([1, 2, 3])

    def test_dpt_to_project_type_id(self):
        assert dpt_to_project_type_id({'main': 9, 'sub': 1}) == 'DPST-9-1'
        assert dpt_to_project_type_id({'main': 5, 'sub': None}) == 'DPT-5'
        assert dpt_to_project_type_id(None) is None


class TestKNXParser:

    def test_parse_json_file(self, test_data_dir):
        project = KNXParser(str(test_data_dir / 'ets_tree_project.json')).parse()
        assert project.count_group_addresses() == 4

    def test_invalid_json(self, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('{"groupAddresses": [', encoding='utf8')
        with pytest.raises(ParseFailure):
            KNXParser(str(path)).parse()

    def test_knxproj_without_library(self, tmp_path, monkeypatch):
        monkeypatch.setattr(knx_parser, 'XKNXProj', None)
        path = tmp_path / 'project.knxproj'
        path.write_bytes(b'PK')
        assert not knx_parser.parser_available()
        with pytest.raises(ImportUnavailable):
            KNXParser(str(path)).parse()

    def test_knxproj_uses_xknxproject(self, tmp_path, monkeypatch, test_data_dir):
        calls = {}
        parsed = load(test_data_dir, 'knxproject_two_level.json')

        class StubXKNXProj:
            def __init__(self, path, password=None, language=None):
                calls.update(path=path, password=password, language=language)

            def parse(self):
                return parsed

        monkeypatch.setattr(knx_parser, 'XKNXProj', StubXKNXProj)
        path = tmp_path / 'project.knxproj'
        path.write_bytes(b'PK')

        project = KNXParser(str(path), password='secret', language='de-DE').parse()

        assert calls['password'] == 'secret'
        assert calls['language'] == 'de-DE'
        assert project.group_address_style == 'TwoLevel'


class TestTreeWalker:

    def _ga(self, ga_id):
        return GroupAddressNode(id=ga_id, address=0, name=ga_id)

    def test_nested_ranges_before_own_addresses(self):
        ranges = [
            GroupRange(name='Lighting', group_ranges=[
                GroupRange(name='Ground floor', group_addresses=[self._ga('a'), self._ga('b')]),
                GroupRange(name='First floor', group_addresses=[self._ga('c')]),
            ], group_addresses=[self._ga('d')]),
            GroupRange(name='Blinds', group_addresses=[self._ga('e')]),
        ]
        out = walk_group_ranges(ranges, [], [])
        assert [item.group_address.id for item in out] == ['a', 'b', 'c', 'd', 'e']
        assert out[0].group_range_path == ['Lighting', 'Ground floor']
        assert out[3].group_range_path == ['Lighting']
        assert out[4].group_range_path == ['Blinds']

    def test_unnamed_range_adds_no_segment(self):
        ranges = [GroupRange(name=None, group_ranges=[
            GroupRange(name='Inner', group_addresses=[self._ga('a')]),
        ])]
        out = walk_group_ranges(ranges, [], [])
        assert out[0].group_range_path == ['Inner']

    def test_trees_are_concatenated_in_order(self, test_data_dir):
        project = project_from_json(load(test_data_dir, 'knxproject_two_level.json'))
        out = walk_trees(project.group_address_trees)
        assert [item.group_address.id for item in out] == ['GA-1', 'GA-2', 'GA-3']

    def test_deterministic(self, test_data_dir):
        doc = load(test_data_dir, 'ets_tree_project.json')
        first = walk_trees(project_from_json(doc).group_address_trees)
        second = walk_trees(project_from_json(doc).group_address_trees)
        assert first == second


class TestFlagAggregator:

    def test_flags_are_ored(self, test_data_dir):
        project = project_from_json(load(test_data_dir, 'ets_tree_project.json'))
        flags = build_flags_by_group_address_id(project)
        assert flags['GA-1'] == AccessFlags(read=False, write=True, transmit=False, update=False)
        assert flags['GA-2'] == AccessFlags(read=True, write=True, transmit=True, update=False)

    def test_inactive_reference_contributes_nothing(self, test_data_dir):
        project = project_from_json(load(test_data_dir, 'ets_tree_project.json'))
        flags = build_flags_by_group_address_id(project)
        assert 'GA-3' not in flags

    def test_unreferenced_default(self):
        assert flags_for({}, 'GA-9') == AccessFlags(read=False, write=False, transmit=True, update=False)

    def test_flags_for_returns_copy(self):
        stored = AccessFlags(read=True)
        found = flags_for({'GA-1': stored}, 'GA-1')
        found.write = True
        assert stored.write is False

    def test_aggregation_is_monotone(self):
        """Adding a reference never clears a flag that is already set."""
        agg = {}
        first = ComObjectRef(flags=AccessFlags(read=True, transmit=True),
                             connectors=[Connector(send=['GA-1'])])
        second = ComObjectRef(flags=AccessFlags(write=True),
                              connectors=[Connector(receive=['GA-1'])])
        aggregate_com_object(agg, first)
        before = agg['GA-1'].copy()
        aggregate_com_object(agg, second)
        after = agg['GA-1']
        for field in ('read', 'write', 'transmit', 'update'):
            assert getattr(after, field) >= getattr(before, field)
        assert after == AccessFlags(read=True, write=True, transmit=True, update=False)

    def test_inactive_aggregate_is_noop(self):
        agg = {'GA-1': AccessFlags(read=True)}
        aggregate_com_object(agg, ComObjectRef(
            flags=AccessFlags(write=True, update=True), active=False,
            connectors=[Connector(send=['GA-1', 'GA-2'])],
        ))
        assert agg == {'GA-1': AccessFlags(read=True)}

    def test_two_level_scenario(self, test_data_dir):
        project = project_from_json(load(test_data_dir, 'knxproject_two_level.json'))
        flags = build_flags_by_group_address_id(project)
        assert flags['GA-1'].read is True
        assert flags['GA-1'].write is True
        assert flags['GA-2'] == AccessFlags(read=True, write=False, transmit=True, update=False)
