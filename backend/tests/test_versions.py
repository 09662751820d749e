"""Tests for version relation detection."""

import pytest
from hypothesis import given, strategies as st

from plugin_console.plugins.versions import VersionRelation, clean_version, compare_versions


class TestCompareVersions:

    @pytest.mark.parametrize('new, current, expected', [
        ('1.10.0', '1.2.0', VersionRelation.upgrade),
        ('1.2.0', '1.10.0', VersionRelation.downgrade),
        ('2.0.0', '2.0.0', VersionRelation.same),
        ('2.0', '2.0.0', VersionRelation.same),
        ('v1.3.0', '1.2.9', VersionRelation.upgrade),
        ('1.2.0-SNAPSHOT', '1.2.0', VersionRelation.same),
        ('build 45', 'build 44', VersionRelation.upgrade),
        ('1.0.0_b7', '1.0.0_b9', VersionRelation.downgrade),
        ('latest', 'latest', VersionRelation.same),
        ('latest', 'stable', VersionRelation.unknown),
    ])
    def test_relations(self, new, current, expected):
        assert compare_versions(new, current) == expected

    def test_clean_version(self):
        assert clean_version('v2.1.0-beta') == '2.1.0'
        assert clean_version(' 3 ') == '3'
        assert clean_version(None) == ''

    @given(st.lists(st.integers(min_value=0, max_value=500), min_size=1, max_size=4),
           st.lists(st.integers(min_value=0, max_value=500), min_size=1, max_size=4))
    def test_antisymmetric(self, a, b):
        va, vb = '.'.join(map(str, a)), '.'.join(map(str, b))
        forward, backward = compare_versions(va, vb), compare_versions(vb, va)
        mirror = {
            VersionRelation.upgrade: VersionRelation.downgrade,
            VersionRelation.downgrade: VersionRelation.upgrade,
            VersionRelation.same: VersionRelation.same,
        }
        assert backward == mirror[forward]
