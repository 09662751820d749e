"""Tests for reading plugin.yml out of plugin archives."""

import io
import zipfile

import pytest

from plugin_console.core.errors import InvalidArchive, MissingManifest
from plugin_console.plugins.metadata import MAX_MANIFEST_BYTES, parse_plugin_archive, parse_plugin_file
from tests.plugin_jars import build_jar


class TestParsePluginArchive:

    def test_basic_fields(self):
        meta = parse_plugin_archive(build_jar('Essentials', '2.20.1'))
        assert meta.name == 'Essentials'
        assert meta.version == '2.20.1'
        assert meta.main == 'com.example.Main'

    def test_version_stays_a_string(self):
        """'1.10' must not collapse into the float 1.1."""
        meta = parse_plugin_archive(build_jar('Foo', '1.10'))
        assert meta.version == '1.10'
        meta = parse_plugin_archive(build_jar('Foo', '2'))
        assert meta.version == '2'

    def test_authors_and_dependencies(self):
        manifest = (
            'name: Shop\n'
            'version: 3.0.0\n'
            'description: A shop\n'
            'author: alice\n'
            'authors: [bob, alice]\n'
            'api-version: "1.20"\n'
            'depend: Vault\n'
            'softdepend: [PlaceholderAPI, WorldGuard]\n'
            'website: https://example.org\n'
        )
        meta = parse_plugin_archive(build_jar(manifest=manifest))
        assert meta.authors == ['alice', 'bob']
        assert meta.api_version == '1.20'
        assert meta.depends == ['Vault']
        assert meta.soft_depends == ['PlaceholderAPI', 'WorldGuard']
        assert meta.description == 'A shop'
        assert meta.website == 'https://example.org'

    def test_paper_manifest_fallback(self):
        meta = parse_plugin_archive(build_jar('PaperOnly', '0.3', manifest_entry='paper-plugin.yml'))
        assert meta.name == 'PaperOnly'

    def test_null_spellings_are_absent(self):
        manifest = 'name: X\nversion: 1.0\ndescription: ~\nwebsite: null\n'
        meta = parse_plugin_archive(build_jar(manifest=manifest))
        assert meta.description == ''
        assert meta.website is None

    def test_not_a_zip(self):
        with pytest.raises(InvalidArchive):
            parse_plugin_archive(b'<html>rate limited</html>')

    def test_empty_bytes(self):
        with pytest.raises(InvalidArchive):
            parse_plugin_archive(b'')

    def test_missing_manifest(self):
        with pytest.raises(MissingManifest):
            parse_plugin_archive(build_jar(manifest_entry=''))

    @pytest.mark.parametrize('manifest', [
        'version: 1.0\n',
        'name: Foo\n',
        'name: [unclosed\n',
        '- just\n- a list\n',
    ])
    def test_broken_manifests(self, manifest):
        with pytest.raises(MissingManifest):
            parse_plugin_archive(build_jar(manifest=manifest))

    def test_description_whitespace_is_trimmed(self):
        meta = parse_plugin_archive(build_jar(manifest='name: X\nversion: 1.0\ndescription: "  padded  "\n'))
        assert meta.description == 'padded'

    def test_non_scalar_fields_are_ignored(self):
        manifest = 'name: X\nversion: 1.0\nmain: [a, b]\nwebsite: {url: x}\n'
        meta = parse_plugin_archive(build_jar(manifest=manifest))
        assert meta.main is None
        assert meta.website is None


def _alias_bomb(levels: int = 9) -> str:
    lines = ['name: Bomb', 'version: 1.0', 'l0: &l0 [lol, lol, lol, lol, lol, lol, lol, lol, lol, lol]']
    for i in range(1, levels):
        refs = ', '.join([f'*l{i - 1}'] * 10)
        lines.append(f'l{i}: &l{i} [{refs}]')
    return '\n'.join(lines) + '\n'


def _flip_entry_bytes(data: bytes, entry: str, count: int = 20) -> bytes:
    """Corrupt the compressed payload of ``entry`` in place."""
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        info = zf.getinfo(entry)
    buf = bytearray(data)
    offset = info.header_offset
    name_len = int.from_bytes(buf[offset + 26:offset + 28], 'little')
    extra_len = int.from_bytes(buf[offset + 28:offset + 30], 'little')
    start = offset + 30 + name_len + extra_len
    for i in range(start, start + min(count, info.compress_size)):
        buf[i] ^= 0xA5
    return bytes(buf)


class TestHostileArchives:
    """Archives come from the internet; every failure must surface as a typed error."""

    @pytest.mark.timeout(10)
    def test_nested_aliases_are_rejected_quickly(self):
        with pytest.raises(MissingManifest, match='aliases'):
            parse_plugin_archive(build_jar(manifest=_alias_bomb()))

    def test_corrupt_deflate_stream(self):
        manifest = 'name: Deflated\nversion: 1.0.0\ndescription: ' + 'a plugin that compresses well ' * 40 + '\n'
        data = build_jar(manifest=manifest, compression=zipfile.ZIP_DEFLATED)
        assert parse_plugin_archive(data).name == 'Deflated'
        with pytest.raises(InvalidArchive):
            parse_plugin_archive(_flip_entry_bytes(data, 'plugin.yml'))

    def test_oversized_manifest(self):
        manifest = 'name: Big\nversion: 1.0\ndescription: ' + 'x' * (MAX_MANIFEST_BYTES + 1) + '\n'
        data = build_jar(manifest=manifest, compression=zipfile.ZIP_DEFLATED)
        with pytest.raises(InvalidArchive, match='larger than'):
            parse_plugin_archive(data)


class TestFileHelpers:

    def test_parse_plugin_file(self, tmp_path):
        p = tmp_path / 'a.jar'
        p.write_bytes(build_jar('A', '1.0'))
        assert parse_plugin_file(p).name == 'A'

    def test_invalid_file(self, tmp_path):
        p = tmp_path / 'b.jar'
        p.write_bytes(b'nope')
        with pytest.raises(InvalidArchive):
            parse_plugin_file(p)
        with pytest.raises(InvalidArchive):
            parse_plugin_file(tmp_path / 'missing.jar')
