import os, sys, tempfile, shutil
import pytest

BASE = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if BASE not in sys.path:
    sys.path.insert(0, BASE)

from pwab_core import copy_static_targets, parse_static_target, sourcemap_from_env, ConfigError, DEFAULT_STATIC_TARGETS


@pytest.fixture
def dirs():
    tmp = tempfile.mkdtemp(prefix='pwab_static_')
    root = os.path.join(tmp, 'app'); out = os.path.join(root, 'dist')
    os.makedirs(os.path.join(root, 'images', 'logo'))
    for rel in ('robots.txt', 'images/logo/a.png', 'images/logo/a.png.map', 'bundle.js.map'):
        with open(os.path.join(root, *rel.split('/')), 'w', encoding='utf-8') as f:
            f.write(rel)
    try:
        yield root, out
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_default_targets_copy_and_report_missing(dirs):
    root, out = dirs
    res = copy_static_targets(root, out, DEFAULT_STATIC_TARGETS)
    assert res['copied'] == ['robots.txt', 'images/']
    assert res['missing'] == ['favicon.ico']
    assert os.path.isfile(os.path.join(out, 'images', 'logo', 'a.png'))
    assert not os.path.exists(os.path.join(out, 'images', 'logo', 'a.png.map'))


def test_sourcemaps_kept_when_enabled(dirs):
    root, out = dirs
    res = copy_static_targets(root, out, [{'src': 'images/', 'dest': ''}, {'src': 'bundle.js.map', 'dest': ''}],
                              include_sourcemaps=True)
    assert os.path.isfile(os.path.join(out, 'images', 'logo', 'a.png.map'))
    assert 'bundle.js.map' in res['copied']


def test_sourcemap_file_target_skipped_by_default(dirs):
    root, out = dirs
    res = copy_static_targets(root, out, [{'src': 'bundle.js.map', 'dest': ''}])
    assert res == {'copied': [], 'missing': []}


def test_dest_subdirectory(dirs):
    root, out = dirs
    copy_static_targets(root, out, [parse_static_target('robots.txt:meta')])
    assert os.path.isfile(os.path.join(out, 'meta', 'robots.txt'))


def test_parse_static_target_forms():
    assert parse_static_target('images/') == {'src': 'images/', 'dest': ''}
    assert parse_static_target('images/:static') == {'src': 'images/', 'dest': 'static'}
    assert parse_static_target({'src': 'favicon.ico'}) == {'src': 'favicon.ico', 'dest': ''}
    with pytest.raises(ConfigError):
        parse_static_target('')
    with pytest.raises(ConfigError):
        parse_static_target({'dest': 'x'})


def test_sourcemap_env_flag():
    assert sourcemap_from_env({'SOURCE_MAP': 'true'}) is True
    assert sourcemap_from_env({'SOURCE_MAP': 'True'}) is False
    assert sourcemap_from_env({'SOURCE_MAP': '1'}) is False
    assert sourcemap_from_env({}) is False
