import os, sys, tempfile, shutil, json

BASE = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if BASE not in sys.path:
    sys.path.insert(0, BASE)

import pwab_core  # type: ignore


def _project(tmp):
    root = os.path.join(tmp, 'app')
    os.makedirs(os.path.join(root, 'blog'))
    for rel in ('index.html', os.path.join('blog', 'index.html')):
        with open(os.path.join(root, rel), 'w', encoding='utf-8') as f:
            f.write('<html><head></head><body></body></html>')
    return root


def test_report_json(monkeypatch):
    monkeypatch.delenv('SOURCE_MAP', raising=False)
    tmp = tempfile.mkdtemp(prefix='pwab_report_')
    try:
        root = _project(tmp)
        code = pwab_core.headless_main(['--root', root, '--report', 'json', '--verify-after'])
        assert code == 0
        path = os.path.join(root, 'dist', 'build_report.json')
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        assert data['success'] is True and data['exit_code'] == 0
        assert data['entries'] == {'blog/index': 'blog/index.html', 'index': 'index.html'}
        assert data['verification']['status'] == 'passed'
        assert 'total_seconds' in data['timings']
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_report_markdown_on_entry_error(monkeypatch):
    monkeypatch.delenv('SOURCE_MAP', raising=False)
    tmp = tempfile.mkdtemp(prefix='pwab_report_')
    try:
        root = _project(tmp)
        with open(os.path.join(root, 'blog', '.html'), 'w', encoding='utf-8') as f:
            f.write('')
        code = pwab_core.headless_main(['--root', root, '--report', 'md'])
        assert code == pwab_core.EXIT_ENTRY_ERROR
        with open(os.path.join(root, 'dist', 'build_report.md'), 'r', encoding='utf-8') as f:
            text = f.read()
        assert text.startswith('# Build Report')
        assert 'Exit Code: 12' in text
        assert '## Error' in text and 'Error parsing path' in text
    finally:
        shutil.rmtree(tmp, ignore_errors=True)
