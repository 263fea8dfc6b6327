import os, sys, tempfile, shutil, subprocess, json

BASE = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))
if BASE not in sys.path:
    sys.path.insert(0, BASE)
SCRIPT = os.path.join(BASE, 'pwab.py')
PY = sys.executable

import pwab_core  # type: ignore
import verify_precache  # type: ignore


def run(args, extra_env=None):
    env = os.environ.copy()
    env.pop('SOURCE_MAP', None)
    if extra_env:
        env.update(extra_env)
    return subprocess.run([PY, SCRIPT] + args, capture_output=True, text=True, env=env)


def _page(path):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        f.write('<html><head></head><body></body></html>')


def test_exit_code_duplicate_alias():
    tmp = tempfile.mkdtemp(prefix='pwab_ec_')
    try:
        proj = os.path.join(tmp, 'proj')
        _page(os.path.join(proj, 'app', 'index.html'))
        _page(os.path.join(proj, 'legacy', 'app', 'index.html'))
        r = run(['build', '--root', proj, '--json-logs'])
        assert r.returncode == 12, (r.returncode, r.stdout, r.stderr)
        events = [json.loads(l) for l in r.stdout.splitlines() if l.startswith('{')]
        err = [e for e in events if e.get('event') == 'entry_error']
        assert err and err[0]['kind'] == 'duplicate_alias'
        assert events[-1]['event'] == 'summary_final' and events[-1]['exit_code'] == 12
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_exit_code_duplicate_alias_dry_run():
    tmp = tempfile.mkdtemp(prefix='pwab_ec_')
    try:
        proj = os.path.join(tmp, 'proj')
        _page(os.path.join(proj, 'app', 'a', 'x.html'))
        _page(os.path.join(proj, 'other', 'app', 'a', 'x.html'))
        r = run(['--root', proj, '--dry-run'])
        assert r.returncode == 12, (r.returncode, r.stdout, r.stderr)
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_exit_code_missing_config():
    tmp = tempfile.mkdtemp(prefix='pwab_ec_')
    try:
        r = run(['--root', tmp, '--config', os.path.join(tmp, 'missing.json')])
        assert r.returncode == 16, (r.returncode, r.stdout, r.stderr)
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_exit_code_invalid_manifest_icon():
    tmp = tempfile.mkdtemp(prefix='pwab_ec_')
    try:
        root = os.path.join(tmp, 'app')
        _page(os.path.join(root, 'index.html'))
        cfg = os.path.join(tmp, 'cfg.json')
        with open(cfg, 'w', encoding='utf-8') as f:
            json.dump({'manifest': {'icons': [{'src': 'a.png', 'sizes': '1x1', 'type': 'image/png', 'color': 'red'}]}}, f)
        r = run(['--root', root, '--config', cfg])
        assert r.returncode == 16, (r.returncode, r.stdout, r.stderr)
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_exit_code_dry_run_success():
    tmp = tempfile.mkdtemp(prefix='pwab_ec_')
    try:
        root = os.path.join(tmp, 'app')
        _page(os.path.join(root, 'index.html'))
        r = run(['--root', root, '--dry-run'])
        assert r.returncode == 0, (r.returncode, r.stdout, r.stderr)
        assert '[dry-run] Plan summary:' in r.stdout
        assert not os.path.exists(os.path.join(root, 'dist'))
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_exit_code_verify_failed(monkeypatch):
    tmp = tempfile.mkdtemp(prefix='pwab_ec_')
    try:
        root = os.path.join(tmp, 'app')
        _page(os.path.join(root, 'index.html'))
        def _failing(path, fast_missing=False, out=print):
            return {'ok': 0, 'missing': ['index.html'], 'mismatched': [], 'total': 1, 'passed': False}
        monkeypatch.setattr(verify_precache, 'verify_precache', _failing)
        assert pwab_core.headless_main(['--root', root, '--verify-after']) == pwab_core.EXIT_VERIFY_FAILED
    finally:
        shutil.rmtree(tmp, ignore_errors=True)


def test_exit_code_undecodable_page():
    tmp = tempfile.mkdtemp(prefix='pwab_ec_')
    try:
        root = os.path.join(tmp, 'app')
        _page(os.path.join(root, 'index.html'))
        with open(os.path.join(root, 'latin1.html'), 'wb') as f:
            f.write(b'<html><body>caf\xe9</body></html>')
        events = os.path.join(tmp, 'events.ndjson')
        r = run(['--root', root, '--report', 'json', '--events-file', events])
        assert r.returncode == 1, (r.returncode, r.stdout, r.stderr)
        assert '[error]' in r.stdout
        assert 'Traceback' not in r.stderr
        with open(os.path.join(root, 'dist', 'build_report.json'), 'r', encoding='utf-8') as f:
            report = json.load(f)
        assert report['exit_code'] == 1 and report['error']
        with open(events, 'r', encoding='utf-8') as f:
            rows = [json.loads(x) for x in f if x.strip()]
        assert rows[-1]['event'] == 'summary_final' and rows[-1]['exit_code'] == 1
    finally:
        shutil.rmtree(tmp, ignore_errors=True)
