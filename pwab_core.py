"""Core build pipeline + headless CLI for pwab (multi-page PWA builder).

Separated from the dispatcher (`pwab.py`) so tests and programmatic use can
import the pipeline directly.

Pipeline (build_site):
  entries -> output folder -> plugins -> pages (sanitize, plugin transform,
  PWA tags) -> static copy -> manifest/service worker -> verification ->
  finalize hooks -> build_manifest.json

Entry errors (PathParseError / DuplicateAliasError) are fatal and propagate
out of build_site; the CLI maps them to EXIT_ENTRY_ERROR.
"""
from __future__ import annotations
import os, sys, json, time, uuid, shutil, platform, functools, importlib.util, http.server
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any

import yaml
from rich.progress import Progress, BarColumn, TextColumn, TimeElapsedColumn

from pwab_entries import (EntryError, DuplicateAliasError, resolve_entries,
                          DEFAULT_APP_ROOT, DEFAULT_PAGE_EXT, DEFAULT_EXCLUDED_DIRS)
from pwab_sanitize import DEV_ORIGIN, sanitize_stats
from pwab_pwa import ManifestError, inject_pwa_tags, write_pwa_assets, PRECACHE_MANIFEST_FILENAME
import verify_precache

__version__ = "0.4.2"

# ---------------- Exit Codes & Schema ----------------
# These provide stable semantics for automation / CI integration.
SCHEMA_VERSION = 1
EXIT_SUCCESS = 0
EXIT_GENERIC_FAILURE = 1
EXIT_ENTRY_ERROR = 12
EXIT_VERIFY_FAILED = 14
EXIT_CONFIG_ERROR = 16

BUILD_MANIFEST_FILENAME = 'build_manifest.json'
OUTPUT_PAGE_EXT = '.html'
DEFAULT_OUT_DIR = 'dist'
DEFAULT_PREVIEW_PORT = 4173
# keep the same directory structure at / in dev and in dist/ for production
DEFAULT_STATIC_TARGETS = [
    {'src': 'robots.txt', 'dest': ''},
    {'src': 'favicon.ico', 'dest': ''},
    {'src': 'images/', 'dest': ''},
]
# config-file keys with no CLI flag
CONFIG_ONLY_KEYS = ('manifest', 'glob_patterns', 'glob_ignores', 'include_assets')

__all__ = [
    "__version__",
    "BuildConfig",
    "BuildResult",
    "BuildCallbacks",
    "build_site",
    "headless_main",
    "ConfigError",
    "copy_static_targets",
    "sourcemap_from_env",
    "make_preview_server",
]


class ConfigError(Exception):
    pass


def sourcemap_from_env(environ=None) -> bool:
    """Source maps are emitted only when SOURCE_MAP is exactly 'true'."""
    env = os.environ if environ is None else environ
    return env.get('SOURCE_MAP') == 'true'


def _load_config_file(path: str) -> dict:
    if not path:
        return {}
    if not os.path.exists(path):
        raise ConfigError(f"config file not found: {path}")
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.lower().endswith(('.yml', '.yaml')):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ConfigError(f"cannot read config {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"config {path} must contain a mapping at top level")
    return data


def parse_static_target(value) -> Dict[str, str]:
    """Accept 'src', 'src:dest' or {'src':..,'dest':..}."""
    if isinstance(value, dict):
        if not value.get('src'):
            raise ConfigError(f"static target without src: {value!r}")
        return {'src': str(value['src']), 'dest': str(value.get('dest') or '')}
    text = str(value or '').strip()
    if not text:
        raise ConfigError('empty static target')
    src, _, dest = text.partition(':')
    return {'src': src, 'dest': dest}


def copy_static_targets(root: str, out_dir: str, targets: List[Dict[str, str]], include_sourcemaps: bool = False) -> Dict[str, List[str]]:
    """Copy files/directories verbatim into the output folder.

    A directory target copies the directory itself (``images/`` ends up as
    ``<out>/<dest>/images``). Missing sources are reported, not raised.
    """
    copied: List[str] = []; missing: List[str] = []
    ignore = None if include_sourcemaps else shutil.ignore_patterns('*.map')
    for t in targets:
        src_rel = t['src']; dest_rel = t.get('dest') or ''
        src = os.path.join(root, src_rel)
        dest_dir = os.path.join(out_dir, dest_rel)
        if os.path.isdir(src):
            target = os.path.join(dest_dir, os.path.basename(os.path.normpath(src)))
            shutil.copytree(src, target, ignore=ignore, dirs_exist_ok=True)
            copied.append(os.path.relpath(target, out_dir).replace('\\', '/') + '/')
        elif os.path.isfile(src):
            if not include_sourcemaps and src.endswith('.map'):
                continue
            os.makedirs(dest_dir, exist_ok=True)
            target = os.path.join(dest_dir, os.path.basename(src))
            shutil.copy2(src, target)
            copied.append(os.path.relpath(target, out_dir).replace('\\', '/'))
        else:
            missing.append(src_rel)
    return {'copied': copied, 'missing': missing}


# ======================= Build Pipeline ========================

@dataclass
class BuildConfig:
    root: str = '.'
    app_root: str = DEFAULT_APP_ROOT
    out_dir: str = DEFAULT_OUT_DIR            # relative to root unless absolute
    page_ext: str = DEFAULT_PAGE_EXT
    excluded_dirs: Optional[List[str]] = None  # None -> dist, node_modules; the output folder is always skipped
    dev_origin: str = DEV_ORIGIN
    static_targets: Optional[List[Dict[str, str]]] = None
    pwa: bool = True
    manifest: Optional[Dict[str, Any]] = None  # web app manifest description
    glob_patterns: Optional[List[str]] = None
    glob_ignores: Optional[List[str]] = None
    include_assets: Optional[List[str]] = None
    sourcemap: bool = field(default_factory=sourcemap_from_env)
    empty_out_dir: bool = True
    plugins_dir: Optional[str] = None
    no_manifest: bool = False
    verify_after: bool = False
    json_logs: bool = False
    events_file: Optional[str] = None  # optional NDJSON event sink
    progress_mode: str = 'plain'  # 'plain' or 'rich'
    profile: bool = False


@dataclass
class BuildResult:
    success: bool
    output_folder: str
    entries: Dict[str, str] = field(default_factory=dict)
    manifest_path: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)
    timings: Dict[str, float] = field(default_factory=dict)
    run_id: Optional[str] = None
    verification: Optional[Dict[str, Any]] = None


class BuildCallbacks:
    """Interface for CLI progress integration (all optional)."""
    def log(self, message: str): ...  # pragma: no cover - interface stub
    def phase(self, phase: str, pct: int): ...


class RichCallbacks(BuildCallbacks):  # pragma: no cover - UI layer exercised indirectly
    def __init__(self):
        self._progress: Optional[Progress] = None
        self._tasks: Dict[str, Any] = {}
        self._columns = [
            TextColumn("[bold cyan]{task.fields[phase]:>9}[/]"),
            BarColumn(),
            TextColumn("{task.percentage:>5.1f}%"),
            TimeElapsedColumn(),
        ]
    def start(self):
        self._progress = Progress(*self._columns, transient=False)
        self._progress.start()
    def stop(self):
        if self._progress:
            self._progress.stop()
    def log(self, message: str):
        if self._progress:
            self._progress.console.print(message, markup=False, highlight=False)
        else:
            print(message)
    def phase(self, phase: str, pct: int):
        if not self._progress: return
        if phase not in self._tasks:
            self._tasks[phase] = self._progress.add_task(description="", total=100, phase=phase)
        self._progress.update(self._tasks[phase], completed=max(0, min(100, pct)))


def _invoke(cb, name: str, *a):
    if cb is None: return
    fn = getattr(cb, name, None)
    if callable(fn):
        try: fn(*a)
        except Exception: pass


def resolve_output_dir(cfg: BuildConfig) -> str:
    root = os.path.abspath(cfg.root)
    out = os.path.abspath(os.path.join(root, cfg.out_dir or DEFAULT_OUT_DIR))
    if out == root:
        raise ConfigError('output directory must differ from the project root')
    return out


def effective_excluded_dirs(cfg: BuildConfig) -> List[str]:
    return list(DEFAULT_EXCLUDED_DIRS if cfg.excluded_dirs is None else cfg.excluded_dirs)


def _plugin_name(mod) -> str:
    return os.path.splitext(os.path.basename(getattr(mod, '__file__', None) or getattr(mod, '__name__', 'plugin')))[0]


def load_plugins(plugins_dir: Optional[str], log=None, emit=None) -> list:
    log = log or (lambda m: None); emit = emit or (lambda *a, **k: None)
    loaded = []
    if not plugins_dir or not os.path.isdir(plugins_dir):
        return loaded
    for fn in sorted(os.listdir(plugins_dir)):
        if not fn.endswith('.py'): continue
        path = os.path.join(plugins_dir, fn); mod_name = f'_pwab_plugin_{fn[:-3]}'
        try:
            spec = importlib.util.spec_from_file_location(mod_name, path)
            if spec and spec.loader:
                mod = importlib.util.module_from_spec(spec); spec.loader.exec_module(mod)  # type: ignore
                loaded.append(mod)
                log(f"[plugin] loaded {fn}")
                emit('plugin_loaded', name=fn)
        except Exception as e:
            log(f"[plugin] load failed {fn}: {e}")
            emit('plugin_load_failed', name=fn, error=str(e))
    return loaded


def _run_transform_hooks(plugins: list, file_id: str, code: str, log, emit):
    modifiers = []
    for mod in plugins:
        hook = getattr(mod, 'transform', None)
        if not callable(hook): continue
        try:
            maybe = hook(file_id, code)
        except Exception as e:
            log(f"[plugin] {_plugin_name(mod)} transform failed on {file_id}: {e}")
            emit('plugin_error', name=_plugin_name(mod), hook='transform', path=file_id, error=str(e))
            continue
        if isinstance(maybe, str) and maybe != code:
            code = maybe
            modifiers.append(_plugin_name(mod))
    return code, modifiers


def _prepare_output_dir(root: str, out: str, empty: bool, log) -> bool:
    """Create the output folder, emptying it first when it lives inside root."""
    emptied = False
    if empty and os.path.isdir(out):
        if os.path.commonpath([root, out]) == root:
            shutil.rmtree(out); emptied = True
        else:
            log(f"[build] {out} is outside the project root; not emptied")
    os.makedirs(out, exist_ok=True)
    return emptied


def build_site(cfg: BuildConfig, callbacks: Optional[BuildCallbacks] = None) -> BuildResult:
    """Run one full build. Entry and manifest errors propagate to the caller."""
    t0 = time.time()
    started_utc = datetime.now(timezone.utc).isoformat()
    def log(msg: str): _invoke(callbacks, 'log', msg)
    run_id = uuid.uuid4().hex
    seq_counter = {'n': 0}
    def j(event: str, **data):
        if not cfg.json_logs and not cfg.events_file:
            return
        seq_counter['n'] += 1
        payload = {
            'event': event,
            'ts': datetime.now(timezone.utc).isoformat(),
            'seq': seq_counter['n'],
            'run_id': run_id,
            'schema_version': SCHEMA_VERSION,
            'tool_version': __version__,
            **data
        }
        if cfg.json_logs:
            _invoke(callbacks, 'log', json.dumps(payload))
        if cfg.events_file:
            with open(cfg.events_file, 'a', encoding='utf-8') as ef:
                ef.write(json.dumps(payload) + '\n')

    root = os.path.abspath(cfg.root)
    out = resolve_output_dir(cfg)
    j('start', root=root, output=out, sourcemap=cfg.sourcemap)
    log(f"[build] root: {root}")
    log(f"[build] output: {out}")

    # ---------------- entries ----------------
    _invoke(callbacks, 'phase', 'entries', 0)
    entries = resolve_entries(root, cfg.app_root, cfg.page_ext, effective_excluded_dirs(cfg), excluded_paths=[out])
    j('entries_resolved', count=len(entries), aliases=sorted(entries))
    log(f"[entries] {len(entries)} page(s)")
    _invoke(callbacks, 'phase', 'entries', 100)
    t_entries = time.time()

    if _prepare_output_dir(root, out, cfg.empty_out_dir, log):
        log('[build] output folder emptied')
    plugins = load_plugins(cfg.plugins_dir, log, j)

    # ---------------- pages ----------------
    stats: Dict[str, Any] = {'pages': 0, 'sanitized': 0, 'dev_blocks_removed': 0, 'dev_urls_removed': 0}
    plugin_mod_counts: Dict[str, int] = {}
    total = len(entries)
    for idx, alias in enumerate(sorted(entries), 1):
        src = entries[alias]
        out_rel = alias + OUTPUT_PAGE_EXT
        with open(src, 'r', encoding='utf-8') as f:
            code = f.read()
        code, blocks, urls = sanitize_stats(out_rel, code, cfg.dev_origin)
        if blocks or urls:
            stats['sanitized'] += 1
            stats['dev_blocks_removed'] += blocks
            stats['dev_urls_removed'] += urls
        code, modifiers = _run_transform_hooks(plugins, out_rel, code, log, j)
        for m in modifiers:
            plugin_mod_counts[m] = plugin_mod_counts.get(m, 0) + 1
        if cfg.pwa:
            code = inject_pwa_tags(code)
        dest = os.path.join(out, *out_rel.split('/'))
        os.makedirs(os.path.dirname(dest), exist_ok=True)
        with open(dest, 'w', encoding='utf-8') as f:
            f.write(code)
        stats['pages'] += 1
        j('page_emitted', alias=alias, path=out_rel, dev_blocks_removed=blocks, dev_urls_removed=urls, modifiers=modifiers)
        _invoke(callbacks, 'phase', 'pages', int(idx * 100 / total))
    log(f"[pages] emitted {stats['pages']} (sanitized {stats['sanitized']})")
    t_pages = time.time()

    # ---------------- static passthrough ----------------
    targets = [parse_static_target(t) for t in (DEFAULT_STATIC_TARGETS if cfg.static_targets is None else cfg.static_targets)]
    static = copy_static_targets(root, out, targets, include_sourcemaps=cfg.sourcemap)
    for m in static['missing']:
        log(f"[static] warning: no file found for {m}")
        j('static_missing', src=m)
    j('static_copied', count=len(static['copied']), copied=static['copied'])
    _invoke(callbacks, 'phase', 'static', 100)
    t_static = time.time()

    # ---------------- manifest + service worker ----------------
    pwa_summary = None
    if cfg.pwa:
        pwa_summary = write_pwa_assets(out, cfg.manifest, cfg.glob_patterns, cfg.glob_ignores,
                                       cfg.include_assets, default_name=os.path.basename(root))
        log(f"[pwa] precached {pwa_summary['precache_count']} file(s), cache {pwa_summary['cache_id']}")
        j('pwa_written', precache=pwa_summary['precache_count'], cache_id=pwa_summary['cache_id'])
        _invoke(callbacks, 'phase', 'pwa', 100)
    t_pwa = time.time()

    # ---------------- verification ----------------
    success = True
    verification = None
    if cfg.verify_after and cfg.pwa:
        _invoke(callbacks, 'phase', 'verify', 0)
        vstats = verify_precache.verify_precache(os.path.join(out, PRECACHE_MANIFEST_FILENAME), out=log)
        verification = {'status': 'passed' if vstats['passed'] else 'failed', 'ok': vstats['ok'],
                        'missing': len(vstats['missing']), 'mismatched': len(vstats['mismatched']), 'total': vstats['total']}
        success = vstats['passed']
        log('[verify] ' + ('PASSED' if success else 'FAILED'))
        j('verify', passed=success)
        _invoke(callbacks, 'phase', 'verify', 100)

    timings = {
        'entries_seconds': round(t_entries - t0, 4),
        'pages_seconds': round(t_pages - t_entries, 4),
        'static_seconds': round(t_static - t_pages, 4),
        'pwa_seconds': round(t_pwa - t_static, 4),
        'total_seconds': round(time.time() - t0, 4),
    }
    j('timings', **timings)
    if cfg.profile:
        log('[profile] ' + json.dumps(timings))

    manifest_data: Dict[str, Any] = {
        'schema_version': SCHEMA_VERSION,
        'tool_version': __version__,
        'run_id': run_id,
        'started_utc': started_utc,
        'root': root,
        'output_folder': out,
        'app_root': cfg.app_root,
        'entries': {a: os.path.relpath(p, root).replace('\\', '/') for a, p in sorted(entries.items())},
        'stats': stats,
        'static': static,
        'sourcemap': cfg.sourcemap,
        'pwa': None if pwa_summary is None else {k: pwa_summary[k] for k in ('precache_count', 'cache_id', 'files')},
        'plugin_modifications': plugin_mod_counts,
        'timings': timings,
        'environment': {'python': sys.version.split()[0], 'platform': platform.platform()},
    }
    if verification:
        manifest_data['verification'] = verification

    # ---------------- plugin finalize hooks ----------------
    for mod in plugins:
        hook = getattr(mod, 'finalize', None)
        if not callable(hook): continue
        try:
            hook(out, manifest_data, {'output_folder': out, 'entries': dict(entries), 'root': root})
            j('plugin_finalize_end', name=_plugin_name(mod))
        except Exception as fe:
            log(f"[plugin] {_plugin_name(mod)} finalize failed: {fe}")
            j('plugin_error', name=_plugin_name(mod), hook='finalize', error=str(fe))

    manifest_path = None
    if not cfg.no_manifest:
        manifest_data['completed_utc'] = datetime.now(timezone.utc).isoformat()
        manifest_path = os.path.join(out, BUILD_MANIFEST_FILENAME)
        with open(manifest_path, 'w', encoding='utf-8') as mf:
            json.dump(manifest_data, mf, indent=2)
        log('[manifest] written')

    j('summary', success=success, pages=stats['pages'], sanitized=stats['sanitized'],
      plugin_modifications=plugin_mod_counts, timings=timings)
    return BuildResult(success, out, dict(entries), manifest_path, stats, timings, run_id, verification)


# ---------- preview server ----------
class _PreviewHandler(http.server.SimpleHTTPRequestHandler):
    extensions_map = {**http.server.SimpleHTTPRequestHandler.extensions_map,
                      '.webmanifest': 'application/manifest+json', '.js': 'text/javascript'}
    def log_message(self, format, *args): pass


def make_preview_server(folder: str, host: str = '127.0.0.1', port: int = DEFAULT_PREVIEW_PORT):
    handler = functools.partial(_PreviewHandler, directory=folder)
    return http.server.ThreadingHTTPServer((host, port), handler)


# ---------- headless CLI ----------
def _write_report(fmt: str, path: str, summary: Dict[str, Any]):
    if fmt == 'json':
        with open(path, 'w', encoding='utf-8') as rf:
            json.dump(summary, rf, indent=2)
        return
    def _section(title: str):
        return f"\n## {title}\n"
    lines = ["# Build Report\n", "\nGenerated: " + datetime.now(timezone.utc).isoformat() + "\n"]
    lines.append(_section('Overview'))
    lines.append(f"Root: {summary['root']}\nOutput: {summary['output_folder']}\nSuccess: {summary['success']}\nExit Code: {summary['exit_code']}\n")
    if summary.get('entries'):
        lines.append(_section('Entries'))
        for alias, src in summary['entries'].items():
            lines.append(f"- `{alias}` <- {src}\n")
    if summary.get('timings'):
        lines.append(_section('Timings'))
        for k, v in summary['timings'].items():
            lines.append(f"- {k}: {v}s\n")
    if summary.get('verification'):
        ver = summary['verification']
        lines.append(_section('Verification'))
        lines.append(f"Status: {ver.get('status')}  OK={ver.get('ok')} Missing={ver.get('missing')} Mismatched={ver.get('mismatched')} Total={ver.get('total')}\n")
    if summary.get('plugin_modifications'):
        lines.append(_section('Plugin Modifications'))
        for name, count in summary['plugin_modifications'].items():
            lines.append(f"- {name}: {count}\n")
    if summary.get('error'):
        lines.append(_section('Error'))
        lines.append(f"{summary['error']}\n")
    with open(path, 'w', encoding='utf-8') as rf:
        rf.write(''.join(lines))


def _build_parser():
    import argparse
    parser = argparse.ArgumentParser(description="Build a multi-page PWA: entries, sanitized pages, static files, manifest + service worker")
    parser.add_argument('--root', default='.', help='Project root to scan for pages')
    parser.add_argument('--app-root', default=DEFAULT_APP_ROOT, help='Directory segment that anchors entry aliases')
    parser.add_argument('--out-dir', default=DEFAULT_OUT_DIR, help='Output directory (relative to root)')
    parser.add_argument('--exclude-dir', dest='excluded_dirs', action='append', default=None,
                        help='Directory name never scanned for pages (repeatable; default dist, node_modules)')
    parser.add_argument('--page-ext', default=DEFAULT_PAGE_EXT, help='Page source extension')
    parser.add_argument('--dev-origin', default=DEV_ORIGIN, help='Dev server origin stripped from pages')
    parser.add_argument('--static', dest='static_targets', action='append', default=None, metavar='SRC[:DEST]',
                        help='Static file/directory copied verbatim (repeatable; default robots.txt, favicon.ico, images/)')
    parser.add_argument('--no-pwa', action='store_true', help='Skip manifest/service worker generation')
    parser.add_argument('--sourcemap', action='store_true', help='Keep .map files (also enabled by SOURCE_MAP=true)')
    parser.add_argument('--no-empty-out-dir', action='store_true', help='Do not empty the output directory first')
    parser.add_argument('--plugins-dir', default=None, help='Directory containing plugin .py files (transform/finalize)')
    parser.add_argument('--no-manifest', action='store_true', help=f'Skip writing {BUILD_MANIFEST_FILENAME}')
    parser.add_argument('--verify-after', action='store_true', help='Verify precache revisions after the build')
    parser.add_argument('--json-logs', action='store_true', help='Emit machine-readable JSON log lines')
    parser.add_argument('--events-file', default=None, help='Append JSON events to this NDJSON file')
    parser.add_argument('--progress', choices=['plain', 'rich'], default='plain', help='Progress rendering mode')
    parser.add_argument('--profile', action='store_true', help='Emit JSON timing metrics at end')
    parser.add_argument('--report', choices=['json', 'md'], default=None, help='Generate build_report.json or build_report.md')
    parser.add_argument('--config', default=None, help='Optional config file (JSON/YAML)')
    parser.add_argument('--dry-run', action='store_true', help='Resolve entries and show the plan without building')
    parser.add_argument('--preview', action='store_true', help='Serve the output folder after building')
    parser.add_argument('--port', type=int, default=DEFAULT_PREVIEW_PORT, help='Preview server port')
    return parser


def _emit_cli_event(args, payload: Dict[str, Any]):
    if args.json_logs:
        print(json.dumps(payload))
    if args.events_file:
        with open(args.events_file, 'a', encoding='utf-8') as ef:
            ef.write(json.dumps(payload) + '\n')


def headless_main(argv: list[str]) -> int:
    """Headless CLI: build (or dry-run) the project and map failures to exit codes."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    # Config merge: file values fill options the command line left at their default
    extras: Dict[str, Any] = {}
    if args.config:
        try:
            cfg_file = _load_config_file(args.config)
        except ConfigError as e:
            print(f"[config] {e}")
            return EXIT_CONFIG_ERROR
        defaults = {a.dest: a.default for a in parser._actions if hasattr(a, 'dest')}
        for k, v in cfg_file.items():
            if k in CONFIG_ONLY_KEYS:
                extras[k] = v
                continue
            if not hasattr(args, k):
                continue
            cur = getattr(args, k)
            if cur == defaults.get(k) or cur in (None, ''):
                setattr(args, k, v)

    class CLICallbacks(BuildCallbacks):  # pragma: no cover - simple console binding
        def log(self, message: str): print(message)
        def phase(self, phase: str, pct: int):
            if not args.json_logs: print(f"[{phase}] {pct}%")

    try:
        cfg = BuildConfig(
            root=args.root, app_root=args.app_root, out_dir=args.out_dir, page_ext=args.page_ext,
            excluded_dirs=list(args.excluded_dirs) if args.excluded_dirs is not None else None, dev_origin=args.dev_origin,
            static_targets=[parse_static_target(t) for t in args.static_targets] if args.static_targets is not None else None,
            pwa=not args.no_pwa, manifest=extras.get('manifest'), glob_patterns=extras.get('glob_patterns'),
            glob_ignores=extras.get('glob_ignores'), include_assets=extras.get('include_assets'),
            sourcemap=bool(args.sourcemap) or sourcemap_from_env(), empty_out_dir=not args.no_empty_out_dir,
            plugins_dir=args.plugins_dir, no_manifest=args.no_manifest, verify_after=args.verify_after,
            json_logs=args.json_logs, events_file=args.events_file, progress_mode=args.progress, profile=args.profile,
        )
        out = resolve_output_dir(cfg)
    except ConfigError as e:
        print(f"[config] {e}")
        return EXIT_CONFIG_ERROR

    if args.dry_run:
        try:
            entries = resolve_entries(cfg.root, cfg.app_root, cfg.page_ext, effective_excluded_dirs(cfg), excluded_paths=[out])
        except EntryError as e:
            print(f"[error] {e}")
            _emit_cli_event(args, {'event': 'entry_error', 'error': str(e)})
            return EXIT_ENTRY_ERROR
        root = os.path.abspath(cfg.root)
        targets = cfg.static_targets if cfg.static_targets is not None else DEFAULT_STATIC_TARGETS
        missing = [t['src'] for t in targets if not os.path.exists(os.path.join(root, t['src']))]
        plugin_count = 0
        if cfg.plugins_dir and os.path.isdir(cfg.plugins_dir):
            plugin_count = len([f for f in os.listdir(cfg.plugins_dir) if f.endswith('.py')])
        plan = {
            'root': root,
            'output': out,
            'entries': {a: os.path.relpath(p, root).replace('\\', '/') for a, p in sorted(entries.items())},
            'static_targets': targets,
            'will_generate_pwa': cfg.pwa,
            'sourcemap': cfg.sourcemap,
            'excluded_dirs': effective_excluded_dirs(cfg),
            'excluded_paths': [out],
            'plugins_dir': cfg.plugins_dir,
            'plugin_count': plugin_count,
            'issues': [f'static target missing: {m}' for m in missing] or None,
        }
        if args.json_logs:
            print(json.dumps({'dry_run_plan': plan}, indent=2))
        else:
            print('[dry-run] Plan summary:')
            for k, v in plan.items():
                if k == 'entries':
                    print(f"  - entries: {len(v)}")
                    for alias, src in v.items(): print(f"      {alias} <- {src}")
                else:
                    print(f"  - {k}: {v}")
        return EXIT_SUCCESS

    callbacks: BuildCallbacks
    rich_context = None
    if cfg.progress_mode == 'rich':
        rich_context = RichCallbacks()
        rich_context.start()
        callbacks = rich_context
    else:
        callbacks = CLICallbacks()

    res: Optional[BuildResult] = None
    error: Optional[str] = None
    exit_code = EXIT_SUCCESS
    try:
        res = build_site(cfg, callbacks)
    except EntryError as e:
        error = str(e); exit_code = EXIT_ENTRY_ERROR
        _emit_cli_event(args, {'event': 'entry_error', 'error': error,
                               'kind': 'duplicate_alias' if isinstance(e, DuplicateAliasError) else 'path_parse'})
    except (ManifestError, ConfigError) as e:
        error = str(e); exit_code = EXIT_CONFIG_ERROR
    except (OSError, UnicodeDecodeError) as e:
        error = str(e); exit_code = EXIT_GENERIC_FAILURE
    finally:
        if rich_context is not None:
            rich_context.stop()
    if error:
        print(f"[error] {error}")
    elif res is not None and not res.success:
        exit_code = EXIT_VERIFY_FAILED if (res.verification or {}).get('status') == 'failed' else EXIT_GENERIC_FAILURE

    if args.report:
        report_dir = res.output_folder if res else out
        os.makedirs(report_dir, exist_ok=True)
        report_path = os.path.join(report_dir, f"build_report.{args.report}")
        summary: Dict[str, Any] = {
            'root': os.path.abspath(cfg.root),
            'output_folder': report_dir,
            'success': bool(res and res.success),
            'exit_code': exit_code,
        }
        if res:
            summary.update({'entries': {a: os.path.relpath(p, summary['root']).replace('\\', '/') for a, p in sorted(res.entries.items())},
                            'stats': res.stats, 'timings': res.timings})
            if res.verification:
                summary['verification'] = res.verification
            if res.manifest_path and os.path.exists(res.manifest_path):
                with open(res.manifest_path, 'r', encoding='utf-8') as mf:
                    summary['plugin_modifications'] = json.load(mf).get('plugin_modifications') or {}
        if error:
            summary['error'] = error
        _write_report(args.report, report_path, summary)
        if args.json_logs:
            print(json.dumps({'event': 'report_generated', 'path': report_path, 'format': args.report}))
        else:
            print(f"[report] generated {report_path}")

    if args.json_logs or args.events_file:
        _emit_cli_event(args, {
            'event': 'summary_final',
            'exit_code': exit_code,
            'success': bool(res and res.success),
            'run_id': res.run_id if res else None,
        })

    if args.preview and res is not None and exit_code == EXIT_SUCCESS:
        httpd = make_preview_server(res.output_folder, port=args.port)
        print(f"[preview] serving {res.output_folder} at http://127.0.0.1:{httpd.server_address[1]}/ (Ctrl+C to stop)")
        try:
            httpd.serve_forever()
        except KeyboardInterrupt:
            print('[preview] stopped')
        finally:
            httpd.server_close()
    return exit_code


## End of core helpers.
