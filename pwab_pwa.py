"""Web app manifest + precaching service worker generation.

Runs after pages and static files are in the output folder:
  * manifest.webmanifest   - installable app description
  * registerSW.js          - client registration + update prompt
  * precache-manifest.json - [{url, revision}] record (used by verify_precache.py)
  * sw.js                  - service worker with the precache list embedded
"""
from __future__ import annotations
import os, re, json, hashlib
from typing import Any, Dict, Iterable, List, Optional

from pwab_update import UPDATE_PROMPT

MANIFEST_FILENAME = 'manifest.webmanifest'
REGISTER_SW_FILENAME = 'registerSW.js'
PRECACHE_MANIFEST_FILENAME = 'precache-manifest.json'
SW_FILENAME = 'sw.js'
REGISTER_SW_SCRIPT_ID = 'pwab-register-sw'

DEFAULT_GLOB_PATTERNS = ['**/*.{js,css,html}', 'assets/**']
# no point precaching html templates on the client
DEFAULT_GLOB_IGNORES = ['templates/**']
DEFAULT_INCLUDE_ASSETS = ['favicon.ico', 'images/logo/apple-touch-icon.png']

MANIFEST_DEFAULTS: Dict[str, Any] = {
    'start_url': '/',
    'scope': '/',
    'display': 'standalone',
    'lang': 'en',
    'theme_color': '#FFFFFF',
    'background_color': '#FFFFFF',
}
ICON_REQUIRED = ('src', 'sizes', 'type')
ICON_ALLOWED = set(ICON_REQUIRED) | {'purpose'}


class ManifestError(ValueError):
    pass


def build_web_manifest(description: Optional[Dict[str, Any]], default_name: str = 'app') -> Dict[str, Any]:
    desc = dict(description or {})
    manifest: Dict[str, Any] = {'name': desc.get('name') or default_name}
    manifest['short_name'] = desc.get('short_name') or manifest['name']
    for k, v in MANIFEST_DEFAULTS.items():
        manifest[k] = desc.get(k, v)
    for k, v in desc.items():
        if k not in manifest and k != 'icons':
            manifest[k] = v
    icons = desc.get('icons') or []
    if not isinstance(icons, list):
        raise ManifestError('manifest icons must be a list')
    clean = []
    for idx, icon in enumerate(icons):
        if not isinstance(icon, dict):
            raise ManifestError(f'icon #{idx} is not an object')
        missing = [k for k in ICON_REQUIRED if not icon.get(k)]
        if missing:
            raise ManifestError(f"icon #{idx} missing {', '.join(missing)}")
        unknown = set(icon) - ICON_ALLOWED
        if unknown:
            raise ManifestError(f"icon #{idx} has unknown keys: {', '.join(sorted(unknown))}")
        clean.append({k: icon[k] for k in ('src', 'sizes', 'type', 'purpose') if k in icon})
    manifest['icons'] = clean
    return manifest


# ---------------- glob matching ----------------
def expand_braces(pattern: str) -> List[str]:
    m = re.search(r'\{([^{}]*)\}', pattern)
    if not m:
        return [pattern]
    out = []
    for alt in m.group(1).split(','):
        out.extend(expand_braces(pattern[:m.start()] + alt + pattern[m.end():]))
    return out


def glob_to_regex(pattern: str) -> re.Pattern:
    parts = []
    for variant in expand_braces(pattern):
        i = 0; buf = ''
        while i < len(variant):
            if variant.startswith('**/', i):
                buf += '(?:.*/)?'; i += 3
            elif variant.startswith('**', i):
                buf += '.*'; i += 2
            elif variant[i] == '*':
                buf += '[^/]*'; i += 1
            elif variant[i] == '?':
                buf += '[^/]'; i += 1
            else:
                buf += re.escape(variant[i]); i += 1
        parts.append(buf)
    return re.compile('^(?:' + '|'.join(parts) + ')$')


def _matches_any(rel: str, regexes: List[re.Pattern]) -> bool:
    return any(r.match(rel) for r in regexes)


def file_revision(path: str) -> str:
    h = hashlib.md5()
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(65536), b''):
            h.update(chunk)
    return h.hexdigest()


def collect_precache(out_dir: str, glob_patterns: Optional[Iterable[str]] = None,
                     glob_ignores: Optional[Iterable[str]] = None,
                     include_assets: Optional[Iterable[str]] = None,
                     icons: Optional[Iterable[Dict[str, Any]]] = None) -> List[Dict[str, str]]:
    patterns = [glob_to_regex(p) for p in (DEFAULT_GLOB_PATTERNS if glob_patterns is None else glob_patterns)]
    ignores = [glob_to_regex(p) for p in (DEFAULT_GLOB_IGNORES if glob_ignores is None else glob_ignores)]
    extra = list(DEFAULT_INCLUDE_ASSETS if include_assets is None else include_assets)
    extra += [str(i.get('src', '')) for i in (icons or [])]
    selected = set()
    for base, _, files in os.walk(out_dir):
        for fn in files:
            rel = os.path.relpath(os.path.join(base, fn), out_dir).replace('\\', '/')
            if rel in (SW_FILENAME, PRECACHE_MANIFEST_FILENAME):
                continue
            if _matches_any(rel, patterns) and not _matches_any(rel, ignores):
                selected.add(rel)
    for rel in extra:
        rel = rel.lstrip('/')
        if rel and os.path.isfile(os.path.join(out_dir, rel)):
            selected.add(rel)
    return [{'url': rel, 'revision': file_revision(os.path.join(out_dir, rel))} for rel in sorted(selected)]


def cache_id_for(precache: List[Dict[str, str]]) -> str:
    h = hashlib.md5()
    for e in precache:
        h.update(f"{e['url']}:{e['revision']}\n".encode('utf-8'))
    return h.hexdigest()[:10]


SERVICE_WORKER_TEMPLATE = """\
// generated by pwab - do not edit
const CACHE_NAME = 'pwab-precache-__CACHE_ID__';
const PRECACHE = __PRECACHE__;

self.addEventListener('install', (event) => {
  event.waitUntil(
    caches.open(CACHE_NAME).then((cache) => cache.addAll(PRECACHE.map((e) => '/' + e.url)))
  );
});

self.addEventListener('activate', (event) => {
  event.waitUntil(
    caches.keys().then((keys) => Promise.all(
      keys.filter((k) => k.startsWith('pwab-precache-') && k !== CACHE_NAME).map((k) => caches.delete(k))
    )).then(() => self.clients.claim())
  );
});

self.addEventListener('message', (event) => {
  if (event.data && event.data.type === 'SKIP_WAITING') {
    self.skipWaiting();
  }
});

self.addEventListener('fetch', (event) => {
  if (event.request.method !== 'GET') return;
  event.respondWith(
    caches.match(event.request, { ignoreSearch: true }).then((hit) => hit || fetch(event.request))
  );
});
"""

REGISTER_SW_TEMPLATE = """\
// generated by pwab - do not edit
(function () {
  if (!('serviceWorker' in navigator)) return;
  function registerSW(options) {
    var registration = null;
    var reloading = false;
    function notify(reg) {
      if (reg.waiting && navigator.serviceWorker.controller && options.onNeedRefresh) options.onNeedRefresh();
    }
    navigator.serviceWorker.addEventListener('controllerchange', function () {
      if (reloading) window.location.reload();
    });
    window.addEventListener('load', function () {
      navigator.serviceWorker.register('__SW_URL__', { scope: '/' }).then(function (reg) {
        registration = reg;
        notify(reg);
        reg.addEventListener('updatefound', function () {
          var installing = reg.installing;
          if (!installing) return;
          installing.addEventListener('statechange', function () {
            if (installing.state === 'installed') notify(reg);
          });
        });
      });
    });
    return function updateSW(forceSkipWaiting) {
      if (!registration || !registration.waiting) return;
      reloading = forceSkipWaiting === true;
      registration.waiting.postMessage({ type: 'SKIP_WAITING' });
    };
  }
  var updateSW = registerSW({
    onNeedRefresh: function () {
      var isUpdateApproved = window.confirm('__PROMPT__');
      if (isUpdateApproved) updateSW(true);
    }
  });
})();
"""


def render_service_worker(precache: List[Dict[str, str]], cache_id: Optional[str] = None) -> str:
    cid = cache_id or cache_id_for(precache)
    return (SERVICE_WORKER_TEMPLATE
            .replace('__CACHE_ID__', cid)
            .replace('__PRECACHE__', json.dumps(precache, indent=2)))


def render_register_sw(sw_url: str = '/' + SW_FILENAME) -> str:
    return (REGISTER_SW_TEMPLATE
            .replace('__SW_URL__', sw_url)
            .replace('__PROMPT__', UPDATE_PROMPT.replace("'", "\\'")))


def inject_pwa_tags(html: str) -> str:
    """Insert manifest link + register script before </head> (once)."""
    if REGISTER_SW_SCRIPT_ID in html:
        return html
    m = re.search(r'</head\s*>', html, re.IGNORECASE)
    if not m:
        return html
    tags = (f'<link rel="manifest" href="/{MANIFEST_FILENAME}">'
            f'<script id="{REGISTER_SW_SCRIPT_ID}" src="/{REGISTER_SW_FILENAME}"></script>')
    return html[:m.start()] + tags + html[m.start():]


def write_pwa_assets(out_dir: str, manifest_description: Optional[Dict[str, Any]] = None,
                     glob_patterns: Optional[Iterable[str]] = None, glob_ignores: Optional[Iterable[str]] = None,
                     include_assets: Optional[Iterable[str]] = None, default_name: str = 'app') -> Dict[str, Any]:
    manifest = build_web_manifest(manifest_description, default_name=default_name)
    with open(os.path.join(out_dir, MANIFEST_FILENAME), 'w', encoding='utf-8') as f:
        json.dump(manifest, f, indent=2)
    with open(os.path.join(out_dir, REGISTER_SW_FILENAME), 'w', encoding='utf-8') as f:
        f.write(render_register_sw())
    # precache is computed last so it sees the manifest + register script
    precache = collect_precache(out_dir, glob_patterns, glob_ignores, include_assets, manifest['icons'])
    if MANIFEST_FILENAME not in {e['url'] for e in precache}:
        precache.append({'url': MANIFEST_FILENAME, 'revision': file_revision(os.path.join(out_dir, MANIFEST_FILENAME))})
    cache_id = cache_id_for(precache)
    with open(os.path.join(out_dir, PRECACHE_MANIFEST_FILENAME), 'w', encoding='utf-8') as f:
        json.dump({'cache_id': cache_id, 'precache': precache}, f, indent=2)
    with open(os.path.join(out_dir, SW_FILENAME), 'w', encoding='utf-8') as f:
        f.write(render_service_worker(precache, cache_id))
    return {'manifest': manifest, 'precache_count': len(precache), 'cache_id': cache_id,
            'files': [MANIFEST_FILENAME, REGISTER_SW_FILENAME, PRECACHE_MANIFEST_FILENAME, SW_FILENAME]}
