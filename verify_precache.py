#!/usr/bin/env python3
"""Verify the revisions recorded in precache-manifest.json.

Usage:
  python verify_precache.py --manifest /path/to/dist/precache-manifest.json [--fast-missing]

Exits 0 if every precached file is present and its md5 revision matches,
3 otherwise, 2 if the manifest cannot be found. A stale revision means the
service worker would serve content that no longer matches the build.
"""
from __future__ import annotations
import argparse, json, os, sys, hashlib


def hash_file(path: str) -> str | None:
    try:
        h = hashlib.md5()
        with open(path, 'rb') as f:
            for chunk in iter(lambda: f.read(65536), b''):
                h.update(chunk)
        return h.hexdigest()
    except OSError:
        return None


def verify_precache(manifest_path: str, fast_missing: bool = False, out=print) -> dict:
    with open(manifest_path, 'r', encoding='utf-8') as f:
        manifest = json.load(f)
    entries = manifest.get('precache') or []
    root = os.path.dirname(os.path.abspath(manifest_path))
    missing = []
    mismatched = []
    ok = 0
    total = len(entries)
    for idx, entry in enumerate(entries, 1):
        rel = entry.get('url', '')
        path = os.path.join(root, rel)
        if fast_missing and not os.path.exists(path):
            missing.append(rel)
            continue
        actual = hash_file(path)
        if actual is None:
            missing.append(rel)
        elif actual != entry.get('revision'):
            mismatched.append(rel)
        else:
            ok += 1
        if idx == total or idx % 200 == 0:
            out(f"[verify] {idx}/{total} ({int(idx * 100 / total)}%)")
    out(f"[verify] OK={ok} Missing={len(missing)} Mismatched={len(mismatched)} Total={total}")
    return {'ok': ok, 'missing': missing, 'mismatched': mismatched, 'total': total,
            'passed': ok == total and not missing and not mismatched}


def main(argv: list[str]) -> int:
    p = argparse.ArgumentParser(description='Verify precache revisions against the built files')
    p.add_argument('--manifest', required=True, help='Path to precache-manifest.json')
    p.add_argument('--fast-missing', action='store_true', help='Skip hashing files that are missing (just report)')
    args = p.parse_args(argv)

    if not os.path.exists(args.manifest):
        print(f"[error] Manifest not found: {args.manifest}")
        return 2
    stats = verify_precache(args.manifest, fast_missing=args.fast_missing)
    for title, items in (('Missing files:', stats['missing']), ('Mismatched files:', stats['mismatched'])):
        if not items:
            continue
        print('\n' + title)
        for m in items[:25]:
            print('  ', m)
        if len(items) > 25:
            print(f"  ... (+{len(items)-25} more)")
    return 0 if stats['passed'] else 3


if __name__ == '__main__':
    raise SystemExit(main(sys.argv[1:]))
