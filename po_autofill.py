#!/usr/bin/env python3
# -*- coding: utf-8 -*-
# SPDX-License-Identifier: GPL-3.0-or-later
# po-autofill - Fill and extract .po translations
# Copyright (C) 2026 Daniel Nylander <daniel@danielnylander.se>
"""
po-autofill - Fill missing .po translations with Baidu Fanyi

Two tools:
- po-autofill: translate untranslated entries of a catalog, with a
  persistent JSON cache, retries and exponential backoff
- po-extract: dump the existing translations of one or more catalogs
  into a flat JSON object
"""

import argparse
import gettext
import hashlib
import http.client
import json
import locale
import os
import sys
import tempfile
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import polib
from dotenv import find_dotenv, load_dotenv

__version__ = "1.0.0"

# Translation setup
DOMAIN = "po-autofill"

# Look for locale in multiple places
_possible_locale_dirs = [
    Path(__file__).parent / "locale",  # Development
    Path("/usr/share/po-autofill/locale"),  # System install (Debian)
]
LOCALE_DIR = None
for _dir in _possible_locale_dirs:
    if _dir.exists():
        LOCALE_DIR = _dir
        break

# Initialize gettext - detect language
_system_lang = locale.getlocale()[0] or os.environ.get("LANG", "en")
_lang_code = _system_lang.split("_")[0].split(".")[0] if _system_lang else "en"

try:
    if LOCALE_DIR:
        translation = gettext.translation(DOMAIN, LOCALE_DIR, languages=[_lang_code], fallback=True)
    else:
        translation = gettext.NullTranslations()
    _ = translation.gettext
except Exception:
    def _(s): return s


BAIDU_API_URL = "https://fanyi-api.baidu.com/api/trans/vip/translate"
BAIDU_SUCCESS_CODE = "52000"

DEFAULT_CACHE_FILE = "translation_cache.json"
DEFAULT_EXTRACT_OUTPUT = "translations.json"
PO_SUFFIX = ".po"


class POAutofillError(Exception):
    """Base class for po-autofill errors."""


class ConfigError(POAutofillError):
    """Missing credentials or invalid settings."""


class InvalidPathError(POAutofillError):
    """Input is neither a .po file nor a directory."""

    def __init__(self, path):
        self.path = str(path)
        super().__init__(_("Input must be a directory or a .po file: {path}").format(path=self.path))


class TranslationError(POAutofillError):
    """The translation service answered with an error or an unexpected payload."""

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code


# === Catalogs ===

def translated_lines(entry: polib.POEntry) -> list[str]:
    """Translated lines of an entry, one per plural form, empty when untranslated."""
    if entry.msgid_plural:
        return [entry.msgstr_plural[n] for n in sorted(entry.msgstr_plural)]
    return [entry.msgstr] if entry.msgstr else []


def needs_translation(entry: polib.POEntry) -> bool:
    """Check if entry needs translation."""
    if not entry.msgid:  # Header
        return False
    if entry.obsolete:
        return False
    return not ''.join(translated_lines(entry)).strip()


class Catalog:
    """A .po file, parsed and written by polib."""

    def __init__(self, filepath):
        self.filepath = str(filepath)
        self.po = polib.pofile(self.filepath)

    @property
    def entries(self) -> list[polib.POEntry]:
        """Live entries, without the header and obsolete ones."""
        return [e for e in self.po if e.msgid and not e.obsolete]

    def get_untranslated(self) -> list[polib.POEntry]:
        """Get entries that need translation."""
        return [e for e in self.entries if needs_translation(e)]

    def translations(self) -> dict[str, str]:
        """Map msgid to its translation, multi-line translations joined with newlines."""
        result = {}
        for entry in self.entries:
            lines = translated_lines(entry)
            if entry.msgid and any(lines):
                result[entry.msgid] = '\n'.join(lines)
        return result

    def save(self, filepath: str = None):
        """Save PO file."""
        filepath = filepath or self.filepath
        parent = os.path.dirname(filepath)
        if parent:
            os.makedirs(parent, exist_ok=True)
        self.po.save(filepath)


# === Cache ===

class TranslationCache:
    """Source text to translation memo, flushed to a JSON file on every put.

    Without a path the cache lives in memory only.
    """

    def __init__(self, path: Optional[str] = None):
        self.path = path
        self.data: dict[str, str] = {}

    def load(self) -> dict[str, str]:
        """Read the cache file; anything unreadable leaves the cache empty."""
        self.data = {}
        if not self.path or not os.path.exists(self.path):
            return self.data

        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except ValueError as e:
            print(_("⚠️ Could not parse cache file {path} ({error}), starting with an empty cache").format(
                path=self.path, error=e), file=sys.stderr)
            return self.data

        if not isinstance(data, dict):
            print(_("⚠️ Cache file {path} does not hold a JSON object, starting with an empty cache").format(
                path=self.path), file=sys.stderr)
            return self.data

        self.data = {k: v for k, v in data.items() if isinstance(v, str)}
        if len(self.data) != len(data):
            print(_("⚠️ Dropped {count} cache entries without a text translation from {path}").format(
                count=len(data) - len(self.data), path=self.path), file=sys.stderr)
        return self.data

    def get(self, key: str) -> Optional[str]:
        """Cached translation, or None."""
        return self.data.get(key)

    def put(self, key: str, value: str):
        """Store a translation and flush the whole cache to disk."""
        self.data[key] = value
        self.save()

    def save(self):
        """Rewrite the cache file."""
        if not self.path:
            return
        write_json(self.data, self.path)

    def __contains__(self, key) -> bool:
        return key in self.data

    def __len__(self) -> int:
        return len(self.data)


# === Baidu Fanyi ===

def sign_request(app_id: str, query: str, salt: str, secret_key: str) -> str:
    """Baidu request signature: md5 of appid + q + salt + secret key."""
    raw = f"{app_id}{query}{salt}{secret_key}"
    return hashlib.md5(raw.encode('utf-8')).hexdigest()


class BaiduTranslator:
    """Translation via the Baidu Fanyi general translation API.

    Every call goes through the cache first. Failed requests are retried
    with exponential backoff; when all attempts fail the source text is
    returned as-is so a long run never stops on a single string.
    """

    def __init__(self, app_id: str, secret_key: str, cache: TranslationCache,
                 source_lang: str = "en", target_lang: str = "zh",
                 retry_limit: int = 3, retry_delay: float = 1.0, request_delay: float = 1.0,
                 timeout: float = 30, api_url: str = BAIDU_API_URL, sleep=None):
        if retry_limit < 1:
            raise ValueError("retry_limit must be at least 1")
        self.app_id = app_id
        self.secret_key = secret_key
        self.cache = cache
        self.source_lang = self._map_lang(source_lang)
        self.target_lang = self._map_lang(target_lang)
        self.retry_limit = retry_limit
        self.retry_delay = retry_delay
        self.request_delay = request_delay
        self.timeout = timeout
        self.api_url = api_url
        self._sleep = sleep or time.sleep
        self.translated = 0
        self.cached = 0

    @classmethod
    def from_config(cls, config: "FillConfig", cache: TranslationCache) -> "BaiduTranslator":
        return cls(
            config.app_id,
            config.secret_key,
            cache,
            source_lang=config.source_lang,
            target_lang=config.target_lang,
            retry_limit=config.retry_limit,
            retry_delay=config.retry_delay,
            request_delay=config.request_delay,
        )

    @staticmethod
    def _map_lang(lang: str) -> str:
        """Map language codes to Baidu format."""
        # Baidu uses its own three letter codes for a few languages
        lang_map = {
            'ja': 'jp', 'ko': 'kor', 'fr': 'fra', 'es': 'spa', 'ar': 'ara',
            'bg': 'bul', 'et': 'est', 'da': 'dan', 'fi': 'fin', 'ro': 'rom',
            'sl': 'slo', 'sv': 'swe', 'vi': 'vie',
            'zh-cn': 'zh', 'zh-hans': 'zh', 'zh-sg': 'zh',
            'zh-tw': 'cht', 'zh-hk': 'cht', 'zh-hant': 'cht',
        }
        code = lang.strip().lower().replace('_', '-')
        return lang_map.get(code, code)

    def _salt(self) -> str:
        """Per-request nonce, the current time in milliseconds."""
        return str(int(time.time() * 1000))

    def _post(self, params: dict) -> dict:
        """Submit the form and decode the JSON answer."""
        data = urllib.parse.urlencode(params).encode()

        req = urllib.request.Request(
            self.api_url,
            data=data,
            headers={
                'Content-Type': 'application/x-www-form-urlencoded',
                'User-Agent': f'po-autofill/{__version__}'
            }
        )

        response = urllib.request.urlopen(req, timeout=self.timeout)
        return json.loads(response.read().decode('utf-8'))

    @staticmethod
    def _parse_response(data) -> str:
        """Extract the translated text from a decoded response."""
        if not isinstance(data, dict):
            raise TranslationError(f"Unexpected response structure: {data!r}")

        code = data.get('error_code')
        if code is not None and str(code) != BAIDU_SUCCESS_CODE:
            raise TranslationError(f"{data.get('error_msg', 'unknown error')} (error_code {code})", code=str(code))

        results = data.get('trans_result')
        if not isinstance(results, list) or not results:
            raise TranslationError(f"Unexpected response structure: {json.dumps(data, ensure_ascii=False)}")

        try:
            # One segment per source line
            translated = '\n'.join(item['dst'] for item in results).strip()
        except (KeyError, TypeError):
            raise TranslationError(f"Unexpected response structure: {json.dumps(data, ensure_ascii=False)}")

        if not translated:
            raise TranslationError("Empty translation in response")
        return translated

    def _request(self, text: str) -> str:
        """Sign and send one translation request."""
        salt = self._salt()
        params = {
            'q': text,
            'from': self.source_lang,
            'to': self.target_lang,
            'appid': self.app_id,
            'salt': salt,
            'sign': sign_request(self.app_id, text, salt, self.secret_key),
        }
        return self._parse_response(self._post(params))

    @staticmethod
    def _describe_error(error: Exception) -> str:
        if isinstance(error, urllib.error.HTTPError):
            body = error.read().decode('utf-8', errors='replace') if error.fp else ''
            return f"HTTP {error.code}: {body or error.reason}"
        return str(error)

    def translate(self, text: str) -> str:
        if not text.strip():
            return text

        cached = self.cache.get(text)
        if cached is not None:
            self.cached += 1
            print(_("  💾 Cached: {text}").format(text=text))
            return cached

        for attempt in range(1, self.retry_limit + 1):
            try:
                translated = self._request(text)
            except (OSError, ValueError, http.client.HTTPException, TranslationError) as e:
                print(_('  ⚠️ Error translating "{text}" (attempt {attempt}): {error}').format(
                    text=text, attempt=attempt, error=self._describe_error(e)), file=sys.stderr)
                if attempt == self.retry_limit:
                    print(_("  ❌ Failed after {count} attempts, keeping original text").format(
                        count=self.retry_limit), file=sys.stderr)
                    return text
                delay = self.retry_delay * 2 ** (attempt - 1)
                print(_("  ⏳ Retrying in {delay:g}s...").format(delay=delay))
                self._sleep(delay)
                continue

            self.cache.put(text, translated)
            self.translated += 1
            # Rate limiting
            self._sleep(self.request_delay)
            return translated

        return text


# === Fill ===

@dataclass
class FillConfig:
    """Settings of a po-autofill run."""
    input_path: str
    output_path: str = ""
    source_lang: str = "en"
    target_lang: str = ""
    app_id: str = ""
    secret_key: str = ""
    cache_path: str = DEFAULT_CACHE_FILE
    retry_limit: int = 3
    retry_delay: float = 1.0
    request_delay: float = 1.0
    dry_run: bool = False

    def __post_init__(self):
        if not self.output_path:
            self.output_path = self.input_path

    def validate(self):
        """Raise ConfigError for anything that would make the run pointless."""
        if not self.app_id or not self.secret_key:
            raise ConfigError(_("Set BAIDU_APP_ID and BAIDU_SECRET_KEY (environment or .env file)"))
        if not self.target_lang:
            raise ConfigError(_("--target required (could not detect from LANG environment)"))
        if self.retry_limit < 1:
            raise ConfigError(_("--retries must be at least 1"))
        if self.retry_delay < 0 or self.request_delay < 0:
            raise ConfigError(_("Delays cannot be negative"))
        if not os.path.isfile(self.input_path):
            raise ConfigError(_("Input file not found: {path}").format(path=self.input_path))


def restore_lines(source: str, translated: str) -> str:
    """Give a translation the line layout of its source text."""
    if '\n' not in source:
        return translated

    lines = translated.split('\n')
    # The service strips surrounding whitespace; msgfmt -c wants the newlines back
    if source.startswith('\n') and lines[0]:
        lines.insert(0, '')
    if source.endswith('\n') and lines[-1]:
        lines.append('')
    return '\n'.join(lines)


def fill_entry(entry: polib.POEntry, translator: BaiduTranslator):
    """Translate one entry in place."""
    translated = restore_lines(entry.msgid, translator.translate(entry.msgid))

    if not entry.msgid_plural:
        entry.msgstr = translated
        return

    plural = restore_lines(entry.msgid_plural, translator.translate(entry.msgid_plural))
    forms = sorted(entry.msgstr_plural) or [0, 1]
    entry.msgstr_plural = {n: translated if n == 0 else plural for n in forms}


def fill_catalog(catalog: Catalog, translator: BaiduTranslator) -> int:
    """Translate every untranslated entry of a catalog. Returns the number filled."""
    untranslated = catalog.get_untranslated()
    if not untranslated:
        return 0

    print(_("  📝 {count} strings to translate...").format(count=len(untranslated)))

    for entry in untranslated:
        print(_('  🔄 Translating: "{text}"').format(text=entry.msgid))
        fill_entry(entry, translator)
        print(_('  ✓ "{text}"').format(text='\n'.join(translated_lines(entry))))

    return len(untranslated)


def fill_file(config: FillConfig, translator: BaiduTranslator) -> dict:
    """Fill a catalog and write it to the configured output path."""
    catalog = Catalog(config.input_path)
    filled = fill_catalog(catalog, translator)

    if not config.dry_run:
        catalog.save(config.output_path)
        print(_("  💾 Saved: {path}").format(path=config.output_path))
    else:
        print(_("  🔍 Dry run: would save {path}").format(path=config.output_path))

    return {
        'translated': filled,
        'cached': translator.cached,
        'total': len(catalog.entries),
        'filepath': config.output_path
    }


# === Extract ===

def find_po_files(path) -> list[Path]:
    """A .po file itself, or the .po files directly inside a directory."""
    path = Path(path)

    if path.is_dir():
        return sorted(f for f in path.iterdir() if f.is_file() and f.suffix.lower() == PO_SUFFIX)
    if path.is_file() and path.suffix.lower() == PO_SUFFIX:
        return [path]
    raise InvalidPathError(path)


def extract_translations(po_path) -> dict[str, str]:
    """Translation pairs of a single .po file."""
    return Catalog(po_path).translations()


def collect_translations(input_path) -> dict[str, str]:
    """Merge the translation pairs of every catalog under input_path.

    On duplicate source strings the file processed last wins.
    """
    translations = {}
    for po_path in find_po_files(input_path):
        translations.update(extract_translations(po_path))
    return translations


def write_json(data: dict, output_path):
    """Write data as indented JSON, replacing output_path in one step."""
    output_path = str(output_path)
    parent = os.path.dirname(output_path)
    if parent:
        os.makedirs(parent, exist_ok=True)

    # An interrupted write must never truncate the existing file
    fd, tmp_path = tempfile.mkstemp(prefix=f".{os.path.basename(output_path)}.", suffix=".tmp", dir=parent or ".")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.chmod(tmp_path, 0o644)
        os.replace(tmp_path, output_path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


# === CLI ===

def target_from_env() -> str:
    """Language code from LANG (e.g., "sv_SE.UTF-8" -> "sv")."""
    lang_env = os.environ.get('LANG', os.environ.get('LC_ALL', ''))
    lang = lang_env.split('_')[0].split('.')[0] if lang_env else ''
    if lang in ('C', 'POSIX'):
        return ''
    return lang


def extract_main(argv=None):
    parser = argparse.ArgumentParser(
        prog='po-extract',
        description=_('po-extract - Dump .po translations to a JSON file'),
    )
    parser.add_argument('po_path', nargs='?', help=_('A .po file or a directory of .po files'))
    parser.add_argument('output_path', nargs='?', default=DEFAULT_EXTRACT_OUTPUT,
                        help=_('Output JSON file (default: {path})').format(path=DEFAULT_EXTRACT_OUTPUT))
    parser.add_argument('-v', '--version', action='version', version=f'%(prog)s {__version__}')

    args = parser.parse_args(argv)

    if not args.po_path:
        parser.print_help()
        sys.exit(1)

    try:
        translations = collect_translations(args.po_path)
        write_json(translations, args.output_path)
    except (POAutofillError, OSError) as e:
        print(_("❌ Error: {error}").format(error=e), file=sys.stderr)
        sys.exit(1)

    print(_("✅ Extracted {count} translations to {path}").format(count=len(translations), path=args.output_path))


def main(argv=None):
    load_dotenv(find_dotenv(usecwd=True))

    parser = argparse.ArgumentParser(
        prog='po-autofill',
        description=_('po-autofill - Fill missing .po translations with Baidu Fanyi'),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=_("""
Examples:
  # Fill messages.po in place, target language from LANG
  po-autofill messages.po

  # Write the result elsewhere
  po-autofill --source en --target zh -o out/messages.po src/locales/zh/messages.po

Credentials are read from BAIDU_APP_ID and BAIDU_SECRET_KEY, either in the
environment or in a .env file in the current directory.
        """)
    )

    parser.add_argument('input', help=_('Catalog to translate'))
    parser.add_argument('--output', '-o', help=_('Where to write the result (default: overwrite input)'))
    parser.add_argument('--source', '-s', default='en', help=_('Source language code (default: en)'))
    parser.add_argument('--target', '-t', help=_('Target language code (e.g., zh, ja, fr). Defaults to system LANG.'))
    parser.add_argument('--app-id', help=_('Baidu APP ID (default: $BAIDU_APP_ID)'))
    parser.add_argument('--secret-key', help=_('Baidu secret key (default: $BAIDU_SECRET_KEY)'))
    parser.add_argument('--cache', help=_('Translation cache file (default: {path})').format(path=DEFAULT_CACHE_FILE))
    parser.add_argument('--retries', type=int, default=3, help=_('Attempts per string (default: 3)'))
    parser.add_argument('--retry-delay', type=float, default=1.0,
                        help=_('Base backoff in seconds, doubled per attempt (default: 1)'))
    parser.add_argument('--request-delay', type=float, default=1.0,
                        help=_('Pause after each request in seconds (default: 1)'))
    parser.add_argument('--dry-run', action='store_true', help=_("Don't save the catalog"))
    parser.add_argument('-v', '--version', action='version', version=f'%(prog)s {__version__}')

    args = parser.parse_args(argv)

    config = FillConfig(
        input_path=args.input,
        output_path=args.output or '',
        source_lang=args.source,
        target_lang=args.target or target_from_env(),
        app_id=args.app_id or os.environ.get('BAIDU_APP_ID', ''),
        secret_key=args.secret_key or os.environ.get('BAIDU_SECRET_KEY', ''),
        cache_path=args.cache or os.environ.get('PO_AUTOFILL_CACHE', DEFAULT_CACHE_FILE),
        retry_limit=args.retries,
        retry_delay=args.retry_delay,
        request_delay=args.request_delay,
        dry_run=args.dry_run,
    )

    try:
        config.validate()
    except ConfigError as e:
        print(_("❌ Error: {error}").format(error=e), file=sys.stderr)
        sys.exit(1)

    if not args.target:
        print(_("ℹ️  Using target language from LANG: {lang}").format(lang=config.target_lang))

    print(_("🌐 po-autofill - {source} → {target}").format(source=config.source_lang, target=config.target_lang))
    print(_("📄 {path}").format(path=config.input_path))

    try:
        cache = TranslationCache(config.cache_path)
        cache.load()
        print(_("💾 Cache: {path} ({count} entries)").format(path=config.cache_path, count=len(cache)))
        print()

        translator = BaiduTranslator.from_config(config, cache)
        result = fill_file(config, translator)
    except KeyboardInterrupt:
        print(_("\n⏹ Interrupted, cache kept in {path}").format(path=config.cache_path), file=sys.stderr)
        sys.exit(130)
    except Exception as e:
        print(_("❌ Error: {error}").format(error=e), file=sys.stderr)
        sys.exit(1)

    # Summary
    print()
    print("=" * 40)
    print(_("✅ Done! Filled {count} strings").format(count=result['translated']))
    print(_("   From cache: {count}").format(count=result['cached']))
    print(_("   Total entries: {count}").format(count=result['total']))

    if config.dry_run:
        print(_("   (dry run - no files modified)"))
    else:
        print(_("   Output: {path}").format(path=result['filepath']))


if __name__ == '__main__':
    main()
