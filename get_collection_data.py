# /// script
# requires-python = ">=3.12"
# dependencies = [
#   "httpx~=0.28.0",
#   "tqdm",
#   "humanize"
# ]
# ///

"""
Exports CONTENTdm collection configuration data (alias, title, description, thumbnail)
for the Islandora CONTENTdm Collection Migrator.

Two ways to gather the data:
- `local` mode -- run on the CONTENTdm server itself; parses each collection's locale XML
  and ini file under the collection-data base dir, and copies each collection's thumbnail.
- `api` mode -- run anywhere; asks the CONTENTdm Web API for the collection list.
  The API only offers aliases and titles (no descriptions, no thumbnails).

Either way, output lands in `--output-dir`:
- `collection_data.tsv` -- one tab-separated line per collection (appended, never truncated)
- `<alias>/<thumbnail>` -- the collection's thumbnail image (local mode)
- `<alias>/CDMFIELDINFO.json` -- the collection's field configuration (with `--fetch-field-info`)

Usage:
  uv run ./get_collection_data.py --output-dir /tmp/collections
  uv run ./get_collection_data.py --mode api --api-base-url http://cdm.example.edu:81 --output-dir /tmp/collections
  uv run ./get_collection_data.py --fetch-field-info --api-base-url http://cdm.example.edu:81

Set `LOG_LEVEL=DEBUG` for more detail.
"""

import argparse
import configparser
import logging
import os
import shutil
import sys
import xml.etree.ElementTree as ET
from dataclasses import dataclass, replace
from pathlib import Path

import httpx
import humanize
from tqdm import tqdm

## setup logging ----------------------------------------------------
log_level_name: str = os.getenv('LOG_LEVEL', 'INFO').upper()
log_level = getattr(
    logging, log_level_name, logging.INFO
)  # maps the string name to the corresponding logging level constant; defaults to INFO
logging.basicConfig(
    level=log_level,
    format='[%(asctime)s] %(levelname)s [%(module)s-%(funcName)s()::%(lineno)d] %(message)s',
    datefmt='%d/%b/%Y %H:%M:%S',
)
if log_level <= logging.INFO:
    for noisy in ('httpx', 'httpcore'):  # prevent httpx from logging
        lg = logging.getLogger(noisy)
        lg.setLevel(logging.WARNING)
        lg.propagate = False  # don't bubble up to root
log = logging.getLogger(__name__)

## constants --------------------------------------------------------
DEFAULT_COLLECTION_DATA_BASE_DIR: str = '/usr/local/Content6/Website/public_html/ui/custom/default/collection'
DEFAULT_PUBLIC_HTML_BASE_DIR: str = '/usr/local/Content6/Website/public_html'
DEFAULT_OUTPUT_DIR: str = '/tmp/collections'
DEFAULT_LOCALE: str = 'en_US'

COLLECTION_DIR_PREFIX: str = 'coll_'
DEFAULT_COLLECTION_DIR_NAME: str = 'default'  # CONTENTdm's fallback configuration; not a real collection
LOCALE_FILE_TPL: str = '{coll_dir}/resources/languages/cdm_language_{coll_dir}.xml'
INI_FILE_TPL: str = '{coll_dir}/config/cdm_collection.ini'

TITLE_TUID: str = 'SITE_CONFIG_title'
DESCRIPTION_TUID: str = 'SITE_CONFIG_landingPageHtml'
XML_LANG_ATTR: str = '{http://www.w3.org/XML/1998/namespace}lang'
THUMBNAIL_INI_KEY: str = 'imageCarouselOffImageHomepage'

COLLECTION_LIST_PATH: str = '/dmwebservices/index.php?q=dmGetCollectionList/json'
FIELD_INFO_PATH_TPL: str = '/dmwebservices/index.php?q=dmGetCollectionFieldInfo/{alias}/json'
USER_AGENT: str = 'cdm-collection-data-exporter/1.0'

MANIFEST_FILENAME: str = 'collection_data.tsv'
FIELD_INFO_FILENAME: str = 'CDMFIELDINFO.json'


class ConfigError(Exception):
    """Raised when the run options are inconsistent."""


class AcquisitionError(Exception):
    """Raised when the collection list can't be gathered at all; ends the run."""


@dataclass(frozen=True)
class RunConfig:
    """
    Holds every run-time option; built once by the CLI and handed to each component.
    """

    mode: str = 'local'
    collection_data_base_dir: Path = Path(DEFAULT_COLLECTION_DATA_BASE_DIR)
    public_html_base_dir: Path = Path(DEFAULT_PUBLIC_HTML_BASE_DIR)
    output_dir: Path = Path(DEFAULT_OUTPUT_DIR)
    default_locale: str = DEFAULT_LOCALE
    api_base_url: str | None = None
    fetch_field_info: bool = False

    def validate(self) -> None:
        """
        Checks option combinations that can't work.
        Called by: CLI.to_config()
        """
        if self.mode not in ('local', 'api'):
            raise ConfigError(f'unknown mode, ``{self.mode}``')
        if self.mode == 'api' and not self.api_base_url:
            raise ConfigError('api mode needs --api-base-url')
        if self.fetch_field_info and not self.api_base_url:
            raise ConfigError('--fetch-field-info needs --api-base-url, even in local mode')


@dataclass(frozen=True)
class CollectionRecord:
    """
    One collection's exportable data.
    Local-mode records carry all four fields; api-mode records carry only alias and title.
    """

    alias: str
    title: str
    description: str | None = None
    thumbnail_path: str | None = None

    def fields(self) -> tuple[str, ...]:
        values: list[str] = [self.alias, self.title]
        if self.description is not None or self.thumbnail_path is not None:
            values.append(self.description or '')
            values.append(self.thumbnail_path or '')
        return tuple(values)

    @property
    def field_count(self) -> int:
        return len(self.fields())


@dataclass(frozen=True)
class LocaleText:
    title: str = ''
    description: str = ''


class LocaleParser:
    """
    Reads a collection's locale (translation-unit) XML file.
    - Finds `body/tu[@tuid=...]/tuv[@xml:lang=...]/seg` for the title and the description.
    - Strips line breaks, since the manifest is line-oriented.
    - Returns empty strings (and logs a warning) when the file or a node is missing.
    """

    def extract(self, path: Path, locale: str) -> LocaleText:
        """
        Returns the title and description for the given locale.
        Called by: CollectionScanner.build_record()
        """
        if not path.exists():
            log.warning(f'Locale file {path} can\'t be found')
            return LocaleText()
        try:
            root: ET.Element = ET.parse(path).getroot()
        except (ET.ParseError, OSError) as exc:
            log.warning(f'Locale file {path} can\'t be parsed: {exc}')
            return LocaleText()
        title: str = self.find_segment_text(root, TITLE_TUID, locale)
        description: str = self.find_segment_text(root, DESCRIPTION_TUID, locale)
        if not title:
            log.warning(f'no `{TITLE_TUID}` text for locale `{locale}` in {path}')
        if not description:
            log.warning(f'no `{DESCRIPTION_TUID}` text for locale `{locale}` in {path}')
        return LocaleText(title=title, description=description)

    def find_segment_text(self, root: ET.Element, tuid: str, locale: str) -> str:
        """
        Returns the first matching segment's text, with line breaks removed; empty string if absent.
        """
        for body in root.iter('body'):
            for tu in body.findall('tu'):
                if tu.get('tuid') != tuid:
                    continue
                for tuv in tu.findall('tuv'):
                    if tuv.get(XML_LANG_ATTR) != locale:
                        continue
                    seg: ET.Element | None = tuv.find('seg')
                    if seg is None:
                        continue
                    text: str = ''.join(seg.itertext())
                    return text.replace('\r', '').replace('\n', '')
        return ''


class IniParser:
    """
    Reads a collection's `cdm_collection.ini` (PHP-style; the section headers are optional).
    """

    ROOT_SECTION: str = '__root__'

    def extract_thumbnail_path(self, path: Path) -> str:
        """
        Returns the thumbnail image path from the ini file, or an empty string.
        Called by: CollectionScanner.build_record()
        """
        if not path.exists():
            log.warning(f'Ini file {path} can\'t be found')
            return ''
        parser = configparser.ConfigParser(
            interpolation=None,
            strict=False,
            allow_no_value=True,
            delimiters=('=',),
            comment_prefixes=(';', '#'),
            inline_comment_prefixes=(';',),
        )
        parser.optionxform = str  # CONTENTdm keys are camelCase
        try:
            content: str = path.read_text(encoding='utf-8', errors='replace')
            parser.read_string(f'[{self.ROOT_SECTION}]\n{content}', source=str(path))
        except (configparser.Error, OSError) as exc:
            log.warning(f'Ini file {path} can\'t be parsed: {exc}')
            return ''
        for section in parser.sections():
            if parser.has_option(section, THUMBNAIL_INI_KEY):
                return self.unquote(parser.get(section, THUMBNAIL_INI_KEY))
        log.debug(f'no `{THUMBNAIL_INI_KEY}` in {path}')
        return ''

    @staticmethod
    def unquote(value: str) -> str:
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
            value = value[1:-1]
        return value


class CollectionScanner:
    """
    Walks the CONTENTdm collection-data base dir and builds a record per collection directory.
    """

    def __init__(self, config: RunConfig, locale_parser: LocaleParser, ini_parser: IniParser) -> None:
        self.base_dir: Path = config.collection_data_base_dir
        self.locale: str = config.default_locale
        self.locale_parser = locale_parser
        self.ini_parser = ini_parser

    def list_collection_dirs(self) -> list[str]:
        """
        Lists collection directory names, sorted; skips the `default` dir and any plain files.
        """
        try:
            entries: list[Path] = sorted(self.base_dir.iterdir(), key=lambda p: p.name)
        except OSError as exc:
            raise AcquisitionError(f'can\'t read collection-data base dir {self.base_dir}: {exc}') from exc
        dir_names: list[str] = []
        for entry in entries:
            if entry.name == DEFAULT_COLLECTION_DIR_NAME:
                continue
            if not entry.is_dir():
                log.debug(f'skipping non-directory, ``{entry}``')
                continue
            dir_names.append(entry.name)
        return dir_names

    @staticmethod
    def alias_for(dir_name: str) -> str:
        return dir_name.removeprefix(COLLECTION_DIR_PREFIX)

    def locale_file_path(self, dir_name: str) -> Path:
        return self.base_dir / LOCALE_FILE_TPL.format(coll_dir=dir_name)

    def ini_file_path(self, dir_name: str) -> Path:
        return self.base_dir / INI_FILE_TPL.format(coll_dir=dir_name)

    def build_record(self, dir_name: str) -> CollectionRecord:
        alias: str = self.alias_for(dir_name)
        locale_text: LocaleText = self.locale_parser.extract(self.locale_file_path(dir_name), self.locale)
        thumbnail_path: str = self.ini_parser.extract_thumbnail_path(self.ini_file_path(dir_name))
        return CollectionRecord(
            alias=alias,
            title=locale_text.title,
            description=locale_text.description,
            thumbnail_path=thumbnail_path,
        )

    def scan(self) -> list[CollectionRecord]:
        """
        Builds one record per collection directory.
        Called by: gather_records()
        """
        dir_names: list[str] = self.list_collection_dirs()
        log.info(f'found {len(dir_names)} collection dirs in {self.base_dir}')
        return [self.build_record(dir_name) for dir_name in dir_names]


class ApiClient:
    """
    Talks to the CONTENTdm Web API (`dmwebservices`).
    - Lists collections (alias + name); any failure here is fatal.
    - Fetches a collection's field info as raw JSON text; failures are logged and skipped.
    """

    def __init__(self, client: httpx.Client, base_url: str) -> None:
        self.client: httpx.Client = client
        self.base_url: str = base_url.rstrip('/')

    def collection_list_url(self) -> str:
        return f'{self.base_url}{COLLECTION_LIST_PATH}'

    def field_info_url(self, alias: str) -> str:
        return f'{self.base_url}{FIELD_INFO_PATH_TPL.format(alias=alias)}'

    def list_collections(self) -> list[CollectionRecord]:
        """
        Returns an alias/title record per collection in the API's collection list.
        Called by: gather_records()
        """
        url: str = self.collection_list_url()
        log.debug(f'trying collection-list url, ``{url}``')
        try:
            resp: httpx.Response = self.client.get(url)
            resp.raise_for_status()
            collection_list: object = resp.json()
        except httpx.HTTPError as exc:
            raise AcquisitionError(f'collection list request failed, ``{url}``: {exc}') from exc
        except ValueError as exc:
            raise AcquisitionError(f'collection list from ``{url}`` is not valid JSON: {exc}') from exc
        if not isinstance(collection_list, list):
            raise AcquisitionError(f'collection list from ``{url}`` is not a JSON array')
        records: list[CollectionRecord] = []
        for entry in collection_list:
            if not isinstance(entry, dict) or not isinstance(entry.get('alias'), str):
                log.warning(f'skipping unexpected collection-list entry, ``{entry!r}``')
                continue
            alias: str = entry['alias'].strip('/')
            if not alias:
                log.warning(f'skipping unexpected collection-list entry, ``{entry!r}``')
                continue
            title: str = str(entry.get('name') or '')
            records.append(CollectionRecord(alias=alias, title=title))
        log.info(f'API lists {len(records)} collections')
        return records

    def fetch_field_info(self, alias: str) -> bytes:
        """
        Returns the collection's field-info JSON body as served, undecoded; empty bytes on failure.
        Called by: OutputWriter.write_field_info()
        """
        url: str = self.field_info_url(alias)
        log.debug(f'trying field-info url, ``{url}``')
        try:
            resp: httpx.Response = self.client.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            log.warning(f'field info for `{alias}` couldn\'t be fetched: {exc}')
            return b''
        return resp.content


@dataclass
class WriteSummary:
    records_written: int = 0
    thumbnails_copied: int = 0
    thumbnail_bytes: int = 0
    field_info_files: int = 0
    warnings: int = 0


def clean_field(value: str) -> str:
    """
    Keeps a manifest field on one line and in one column.
    """
    return value.replace('\t', ' ').replace('\r', '').replace('\n', '')


class OutputWriter:
    """
    Writes each collection's data into the output dir.
    - Creates a per-collection subdir for records that carry more than alias and title.
    - Copies the thumbnail image and records just its basename.
    - Optionally saves the collection's field info as `CDMFIELDINFO.json`.
    - Appends the record to `collection_data.tsv`, one open-append-close per record,
      so an interrupted run leaves every line written so far intact.
    """

    def __init__(self, config: RunConfig, api: ApiClient | None = None) -> None:
        self.output_dir: Path = config.output_dir
        self.public_html_base_dir: Path = config.public_html_base_dir
        self.fetch_field_info: bool = config.fetch_field_info
        self.api: ApiClient | None = api
        self.summary = WriteSummary()

    @property
    def manifest_path(self) -> Path:
        return self.output_dir / MANIFEST_FILENAME

    def collection_dir(self, record: CollectionRecord) -> Path:
        return self.output_dir / record.alias

    def write(self, records: list[CollectionRecord]) -> WriteSummary:
        """
        Writes all records, one at a time.
        Called by: main()
        """
        self.output_dir.mkdir(parents=True, exist_ok=True)
        for record in tqdm(records, total=len(records), desc='Writing collections'):
            self.write_record(record)
        return self.summary

    def write_record(self, record: CollectionRecord) -> CollectionRecord:
        """
        Handles one collection's side effects; returns the record as serialized.
        """
        if record.field_count > 2:
            try:
                self.collection_dir(record).mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                log.warning(f'output dir for `{record.alias}` couldn\'t be created: {exc}')
                self.summary.warnings += 1
        if record.thumbnail_path:
            record = replace(record, thumbnail_path=self.copy_thumbnail(record))
        if self.fetch_field_info and self.api is not None:
            self.write_field_info(record)
        self.append_to_manifest(record)
        self.summary.records_written += 1
        return record

    def copy_thumbnail(self, record: CollectionRecord) -> str:
        """
        Copies the thumbnail into the collection dir; returns its basename, or empty string when the copy fails.
        Called by: write_record()
        """
        assert record.thumbnail_path
        source_path: Path = self.public_html_base_dir / record.thumbnail_path.lstrip('/')
        dest_path: Path = self.collection_dir(record) / source_path.name
        if not source_path.is_file():
            log.warning(f'thumbnail for `{record.alias}` not found at {source_path}')
            self.summary.warnings += 1
            return ''
        try:
            shutil.copy2(source_path, dest_path)
        except OSError as exc:
            log.warning(f'thumbnail for `{record.alias}` couldn\'t be copied to {dest_path}: {exc}')
            self.summary.warnings += 1
            return ''
        self.summary.thumbnails_copied += 1
        self.summary.thumbnail_bytes += dest_path.stat().st_size
        log.debug(f'copied {source_path} to {dest_path}')
        return source_path.name

    def write_field_info(self, record: CollectionRecord) -> None:
        assert self.api is not None
        field_info: bytes = self.api.fetch_field_info(record.alias)
        if not field_info:
            return
        coll_dir: Path = self.collection_dir(record)
        try:
            coll_dir.mkdir(parents=True, exist_ok=True)
            (coll_dir / FIELD_INFO_FILENAME).write_bytes(field_info)
        except OSError as exc:
            log.warning(f'field info for `{record.alias}` couldn\'t be saved in {coll_dir}: {exc}')
            self.summary.warnings += 1
            return
        self.summary.field_info_files += 1

    def append_to_manifest(self, record: CollectionRecord) -> None:
        line: str = '\t'.join(clean_field(value) for value in record.fields()) + '\n'
        with self.manifest_path.open('a', encoding='utf-8') as fh:
            fh.write(line)


def gather_records(config: RunConfig, api: ApiClient | None) -> list[CollectionRecord]:
    """
    Collects records from the filesystem or from the API, depending on the mode.
    Called by: main()
    """
    if config.mode == 'api':
        assert api is not None
        return api.list_collections()
    scanner = CollectionScanner(config, LocaleParser(), IniParser())
    return scanner.scan()


class CLI:
    """
    Manages command-line parsing and converts the result into a `RunConfig`.
    """

    @staticmethod
    def build_parser() -> argparse.ArgumentParser:
        parser = argparse.ArgumentParser(description='Export CONTENTdm collection data for the Islandora migrator.')
        parser.add_argument(
            '--mode',
            choices=('local', 'api'),
            default=None,
            help='`local` parses config files on the CONTENTdm server; `api` uses the Web API '
            '(default: `api` if only --api-base-url is given, else `local`).',
        )
        parser.add_argument(
            '--collection-data-base-dir',
            default=DEFAULT_COLLECTION_DATA_BASE_DIR,
            help=f'Local mode. Dir holding the `coll_*` dirs (default: {DEFAULT_COLLECTION_DATA_BASE_DIR}).',
        )
        parser.add_argument(
            '--public-html-base-dir',
            default=DEFAULT_PUBLIC_HTML_BASE_DIR,
            help=f'Local mode. Root that thumbnail paths are relative to (default: {DEFAULT_PUBLIC_HTML_BASE_DIR}).',
        )
        parser.add_argument(
            '--default-locale',
            default=DEFAULT_LOCALE,
            help=f'Local mode. Locale for titles and descriptions (default: {DEFAULT_LOCALE}).',
        )
        parser.add_argument('--api-base-url', default=None, help='CONTENTdm Web API base URL, like http://cdm.example.edu:81')
        parser.add_argument('--output-dir', default=DEFAULT_OUTPUT_DIR, help=f'Output dir (default: {DEFAULT_OUTPUT_DIR}).')
        parser.add_argument(
            '--fetch-field-info',
            action='store_true',
            help='Also save each collection\'s field info as CDMFIELDINFO.json (needs --api-base-url).',
        )
        return parser

    @staticmethod
    def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
        return CLI.build_parser().parse_args(argv)

    @staticmethod
    def to_config(args: argparse.Namespace) -> RunConfig:
        mode: str | None = args.mode
        if mode is None:
            mode = 'api' if args.api_base_url else 'local'
        config = RunConfig(
            mode=mode,
            collection_data_base_dir=Path(args.collection_data_base_dir).expanduser(),
            public_html_base_dir=Path(args.public_html_base_dir).expanduser(),
            output_dir=Path(args.output_dir).expanduser(),
            default_locale=args.default_locale,
            api_base_url=args.api_base_url,
            fetch_field_info=args.fetch_field_info,
        )
        config.validate()
        return config


def build_http_client() -> httpx.Client:
    """
    Builds the httpx client used for all Web API calls.
    Called by: main()
    """
    headers: dict[str, str] = {'User-Agent': USER_AGENT}
    timeout: httpx.Timeout = httpx.Timeout(connect=30.0, read=60.0, write=60.0, pool=30.0)
    return httpx.Client(headers=headers, timeout=timeout, follow_redirects=True)


def run(config: RunConfig, client: httpx.Client) -> WriteSummary:
    """
    Gathers the records and writes them out.
    Called by: main()
    """
    api: ApiClient | None = ApiClient(client, config.api_base_url) if config.api_base_url else None
    records: list[CollectionRecord] = gather_records(config, api)
    writer = OutputWriter(config, api)
    return writer.write(records)


def main(argv: list[str] | None = None) -> int:
    """
    Parses args, gathers collection records, writes output, and reports where it went.
    Returns 1 on a bad option combination or when the collection list can't be gathered.
    Called by: dundermain
    """
    ## handle args --------------------------------------------------
    args: argparse.Namespace = CLI.parse_args(argv)
    try:
        config: RunConfig = CLI.to_config(args)
    except ConfigError as exc:
        log.error(f'bad options: {exc}')
        return 1
    log.debug(f'config, ``{config}``')

    ## gather and write ---------------------------------------------
    with build_http_client() as client:
        try:
            summary: WriteSummary = run(config, client)
        except AcquisitionError as exc:
            log.error(f'couldn\'t gather collection data: {exc}')
            return 1
        except OSError as exc:
            log.error(f'couldn\'t write output to {config.output_dir}: {exc}')
            return 1

    ## wrap up output -----------------------------------------------
    print(f'Done. Wrote {summary.records_written} collection record(s).')
    print(
        f'Copied {summary.thumbnails_copied} thumbnail(s) ({humanize.naturalsize(summary.thumbnail_bytes)}); '
        f'saved {summary.field_info_files} field-info file(s); {summary.warnings} warning(s).'
    )
    print(f'Your collection data is in {config.output_dir}')
    print(f'Manifest: {config.output_dir / MANIFEST_FILENAME}')
    return 0


if __name__ == '__main__':
    sys.exit(main())
