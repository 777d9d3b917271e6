# config.py

import logging
import os
import re
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

import yaml
from pydantic import TypeAdapter, field_validator

from errors import (
    ConfigFileError,
    InvalidConfigValueError,
    UnknownLanguageError,
    UnknownOutputFormatError,
    UnknownTaxonomyError,
)
from models import (
    BuildPolicy,
    LanguageConfig,
    MenuEntry,
    OutputFormat,
    OutputKind,
    PageKind,
    SiteConfig,
    TaxonomyKind,
    freeze,
)
from schema import NAME_LIST, Count, Flag, FrozenSchema, NameList, Text, scalar_text, validate_config

logger = logging.getLogger(__name__)

# --- 默认文件与目录 ---
CONFIG_FILE = 'config.yml'
CONTENT_DIR = 'content'
MANIFEST_FILE = '.build_manifest.json'
PLAN_FILE = 'build_plan.json'
CONTENT_EXTENSIONS = ('.md', '.markdown')

# --- 内容配置 ---
DEFAULT_LANGUAGE = 'en'
SUMMARY_LENGTH = 70
WORDS_PER_MINUTE = 213

# 仅用于把正文转换为纯文本以统计字数，不输出 HTML
MARKDOWN_EXTENSIONS = [
    'extra',              # fenced_code (```), tables, footnotes
    'sane_lists',
]

# --- 分类与输出格式 ---
DEFAULT_TAXONOMIES = (('category', 'categories'), ('tag', 'tags'))

BUILTIN_OUTPUT_FORMATS = {
    'HTML': OutputFormat('HTML', OutputKind.HYPERTEXT, 'text/html', 'index', 'html'),
    'RSS': OutputFormat('RSS', OutputKind.FEED, 'application/rss+xml', 'index', 'xml'),
    'JSON': OutputFormat('JSON', OutputKind.INDEX, 'application/json', 'index', 'json'),
    'CALENDAR': OutputFormat('CALENDAR', OutputKind.FEED, 'text/calendar', 'index', 'ics'),
    'CSV': OutputFormat('CSV', OutputKind.INDEX, 'text/csv', 'index', 'csv'),
}
DEFAULT_OUTPUT_LIST = ('HTML', 'RSS')

# outputs / disableKinds 中允许使用的页面类型名称 (兼容 Hugo 的写法)
KIND_ALIASES = {
    'home': PageKind.HOME,
    'section': PageKind.LIST,
    'list': PageKind.LIST,
    'page': PageKind.SINGLE,
    'single': PageKind.SINGLE,
    'taxonomy': PageKind.TAXONOMY,
    'term': PageKind.TERM,
}
# 由外部渲染阶段负责的类型，disableKinds 中出现时直接忽略
EXTERNAL_KINDS = {'sitemap', 'robotstxt', '404'}

LANGUAGE_CODE_RE = re.compile(r'^[a-zA-Z]{2,3}([-_][a-zA-Z0-9]{2,8})*$')
TAXONOMY_KEY_RE = re.compile(r'^[a-z][a-z0-9_-]*$')
MENU_NAME_RE = re.compile(r'^\w[\w-]*$')

# 被解析为结构化字段的顶层键，其余键原样保留到 settings
CONSUMED_KEYS = {
    'baseurl', 'title', 'languagecode', 'theme', 'defaultcontentlanguage',
    'contentdir', 'builddrafts', 'buildfuture', 'buildexpired', 'languages',
    'disablelanguages', 'taxonomies', 'outputs', 'outputformats',
    'disablekinds', 'summarylength', 'menu', 'menus',
}


# -------------------------------------------------------------------------
# 配置文档的校验模型 (字段名即小写后的 Hugo 键)
# -------------------------------------------------------------------------

class MenuEntrySchema(FrozenSchema):
    name: Text
    url: str
    weight: Count = 0
    identifier: Text = ''
    parent: Text = ''
    pre: Text = ''
    title: Text = ''

    @field_validator('name')
    @classmethod
    def check_name(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("menu entry has no name")
        return value.strip()

    @field_validator('url', mode='before')
    @classmethod
    def check_url(cls, value: Any) -> str:
        if value is None:
            raise ValueError("menu entry has no url")
        return scalar_text(value)


class LanguageSchema(FrozenSchema):
    languagename: Text = ''
    weight: Count = 0
    languagedirection: Literal['ltr', 'rtl'] = 'ltr'
    title: Text = ''
    disabled: Flag = False

    @field_validator('languagedirection', mode='before')
    @classmethod
    def normalize_direction(cls, value: Any) -> Any:
        if value is None:
            return 'ltr'
        return str(value).strip().lower()


class OutputFormatSchema(FrozenSchema):
    mediatype: Text = ''
    basename: Text = ''
    extension: Text = ''


class SiteSchema(FrozenSchema):
    baseurl: Text = ''
    title: Text = ''
    languagecode: Text = ''
    theme: Text = ''
    defaultcontentlanguage: Text = ''
    contentdir: Text = ''
    builddrafts: Flag = False
    buildfuture: Flag = False
    buildexpired: Flag = False
    disablelanguages: NameList = ()
    disablekinds: NameList = ()
    summarylength: Count = SUMMARY_LENGTH
    languages: Optional[Dict[str, Any]] = None
    outputformats: Optional[Dict[str, Any]] = None

    @field_validator('summarylength')
    @classmethod
    def check_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("must not be negative")
        return value


MENU_TABLE = TypeAdapter(Dict[str, Optional[List[Any]]])
KIND_TABLE = TypeAdapter(Dict[str, Any])


def _lower_keys(data: Mapping[str, Any]) -> Dict[str, Any]:
    """Hugo 的配置键不区分大小写：统一转为小写。"""
    return {str(k).lower(): v for k, v in data.items()}


# --- 菜单 ---

def parse_menu_entry(raw: Any, key: str) -> MenuEntry:
    entry = validate_config(MenuEntrySchema, _lower_keys(raw) if isinstance(raw, dict) else raw, key)
    return MenuEntry(
        name=entry.name,
        url=entry.url,
        weight=entry.weight,
        identifier=entry.identifier,
        parent=entry.parent,
        pre=entry.pre,
        title=entry.title,
    )


def parse_menus(raw: Any, key: str) -> Mapping[str, Tuple[MenuEntry, ...]]:
    """解析 {menu_name: [entry, ...]}，保持声明顺序 (排序由 menus.py 完成)。"""
    menus = {}
    for menu_name, entries in validate_config(MENU_TABLE, raw or {}, key).items():
        menu_key = f"{key}.{menu_name}"
        if not MENU_NAME_RE.match(menu_name):
            raise InvalidConfigValueError(menu_key, f"invalid menu name {menu_name!r}")
        menus[menu_name] = tuple(
            parse_menu_entry(entry, f"{menu_key}[{i}]") for i, entry in enumerate(entries or [])
        )
    return freeze(menus)


# --- 语言 ---

def parse_language(code: Any, raw: Any, disabled_codes: Tuple[str, ...]) -> LanguageConfig:
    key = f"languages.{code}"
    if not isinstance(code, str) or not LANGUAGE_CODE_RE.match(code):
        raise InvalidConfigValueError(key, f"invalid language code {code!r}")
    data = _lower_keys(raw) if isinstance(raw, dict) else ({} if raw is None else raw)
    lang = validate_config(LanguageSchema, data, key)

    return LanguageConfig(
        code=code,
        name=lang.languagename or code,
        weight=lang.weight,
        direction=lang.languagedirection,
        title=lang.title,
        disabled=lang.disabled or code in disabled_codes,
        menus=parse_menus(data.get('menus', data.get('menu')), f"{key}.menu"),
    )


def parse_languages(doc: SiteSchema, cfg: Dict[str, Any]) -> Tuple[Tuple[LanguageConfig, ...], str]:
    """返回 (按 (weight, code) 排序的语言列表, 主语言代码)。"""
    disabled_codes = doc.disablelanguages
    default_code = doc.defaultcontentlanguage.strip()

    if doc.languages is None:
        # 单语言站点：顶层 menu 归属于主语言
        code = default_code or DEFAULT_LANGUAGE
        languages = (parse_language(code, {
            'title': doc.title,
            'menu': cfg.get('menus', cfg.get('menu')),
        }, disabled_codes),)
    else:
        if not doc.languages:
            raise InvalidConfigValueError('languages', "no languages configured")
        languages = tuple(sorted(
            (parse_language(code, raw, disabled_codes) for code, raw in doc.languages.items()),
            key=lambda lang: (lang.weight, lang.code),
        ))

    configured = {lang.code for lang in languages}
    for code in disabled_codes:
        if code not in configured:
            raise UnknownLanguageError(code, key='disableLanguages')

    active = [lang for lang in languages if not lang.disabled]
    if not active:
        raise InvalidConfigValueError('languages', "every configured language is disabled")

    if default_code:
        if default_code not in configured:
            raise UnknownLanguageError(default_code, key='defaultContentLanguage')
        if default_code in {lang.code for lang in languages if lang.disabled}:
            raise InvalidConfigValueError('defaultContentLanguage', f"default language '{default_code}' is disabled")
    else:
        default_code = active[0].code

    return languages, default_code


# --- 分类 ---

def _check_taxonomy_key(value: Any, key: str) -> str:
    if not isinstance(value, str) or not TAXONOMY_KEY_RE.match(value.strip().lower()):
        raise UnknownTaxonomyError(key, f"invalid taxonomy name {value!r}")
    return value.strip().lower()


def parse_taxonomies(raw: Any, present: bool) -> Tuple[TaxonomyKind, ...]:
    if not present:
        return tuple(TaxonomyKind(s, p) for s, p in DEFAULT_TAXONOMIES)
    if raw is None:
        return ()

    if isinstance(raw, dict):
        pairs = [
            (_check_taxonomy_key(singular, f"taxonomies.{singular}"),
             _check_taxonomy_key(plural, f"taxonomies.{singular}"))
            for singular, plural in raw.items()
        ]
    elif isinstance(raw, list):
        pairs = []
        for i, plural in enumerate(raw):
            name = _check_taxonomy_key(plural, f"taxonomies[{i}]")
            pairs.append((name, name))
    else:
        raise UnknownTaxonomyError('taxonomies', "expected a mapping of singular: plural names")

    kinds = []
    seen = set()
    for singular, plural in pairs:
        if plural in seen:
            raise UnknownTaxonomyError(f"taxonomies.{singular}", f"taxonomy '{plural}' declared twice")
        seen.add(plural)
        kinds.append(TaxonomyKind(singular, plural))
    return tuple(kinds)


# --- 输出格式 ---

def _infer_output_kind(media_type: str) -> OutputKind:
    if 'html' in media_type:
        return OutputKind.HYPERTEXT
    if 'rss' in media_type or 'atom' in media_type or 'calendar' in media_type:
        return OutputKind.FEED
    return OutputKind.INDEX


def parse_output_formats(raw: Optional[Dict[str, Any]]) -> Mapping[str, OutputFormat]:
    """内置格式 + outputFormats 中自定义 (或覆盖) 的格式。"""
    formats = dict(BUILTIN_OUTPUT_FORMATS)
    for name, definition in (raw or {}).items():
        key = f"outputFormats.{name}"
        fmt_name = str(name).upper()
        data = _lower_keys(definition) if isinstance(definition, dict) else ({} if definition is None else definition)
        fmt_doc = validate_config(OutputFormatSchema, data, key)
        base = formats.get(fmt_name)

        media_type = fmt_doc.mediatype or (base.media_type if base else '')
        if not media_type:
            raise InvalidConfigValueError(f"{key}.mediaType", f"output format '{name}' needs a mediaType")
        subtype = media_type.split('/')[-1].split('+')[-1]
        formats[fmt_name] = OutputFormat(
            name=fmt_name,
            kind=base.kind if base and not fmt_doc.mediatype else _infer_output_kind(media_type),
            media_type=media_type,
            base_name=fmt_doc.basename or (base.base_name if base else 'index'),
            extension=fmt_doc.extension or (base.extension if base else subtype),
        )
    return freeze(formats)


def _format_names(value: Any, key: str, formats: Mapping[str, OutputFormat]) -> Tuple[str, ...]:
    names = []
    for name in validate_config(NAME_LIST, value, key):
        upper = name.upper()
        if upper not in formats:
            raise UnknownOutputFormatError(key, f"unknown output format '{name}'")
        if upper not in names:
            names.append(upper)
    return tuple(names)


def parse_outputs(raw: Any, present: bool, formats: Mapping[str, OutputFormat]) -> Tuple[Mapping[str, Tuple[str, ...]], Tuple[str, ...]]:
    """返回 (页面类型 -> 格式列表, 全局格式列表)。"""
    if not present:
        return freeze({}), DEFAULT_OUTPUT_LIST
    if raw is None:
        return freeze({}), ()

    if isinstance(raw, (list, str)):
        return freeze({}), _format_names(raw, 'outputs', formats)

    per_kind = {}
    global_list: List[str] = []
    for kind_name, names in validate_config(KIND_TABLE, raw, 'outputs').items():
        key = f"outputs.{kind_name}"
        kind = KIND_ALIASES.get(kind_name.lower())
        if kind is None:
            raise InvalidConfigValueError(key, f"unknown page kind '{kind_name}'")
        resolved = _format_names(names, key, formats)
        per_kind[kind.value] = resolved
        global_list.extend(n for n in resolved if n not in global_list)
    return freeze(per_kind), tuple(global_list)


def parse_disable_kinds(names: Tuple[str, ...], formats: Mapping[str, OutputFormat]) -> frozenset:
    disabled = set()
    for i, name in enumerate(names):
        lower = name.lower()
        if lower in KIND_ALIASES:
            disabled.add(KIND_ALIASES[lower].value)
        elif name.upper() == 'HTML':
            raise InvalidConfigValueError(f"disableKinds[{i}]", "the HTML output format cannot be disabled")
        elif name.upper() in formats:
            disabled.add(name.upper())
        elif lower in EXTERNAL_KINDS:
            logger.debug("disableKinds: '%s' is handled by the renderer, ignored", name)
        else:
            raise InvalidConfigValueError(f"disableKinds[{i}]", f"unknown kind '{name}'")
    return frozenset(disabled)


# --- 入口 ---

def parse_site_config(data: Mapping[str, Any], base_dir: str = '.', source: str = '') -> SiteConfig:
    """把已解析的 YAML 文档转换为不可变的 SiteConfig。"""
    cfg = _lower_keys(data)
    doc = validate_config(SiteSchema, cfg, '')

    languages, default_language = parse_languages(doc, cfg)
    output_formats = parse_output_formats(doc.outputformats)
    outputs, output_list = parse_outputs(cfg.get('outputs'), 'outputs' in cfg, output_formats)

    policy = BuildPolicy(
        include_drafts=doc.builddrafts,
        include_future=doc.buildfuture,
        include_expired=doc.buildexpired,
    )
    settings = {str(k): v for k, v in data.items() if str(k).lower() not in CONSUMED_KEYS}

    site = SiteConfig(
        base_url=doc.baseurl,
        title=doc.title,
        default_language=default_language,
        languages=languages,
        taxonomies=parse_taxonomies(cfg.get('taxonomies'), 'taxonomies' in cfg),
        output_list=output_list,
        output_formats=output_formats,
        outputs=outputs,
        policy=policy,
        language_code=doc.languagecode,
        theme=doc.theme,
        content_dir=os.path.normpath(os.path.join(base_dir, doc.contentdir or CONTENT_DIR)),
        disable_kinds=parse_disable_kinds(doc.disablekinds, output_formats),
        summary_length=doc.summarylength,
        settings=freeze(settings),
        source=source,
    )
    logger.debug(
        "Loaded site config: %d language(s), %d taxonomy kind(s), outputs=%s",
        len(site.languages), len(site.taxonomies), ','.join(site.output_list) or '-',
    )
    return site


def load_site_config(path: str = CONFIG_FILE) -> SiteConfig:
    """读取 YAML 配置文件。"""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except FileNotFoundError:
        raise ConfigFileError(path, "config file not found") from None
    except OSError as e:
        raise ConfigFileError(path, f"cannot read config file: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigFileError(path, f"invalid YAML: {exc}") from exc

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigFileError(path, "top level of the config file must be a mapping")

    return parse_site_config(data, base_dir=os.path.dirname(os.path.abspath(path)), source=path)
