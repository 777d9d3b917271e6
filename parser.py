# parser.py

import errno
import hashlib
import logging
import os
import re
import threading
import unicodedata
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import markdown
import yaml
from bs4 import BeautifulSoup
from pydantic import Field, ValidationError, ValidationInfo, field_validator
from tenacity import before_sleep_log, retry, retry_if_exception, stop_after_attempt, wait_exponential

import config
from errors import BuildCancelled, ContentError, ContentReadError, MalformedFrontMatterError, UnknownLanguageError
from models import ContentItem, MenuEntry, SiteConfig, freeze
from schema import TERM_LIST, Count, Flag, FrozenSchema, Text, error_location, error_reason

logger = logging.getLogger(__name__)

FRONT_MATTER_RE = re.compile(r"^\ufeff?---\s*\n(.*?)\n---\s*(?:\n|$)", re.DOTALL)
# post.fr.md -> ('post', 'fr')；只有已配置的语言代码才被当作语言后缀
LANG_SUFFIX_RE = re.compile(r'^(?P<stem>.+)\.(?P<lang>[a-z]{2}(?:-[a-z]{2,4})?)$')
DATE_PREFIX_RE = re.compile(r'^(\d{4}-\d{2}-\d{2}-)?(.*)$')
MORE_DIVIDER = '<!--more-->'

TRANSIENT_ERRNOS = {errno.EAGAIN, errno.EINTR, errno.EBUSY}
READ_ATTEMPTS = 3

# 由 build_item 解析为结构化字段的键 (小写)，其余进入 params
KNOWN_FIELDS = {
    'title', 'date', 'draft', 'language', 'lang', 'slug', 'summary',
    'publishdate', 'expirydate', 'lastmod', 'weight', 'menu',
}


@dataclass(frozen=True)
class ContentSource:
    """一个内容文件的原始解析结果：路径、front-matter、正文和文件名中的候选语言后缀。"""
    path: str
    front_matter: Mapping[str, Any] = field(default_factory=dict)
    body: str = field(default='', repr=False)
    language: str = ''
    digest: str = ''


# --- 通用辅助函数 ---

def tag_to_slug(tag_name: str) -> str:
    """
    将标签名转换为 URL 友好的 slug。
    兼容中文、英文及其他国际字符 (Python 3 的 \\w 默认支持 Unicode)。
    """
    slug = tag_name.lower()
    slug = unicodedata.normalize('NFKD', slug)
    slug = re.sub(r'[^\w\s-]', '', slug)
    slug = re.sub(r'[\s_-]+', '-', slug).strip('-')
    return slug


def to_datetime(value: Any) -> datetime:
    """将 datetime / date / ISO 字符串统一为带时区的 datetime (无时区视为 UTC)。"""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, date):
        dt = datetime(value.year, value.month, value.day)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith('Z'):
            text = text[:-1] + '+00:00'
        try:
            dt = datetime.fromisoformat(text)
        except ValueError:
            raise ValueError(f"is not a valid date: {value!r}") from None
    else:
        raise ValueError(f"is not a valid date: {value!r}")

    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def standardize_date(value: Any, path: str, field_name: str) -> datetime:
    try:
        return to_datetime(value)
    except ValueError as exc:
        raise MalformedFrontMatterError(path, field_name, str(exc)) from None


def plain_text(body: str) -> str:
    """把 Markdown 正文转换为纯文本 (仅用于统计字数和摘要)。"""
    if not body.strip():
        return ''
    html = markdown.markdown(body, extensions=config.MARKDOWN_EXTENSIONS, output_format='html5')
    return BeautifulSoup(html, 'html.parser').get_text(' ', strip=True)


# -------------------------------------------------------------------------
# front-matter 模型 (键已转为小写；未声明的键保留在 model_extra 中)
# -------------------------------------------------------------------------

class PageMenuSchema(FrozenSchema):
    name: Text = ''
    weight: Count = 0
    identifier: Text = ''
    parent: Text = ''
    pre: Text = ''


class FrontMatter(FrozenSchema):
    title: str
    date: datetime
    draft: Flag = False
    language: Text = ''
    lang: Text = ''
    slug: Text = ''
    summary: Text = ''
    excerpt: Text = ''
    description: Text = ''
    publishdate: Optional[datetime] = None
    expirydate: Optional[datetime] = None
    lastmod: Optional[datetime] = None
    weight: int = 0
    menu: Dict[str, PageMenuSchema] = Field(default_factory=dict)

    @field_validator('title', mode='before')
    @classmethod
    def check_title(cls, value: Any) -> str:
        if value is None or isinstance(value, (bool, dict, list)) or not str(value).strip():
            raise ValueError("is missing or empty")
        return str(value).strip()

    @field_validator('date', 'publishdate', 'expirydate', 'lastmod', mode='before')
    @classmethod
    def parse_dates(cls, value: Any, info: ValidationInfo) -> Optional[datetime]:
        if value is None or value == '':
            if info.field_name == 'date':
                raise ValueError("is missing")
            return None
        return to_datetime(value)

    @field_validator('weight', mode='before')
    @classmethod
    def check_weight(cls, value: Any) -> int:
        if value is None:
            return 0
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"is not an integer: {value!r}")
        return value

    @field_validator('menu', mode='before')
    @classmethod
    def normalize_menu(cls, value: Any) -> Any:
        """
        页面自己声明的菜单项：
          menu: main
          menu: [main, footer]
          menu: {main: {weight: 3, name: "About"}}
        URL 在 menus.py 中根据页面的永久链接补全。
        """
        if value is None:
            return {}
        if isinstance(value, str):
            value = [value]
        if isinstance(value, list):
            return {str(name): {} for name in value}
        if not isinstance(value, dict):
            raise ValueError(f"must be a menu name or mapping, got {value!r}")
        menus = {}
        for name, opts in value.items():
            if opts is None:
                opts = {}
            if isinstance(opts, dict):
                opts = {str(k).lower(): v for k, v in opts.items()}
            menus[str(name)] = opts
        return menus


def validate_front_matter(front_matter: Mapping[str, Any], path: str) -> FrontMatter:
    try:
        return FrontMatter.model_validate({str(k).lower(): v for k, v in front_matter.items()})
    except ValidationError as exc:
        error = exc.errors()[0]
        raise MalformedFrontMatterError(path, error_location(error), error_reason(error)) from None


def _terms_for(front_matter: Mapping[str, Any], plural: str, path: str) -> Tuple[str, ...]:
    try:
        return TERM_LIST.validate_python(front_matter.get(plural))
    except ValidationError as exc:
        raise MalformedFrontMatterError(path, plural, error_reason(exc.errors()[0])) from None


# -------------------------------------------------------------------------
# 读取与拆分
# -------------------------------------------------------------------------

def _is_transient(exc: BaseException) -> bool:
    return isinstance(exc, OSError) and exc.errno in TRANSIENT_ERRNOS


@retry(
    stop=stop_after_attempt(READ_ATTEMPTS),
    wait=wait_exponential(multiplier=0.05, max=1),
    retry=retry_if_exception(_is_transient),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def _read_text(path: str) -> str:
    with open(path, 'r', encoding='utf-8') as f:
        return f.read()


def read_source_text(path: str) -> str:
    """读取文件；瞬时错误 (EAGAIN / EINTR / EBUSY) 重试，文件缺失或不可读直接失败。"""
    try:
        return _read_text(path)
    except UnicodeDecodeError as e:
        raise ContentReadError(path, f"not valid UTF-8: {e}") from e
    except OSError as e:
        raise ContentReadError(path, f"cannot read file: {e.strerror or e}") from e


def parse_source(path: str, text: str) -> ContentSource:
    """从文件内容中拆出 YAML front-matter 和正文。"""
    match = FRONT_MATTER_RE.match(text)
    if match:
        body = text[len(match.group(0)):]
        try:
            front_matter = yaml.safe_load(match.group(1)) or {}
        except yaml.YAMLError as exc:
            raise MalformedFrontMatterError(path, 'front-matter', f"is not valid YAML: {exc}") from exc
        if not isinstance(front_matter, dict):
            raise MalformedFrontMatterError(path, 'front-matter', "must be a mapping")
    else:
        front_matter = {}
        body = text

    stem = os.path.splitext(os.path.basename(path))[0]
    lang_match = LANG_SUFFIX_RE.match(stem)
    language = lang_match.group('lang') if lang_match else ''

    return ContentSource(
        path=path,
        front_matter=front_matter,
        body=body,
        language=language,
        digest=hashlib.sha256(text.encode('utf-8')).hexdigest(),
    )


def discover_sources(content_dir: str, cancel: Optional[threading.Event] = None) -> List[ContentSource]:
    """递归查找内容目录下的 Markdown 文件 (跳过 _index.* 栏目文件)。"""
    if not os.path.isdir(content_dir):
        raise ContentReadError(content_dir, "content directory not found")

    found = []
    for root, dirs, files in os.walk(content_dir):
        dirs[:] = sorted(d for d in dirs if not d.startswith('.'))
        for name in sorted(files):
            if not name.lower().endswith(config.CONTENT_EXTENSIONS) or name.startswith('.'):
                continue
            if os.path.splitext(name)[0].split('.')[0] == '_index':
                logger.debug("Skipping section file %s", os.path.join(root, name))
                continue
            found.append(os.path.join(root, name))

    sources = []
    for full_path in found:
        if cancel is not None and cancel.is_set():
            raise BuildCancelled("content discovery cancelled")
        relative_path = os.path.relpath(full_path, content_dir).replace('\\', '/')
        text = read_source_text(full_path)
        source = parse_source(relative_path, text)
        sources.append(source)
    logger.info("Discovered %d content file(s) in %s", len(sources), content_dir)
    return sources


# -------------------------------------------------------------------------
# 校验与过滤
# -------------------------------------------------------------------------

def _slug_for(path: str, language_suffix: str) -> str:
    stem = os.path.splitext(os.path.basename(path))[0]
    if language_suffix and stem.endswith(f'.{language_suffix}'):
        stem = stem[:-len(language_suffix) - 1]
    if stem == 'index':
        # 页面包 (posts/my-post/index.md) 使用目录名
        stem = os.path.basename(os.path.dirname(path)) or stem
    slug_match = DATE_PREFIX_RE.match(stem)
    if slug_match and slug_match.group(2):
        stem = slug_match.group(2)
    return tag_to_slug(stem) or stem.lower()


def _summary_for(meta: FrontMatter, body: str, text: str, length: int) -> str:
    explicit = meta.summary or meta.excerpt or meta.description
    if explicit.strip():
        return explicit.strip()
    if MORE_DIVIDER in body:
        return plain_text(body.split(MORE_DIVIDER, 1)[0])
    words = text.split()
    summary = ' '.join(words[:length])
    if len(words) > length:
        summary += ' …'
    return summary


def build_item(source: ContentSource, site: SiteConfig) -> ContentItem:
    """校验一个 ContentSource 并生成强类型的 ContentItem。"""
    path = source.path
    fm = {str(k).lower(): v for k, v in source.front_matter.items()}
    meta = validate_front_matter(fm, path)

    # 文件名后缀 (post.js.md) 只有在是已配置的语言时才表示语言
    suffix = source.language if source.language and site.language(source.language) is not None else ''
    language = (meta.language or meta.lang).strip() or suffix or site.default_language
    if site.language(language) is None:
        raise UnknownLanguageError(language, key='languages', path=path)

    terms = {}
    for kind in site.taxonomies:
        values = _terms_for(fm, kind.plural, path)
        if values:
            terms[kind.plural] = values

    menus = {
        menu_name: MenuEntry(
            name=opts.name or meta.title,
            url='',
            weight=opts.weight,
            identifier=opts.identifier,
            parent=opts.parent,
            pre=opts.pre,
        )
        for menu_name, opts in meta.menu.items()
    }

    parts = path.split('/')
    text = plain_text(source.body)
    word_count = len(text.split())

    taxonomy_keys = {kind.plural for kind in site.taxonomies}
    params = {
        str(k): v for k, v in source.front_matter.items()
        if str(k).lower() not in KNOWN_FIELDS and str(k).lower() not in taxonomy_keys
    }

    return ContentItem(
        path=path,
        title=meta.title,
        date=meta.date,
        language=language,
        draft=meta.draft,
        body=source.body,
        slug=meta.slug.strip() or _slug_for(path, suffix),
        section=parts[0] if len(parts) > 1 else '',
        summary=_summary_for(meta, source.body, text, site.summary_length),
        publish_date=meta.publishdate,
        expiry_date=meta.expirydate,
        lastmod=meta.lastmod,
        weight=meta.weight,
        terms=freeze(terms),
        menus=freeze(menus),
        params=freeze(params),
        word_count=word_count,
        reading_time=(word_count + config.WORDS_PER_MINUTE - 1) // config.WORDS_PER_MINUTE,
        digest=source.digest,
    )


def skip_reason(item: ContentItem, site: SiteConfig, now: datetime) -> Optional[str]:
    """返回内容被跳过的原因；应当发布时返回 None。"""
    policy = site.policy
    if item.draft and not policy.include_drafts:
        return 'draft'
    if item.effective_date > now and not policy.include_future:
        return 'future'
    if item.expiry_date is not None and item.expiry_date <= now and not policy.include_expired:
        return 'expired'
    lang = site.language(item.language)
    if lang is not None and lang.disabled:
        return 'language disabled'
    return None


def load_content(
    sources: Iterable[ContentSource],
    site: SiteConfig,
    now: Optional[datetime] = None,
    cancel: Optional[threading.Event] = None,
) -> Tuple[ContentItem, ...]:
    """
    校验全部内容并按构建策略过滤。
    返回按发布时间倒序、同时间按路径升序排列的 ContentItem 元组。
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    items: List[ContentItem] = []
    seen: Dict[str, bool] = {}
    skipped = 0
    for source in sources:
        if cancel is not None and cancel.is_set():
            raise BuildCancelled("content loading cancelled")
        if source.path in seen:
            raise ContentError(source.path, "duplicate content path")
        seen[source.path] = True

        # 语言、日期等校验在过滤之前完成：草稿中的错误同样是致命的
        item = build_item(source, site)
        reason = skip_reason(item, site, now)
        if reason:
            logger.debug("Skipping %s (%s)", item.path, reason)
            skipped += 1
            continue
        items.append(item)

    items.sort(key=lambda i: i.path)
    items.sort(key=lambda i: i.effective_date, reverse=True)
    logger.info("Loaded %d content item(s), skipped %d", len(items), skipped)
    return tuple(items)
