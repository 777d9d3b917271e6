# models.py

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, FrozenSet, Mapping, Optional, Tuple

EMPTY_MAPPING: Mapping[str, Any] = MappingProxyType({})


def _empty_mapping() -> Mapping[str, Any]:
    return EMPTY_MAPPING


# --- 只读化辅助函数 ---

def freeze(value: Any) -> Any:
    """把 YAML 解析出的 dict/list 递归转换为只读结构。"""
    if isinstance(value, Mapping):
        return MappingProxyType({str(k): freeze(v) for k, v in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    if isinstance(value, (set, frozenset)):
        return frozenset(freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """freeze 的逆操作，输出可直接 json.dumps 的普通对象。"""
    if isinstance(value, Mapping):
        return {str(k): thaw(v) for k, v in value.items()}
    if isinstance(value, (frozenset, set)):
        return sorted(thaw(v) for v in value)
    if isinstance(value, (list, tuple)):
        return [thaw(v) for v in value]
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return value


# --- 枚举 ---

class PageKind(str, Enum):
    HOME = 'home'
    LIST = 'list'
    SINGLE = 'single'
    TAXONOMY = 'taxonomy'
    TERM = 'term'


class OutputKind(str, Enum):
    HYPERTEXT = 'hypertext'
    FEED = 'feed'
    INDEX = 'index'


# --- 配置模型 ---

@dataclass(frozen=True)
class BuildPolicy:
    include_drafts: bool = False
    include_future: bool = False
    include_expired: bool = False


@dataclass(frozen=True)
class MenuEntry:
    name: str
    url: str
    weight: int = 0
    identifier: str = ''
    parent: str = ''
    pre: str = ''
    title: str = ''
    children: Tuple['MenuEntry', ...] = ()

    @property
    def key(self) -> str:
        return self.identifier or self.name


@dataclass(frozen=True)
class LanguageConfig:
    code: str
    name: str
    weight: int = 0
    direction: str = 'ltr'
    title: str = ''
    disabled: bool = False
    menus: Mapping[str, Tuple[MenuEntry, ...]] = field(default_factory=_empty_mapping)


@dataclass(frozen=True)
class TaxonomyKind:
    singular: str
    plural: str


@dataclass(frozen=True)
class OutputFormat:
    name: str
    kind: OutputKind
    media_type: str
    base_name: str = 'index'
    extension: str = 'html'

    @property
    def filename(self) -> str:
        return f"{self.base_name}.{self.extension}"


@dataclass(frozen=True)
class SiteConfig:
    """一次构建使用的完整站点配置 (不可变，显式传入各个解析阶段)。"""
    base_url: str
    title: str
    default_language: str
    languages: Tuple[LanguageConfig, ...]
    taxonomies: Tuple[TaxonomyKind, ...]
    output_list: Tuple[str, ...]
    output_formats: Mapping[str, OutputFormat]
    outputs: Mapping[str, Tuple[str, ...]] = field(default_factory=_empty_mapping)
    policy: BuildPolicy = BuildPolicy()
    language_code: str = ''
    theme: str = ''
    content_dir: str = 'content'
    disable_kinds: FrozenSet[str] = frozenset()
    summary_length: int = 70
    settings: Mapping[str, Any] = field(default_factory=_empty_mapping)
    source: str = ''

    def language(self, code: str) -> Optional[LanguageConfig]:
        for lang in self.languages:
            if lang.code == code:
                return lang
        return None

    @property
    def active_languages(self) -> Tuple[LanguageConfig, ...]:
        return tuple(lang for lang in self.languages if not lang.disabled)

    def with_policy(self, **flags: Optional[bool]) -> 'SiteConfig':
        """返回覆盖了构建策略的新配置；值为 None 的参数保持原样。"""
        changes = {k: v for k, v in flags.items() if v is not None}
        if not changes:
            return self
        return replace(self, policy=replace(self.policy, **changes))


# --- 内容模型 ---

@dataclass(frozen=True)
class ContentItem:
    path: str
    title: str
    date: datetime
    language: str
    draft: bool = False
    body: str = field(default='', repr=False)
    slug: str = ''
    section: str = ''
    summary: str = ''
    publish_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    lastmod: Optional[datetime] = None
    weight: int = 0
    terms: Mapping[str, Tuple[str, ...]] = field(default_factory=_empty_mapping)
    menus: Mapping[str, MenuEntry] = field(default_factory=_empty_mapping)
    params: Mapping[str, Any] = field(default_factory=_empty_mapping, repr=False)
    word_count: int = 0
    reading_time: int = 0
    digest: str = ''

    def __hash__(self) -> int:
        # 映射字段不可哈希；路径在一次构建中唯一
        return hash(self.path)

    @property
    def tags(self) -> FrozenSet[str]:
        return frozenset(self.terms.get('tags', ()))

    @property
    def effective_date(self) -> datetime:
        return self.publish_date or self.date

    def to_dict(self) -> dict:
        return {
            'path': self.path,
            'title': self.title,
            'date': self.date.isoformat(),
            'publish_date': thaw(self.publish_date),
            'expiry_date': thaw(self.expiry_date),
            'lastmod': thaw(self.lastmod),
            'language': self.language,
            'draft': self.draft,
            'slug': self.slug,
            'section': self.section,
            'summary': self.summary,
            'weight': self.weight,
            'terms': thaw(self.terms),
            'params': thaw(self.params),
            'word_count': self.word_count,
            'reading_time': self.reading_time,
            'digest': self.digest,
        }


@dataclass(frozen=True)
class TaxonomyTerm:
    kind: str
    name: str
    slug: str
    items: Tuple[ContentItem, ...] = ()

    @property
    def paths(self) -> Tuple[str, ...]:
        return tuple(item.path for item in self.items)


@dataclass(frozen=True)
class ResolvedLanguage:
    code: str
    name: str
    weight: int
    direction: str
    title: str = ''
    is_default: bool = False
    menus: Mapping[str, Tuple[MenuEntry, ...]] = field(default_factory=_empty_mapping)

    @property
    def menu(self) -> Tuple[MenuEntry, ...]:
        """主导航菜单 (main)。"""
        return self.menus.get('main', ())


@dataclass(frozen=True)
class PagePlan:
    kind: PageKind
    language: str
    path: str
    output_formats: Tuple[OutputFormat, ...]
    section: str = ''
    taxonomy: str = ''
    term: str = ''
    source: str = ''

    def to_dict(self) -> dict:
        return {
            'kind': self.kind.value,
            'language': self.language,
            'path': self.path,
            'output_formats': [f.name for f in self.output_formats],
            'section': self.section,
            'taxonomy': self.taxonomy,
            'term': self.term,
            'source': self.source,
        }
