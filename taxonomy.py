# taxonomy.py

import logging
from typing import Dict, Iterable, List, Mapping, Sequence

from config import TAXONOMY_KEY_RE
from errors import DuplicateTermSlugError, UnknownTaxonomyError
from models import ContentItem, TaxonomyKind, TaxonomyTerm, freeze
from parser import tag_to_slug

logger = logging.getLogger(__name__)


def normalize_term(name: str) -> str:
    """'  Python ' / 'PYTHON' / 'python' -> 'python'；内部连续空白合并为一个空格。"""
    return ' '.join(str(name).split()).lower()


def _check_kind(kind) -> str:
    """接受 TaxonomyKind 或复数名称字符串。"""
    plural = kind.plural if isinstance(kind, TaxonomyKind) else kind
    if not isinstance(plural, str) or not TAXONOMY_KEY_RE.match(plural):
        raise UnknownTaxonomyError(f"taxonomies.{plural}", f"invalid taxonomy name {plural!r}")
    return plural


def resolve_taxonomies(
    items: Sequence[ContentItem],
    kinds: Iterable[TaxonomyKind],
) -> Mapping[str, Mapping[str, TaxonomyTerm]]:
    """
    按分类 (tags, categories, series ...) 对内容分组：

      { "tags": { "python": TaxonomyTerm(items=(...)) , ... }, ... }

    每个条目在同一个词条下只出现一次，保持 items 的原有顺序；
    没有任何词条的分类仍然出现在结果中 (值为空映射)。
    """
    result: Dict[str, Mapping[str, TaxonomyTerm]] = {}

    for kind in kinds:
        plural = _check_kind(kind)
        if plural in result:
            raise UnknownTaxonomyError(f"taxonomies.{plural}", f"taxonomy '{plural}' declared twice")

        groups: Dict[str, List[ContentItem]] = {}
        for item in items:
            for raw in item.terms.get(plural, ()):
                term = normalize_term(raw)
                if not term:
                    continue
                members = groups.setdefault(term, [])
                if not members or members[-1].path != item.path:
                    members.append(item)

        # 不同词条不能共用一个页面 URL
        slugs: Dict[str, str] = {}
        owners: Dict[str, str] = {}
        for term in sorted(groups):
            slug = tag_to_slug(term) or term
            if slug in owners:
                raise DuplicateTermSlugError(groups[term][0].path, plural, owners[slug], term, slug)
            owners[slug] = term
            slugs[term] = slug

        result[plural] = freeze({
            term: TaxonomyTerm(kind=plural, name=term, slug=slugs[term], items=tuple(groups[term]))
            for term in sorted(groups)
        })
        logger.debug("Taxonomy '%s': %d term(s)", plural, len(groups))

    return freeze(result)
