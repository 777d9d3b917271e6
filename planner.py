# planner.py

import hashlib
import json
import logging
import threading
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from errors import BuildCancelled, ContentError, PlanConsistencyError
from menus import resolve_languages
from models import (
    ContentItem,
    MenuEntry,
    OutputFormat,
    OutputKind,
    PageKind,
    PagePlan,
    ResolvedLanguage,
    SiteConfig,
    TaxonomyTerm,
    freeze,
    thaw,
)
from outputs import resolve_outputs
from parser import ContentSource, discover_sources, load_content
from permalinks import home_path, section_path, single_path, taxonomy_path, term_path
from taxonomy import resolve_taxonomies

logger = logging.getLogger(__name__)

MAX_WORKERS = 4


def _menu_to_dict(entry: MenuEntry) -> dict:
    return {
        'name': entry.name,
        'url': entry.url,
        'weight': entry.weight,
        'identifier': entry.identifier,
        'parent': entry.parent,
        'pre': entry.pre,
        'title': entry.title,
        'children': [_menu_to_dict(child) for child in entry.children],
    }


@dataclass(frozen=True)
class BuildPlan:
    """交给外部渲染阶段的只读构建计划。"""
    site: Mapping[str, Any]
    languages: Tuple[ResolvedLanguage, ...]
    taxonomies: Mapping[str, Mapping[str, TaxonomyTerm]]
    outputs: Mapping[PageKind, Tuple[OutputFormat, ...]]
    pages: Tuple[PagePlan, ...]
    content_index: Tuple[ContentItem, ...]

    def language(self, code: str) -> Optional[ResolvedLanguage]:
        for lang in self.languages:
            if lang.code == code:
                return lang
        return None

    def pages_of(self, kind: PageKind, language: Optional[str] = None) -> Tuple[PagePlan, ...]:
        return tuple(
            p for p in self.pages
            if p.kind == kind and (language is None or p.language == language)
        )

    def to_dict(self) -> dict:
        base_url = self.site.get('base_url', '')
        return {
            'site': thaw(self.site),
            'languages': [
                {
                    'code': lang.code,
                    'name': lang.name,
                    'title': lang.title,
                    'weight': lang.weight,
                    'direction': lang.direction,
                    'is_default': lang.is_default,
                    'menus': {
                        name: [_menu_to_dict(e) for e in entries]
                        for name, entries in lang.menus.items()
                    },
                }
                for lang in self.languages
            ],
            'taxonomies': {
                kind: {
                    name: {'slug': term.slug, 'items': list(term.paths)}
                    for name, term in terms.items()
                }
                for kind, terms in self.taxonomies.items()
            },
            'outputs': {
                kind.value: [
                    {'name': f.name, 'kind': f.kind.value, 'media_type': f.media_type, 'filename': f.filename}
                    for f in formats
                ]
                for kind, formats in self.outputs.items()
            },
            'pages': [
                dict(page.to_dict(), permalink=f"{base_url.rstrip('/')}{page.path}" if base_url else page.path)
                for page in self.pages
            ],
            'content_index': [item.to_dict() for item in self.content_index],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, indent=2, sort_keys=True, default=str)

    def fingerprint(self) -> str:
        """计划内容的 SHA256；相同输入得到相同的指纹。"""
        return hashlib.sha256(self.to_json().encode('utf-8')).hexdigest()


def site_info(site: SiteConfig) -> Mapping[str, Any]:
    return freeze({
        'base_url': site.base_url,
        'title': site.title,
        'language_code': site.language_code,
        'theme': site.theme,
        'default_language': site.default_language,
        'policy': {
            'include_drafts': site.policy.include_drafts,
            'include_future': site.policy.include_future,
            'include_expired': site.policy.include_expired,
        },
        'taxonomies': [{'singular': k.singular, 'plural': k.plural} for k in site.taxonomies],
        'settings': site.settings,
    })


# -------------------------------------------------------------------------
# 并行阶段 (fan-out / fan-in)
# -------------------------------------------------------------------------

def run_stages(
    tasks: Dict[str, Callable[[], Any]],
    cancel: threading.Event,
    max_workers: int = MAX_WORKERS,
) -> Dict[str, Any]:
    """
    并行执行互不依赖的阶段并等待全部完成。
    任一阶段失败：设置 cancel 事件、取消尚未开始的阶段，等运行中的阶段退出后
    按声明顺序抛出第一个真实错误 (BuildCancelled 只是连带结果)。
    """
    started = time.time()
    with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='siteplan') as executor:
        futures = {name: executor.submit(fn) for name, fn in tasks.items()}
        done, pending = wait(futures.values(), return_when=FIRST_EXCEPTION)

        if any(f.exception() is not None for f in done):
            cancel.set()
            for f in pending:
                f.cancel()
            wait(pending)
            errors = [
                (name, f.exception()) for name, f in futures.items()
                if not f.cancelled() and f.exception() is not None
            ]
            name, error = next(
                ((n, e) for n, e in errors if not isinstance(e, BuildCancelled)),
                errors[0],
            )
            logger.error("Stage '%s' failed: %s", name, error)
            raise error

    logger.debug("Stages %s finished in %.3fs", ', '.join(tasks), time.time() - started)
    return {name: f.result() for name, f in futures.items()}


# -------------------------------------------------------------------------
# 组装与一致性检查
# -------------------------------------------------------------------------

def _plan_pages(
    site: SiteConfig,
    items: Sequence[ContentItem],
    taxonomies: Mapping[str, Mapping[str, TaxonomyTerm]],
    languages: Sequence[ResolvedLanguage],
    outputs: Mapping[PageKind, Tuple[OutputFormat, ...]],
) -> List[PagePlan]:
    pages: List[PagePlan] = []
    for lang in languages:
        code = lang.code
        lang_items = [item for item in items if item.language == code]

        if PageKind.HOME in outputs:
            pages.append(PagePlan(PageKind.HOME, code, home_path(site, code), outputs[PageKind.HOME]))

        if PageKind.LIST in outputs:
            for section in sorted({item.section for item in lang_items if item.section}):
                pages.append(PagePlan(
                    PageKind.LIST, code, section_path(site, code, section),
                    outputs[PageKind.LIST], section=section,
                ))

        if PageKind.SINGLE in outputs:
            for item in lang_items:
                pages.append(PagePlan(
                    PageKind.SINGLE, code, single_path(site, item),
                    outputs[PageKind.SINGLE], section=item.section, source=item.path,
                ))

        for kind in site.taxonomies:
            plural = kind.plural
            if PageKind.TAXONOMY in outputs:
                pages.append(PagePlan(
                    PageKind.TAXONOMY, code, taxonomy_path(site, code, plural),
                    outputs[PageKind.TAXONOMY], taxonomy=plural,
                ))
            if PageKind.TERM in outputs:
                for term in taxonomies.get(plural, {}).values():
                    if any(item.language == code for item in term.items):
                        pages.append(PagePlan(
                            PageKind.TERM, code, term_path(site, code, plural, term.slug),
                            outputs[PageKind.TERM], taxonomy=plural, term=term.name,
                        ))
    return pages


def _check_page_paths(pages: Sequence[PagePlan]) -> None:
    """两篇内容生成同一个 URL 属于内容错误；其他冲突只记录警告。"""
    owners: Dict[str, PagePlan] = {}
    for page in pages:
        other = owners.get(page.path)
        if other is None:
            owners[page.path] = page
            continue
        if page.kind == PageKind.SINGLE and other.kind == PageKind.SINGLE:
            raise ContentError(page.source, f"page URL {page.path} is already used by {other.source}")
        logger.warning("Page URL %s is produced by both a %s and a %s page", page.path, other.kind.value, page.kind.value)


def verify_plan(plan: BuildPlan) -> None:
    """引用一致性检查；失败说明上游阶段有逻辑错误。"""
    indexed = {}
    for item in plan.content_index:
        if item.path in indexed:
            raise PlanConsistencyError(f"content item {item.path} appears twice in the content index")
        indexed[item.path] = item

    language_codes = {lang.code for lang in plan.languages}
    for item in plan.content_index:
        if item.language not in language_codes:
            raise PlanConsistencyError(f"content item {item.path} uses language '{item.language}' missing from the plan")

    for kind, terms in plan.taxonomies.items():
        for name, term in terms.items():
            if not term.items:
                raise PlanConsistencyError(f"taxonomy term {kind}/{name} has no content")
            for path in term.paths:
                if path not in indexed:
                    raise PlanConsistencyError(f"taxonomy term {kind}/{name} references {path} which is not in the content index")

    for page in plan.pages:
        if page.kind not in plan.outputs:
            raise PlanConsistencyError(f"page {page.path} has kind '{page.kind.value}' with no output targets")
        if page.language not in language_codes:
            raise PlanConsistencyError(f"page {page.path} uses language '{page.language}' missing from the plan")
        if not page.output_formats or page.output_formats[0].kind != OutputKind.HYPERTEXT:
            raise PlanConsistencyError(f"page {page.path} does not start with a hypertext output")
        if page.kind == PageKind.SINGLE and page.source not in indexed:
            raise PlanConsistencyError(f"page {page.path} renders {page.source} which is not in the content index")
        if page.kind == PageKind.TERM and page.term not in plan.taxonomies.get(page.taxonomy, {}):
            raise PlanConsistencyError(f"page {page.path} lists unknown term {page.taxonomy}/{page.term}")

    for kind in plan.outputs:
        if not any(page.kind == kind for page in plan.pages):
            logger.debug("Output targets for '%s' have no pages in this build", kind.value)


def assemble(
    site: SiteConfig,
    items: Sequence[ContentItem],
    taxonomies: Mapping[str, Mapping[str, TaxonomyTerm]],
    languages: Sequence[ResolvedLanguage],
    outputs: Mapping[PageKind, Tuple[OutputFormat, ...]],
) -> BuildPlan:
    """把各阶段的结果组合成 BuildPlan，并在返回前完成一致性检查。"""
    pages = _plan_pages(site, items, taxonomies, languages, outputs)
    _check_page_paths(pages)

    plan = BuildPlan(
        site=site_info(site),
        languages=tuple(languages),
        taxonomies=taxonomies,
        outputs=MappingProxyType(dict(outputs)),
        pages=tuple(pages),
        content_index=tuple(items),
    )
    verify_plan(plan)
    logger.info(
        "Assembled build plan: %d language(s), %d page(s), %d content item(s)",
        len(plan.languages), len(plan.pages), len(plan.content_index),
    )
    return plan


def build_plan(
    site: SiteConfig,
    sources: Optional[Sequence[ContentSource]] = None,
    now: Optional[datetime] = None,
    max_workers: int = MAX_WORKERS,
) -> BuildPlan:
    """
    完整的解析流程：
      阶段 A: 加载内容 ∥ 解析输出格式
      阶段 B: 分类分组 ∥ 语言与菜单
    然后在单一汇合点组装计划。任何阶段失败都不会产生部分计划。
    """
    cancel = threading.Event()

    def load() -> Tuple[ContentItem, ...]:
        found = sources if sources is not None else discover_sources(site.content_dir, cancel)
        return load_content(found, site, now=now, cancel=cancel)

    stage_a = run_stages({
        'content': load,
        'outputs': lambda: resolve_outputs(site),
    }, cancel, max_workers)
    items = stage_a['content']

    stage_b = run_stages({
        'taxonomies': lambda: resolve_taxonomies(items, site.taxonomies),
        'languages': lambda: resolve_languages(site, items),
    }, cancel, max_workers)

    return assemble(site, items, stage_b['taxonomies'], stage_b['languages'], stage_a['outputs'])
