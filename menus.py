# menus.py

import logging
from dataclasses import replace
from typing import Dict, Iterable, List, Sequence, Tuple

from errors import DuplicateMenuEntryError, InvalidConfigValueError, UnknownLanguageError
from models import ContentItem, LanguageConfig, MenuEntry, ResolvedLanguage, SiteConfig, freeze
from permalinks import single_path

logger = logging.getLogger(__name__)


def sort_entries(entries: Iterable[MenuEntry]) -> Tuple[MenuEntry, ...]:
    """按 weight 升序排列；weight 相同时保持声明顺序 (sorted 是稳定排序)。"""
    return tuple(sorted(entries, key=lambda e: e.weight))


def build_menu_tree(entries: Sequence[MenuEntry], key: str) -> Tuple[MenuEntry, ...]:
    """
    把声明顺序的菜单项整理为排好序的树：
    带 parent 的项挂到 identifier (或 name) 与之相同的项下面。
    """
    seen = set()
    for entry in entries:
        pair = (entry.name, entry.url)
        if pair in seen:
            raise DuplicateMenuEntryError(key, f"duplicate menu entry name={entry.name!r} url={entry.url!r}")
        seen.add(pair)

    by_key: Dict[str, MenuEntry] = {}
    for entry in entries:
        by_key.setdefault(entry.key, entry)

    roots: List[MenuEntry] = []
    children_of: Dict[str, List[MenuEntry]] = {}
    for entry in entries:
        if not entry.parent:
            roots.append(entry)
        elif entry.parent not in by_key:
            raise InvalidConfigValueError(key, f"menu entry '{entry.name}' has unknown parent '{entry.parent}'")
        else:
            children_of.setdefault(entry.parent, []).append(entry)

    placed = [0]

    def attach(entry: MenuEntry) -> MenuEntry:
        placed[0] += 1
        # 同名项只有第一个接收子项
        children = children_of.get(entry.key, []) if by_key[entry.key] is entry else []
        return replace(entry, children=tuple(attach(child) for child in sort_entries(children)))

    tree = tuple(attach(entry) for entry in sort_entries(roots))
    if placed[0] != len(entries):
        raise InvalidConfigValueError(key, "menu entries form a parent cycle")
    return tree


def check_content_languages(site: SiteConfig, items: Iterable[ContentItem]) -> None:
    """内容引用了未配置的语言属于站点级配置错误。"""
    for item in items:
        if site.language(item.language) is None:
            raise UnknownLanguageError(item.language, key='languages', path=item.path)


def resolve_language(site: SiteConfig, lang: LanguageConfig, items: Sequence[ContentItem]) -> ResolvedLanguage:
    menus: Dict[str, List[MenuEntry]] = {name: list(entries) for name, entries in lang.menus.items()}

    # 页面 front-matter 中声明的菜单项排在配置项之后
    for item in items:
        if item.language != lang.code:
            continue
        for menu_name, entry in item.menus.items():
            menus.setdefault(menu_name, []).append(replace(entry, url=single_path(site, item)))

    resolved = {
        name: build_menu_tree(entries, f"languages.{lang.code}.menu.{name}")
        for name, entries in sorted(menus.items())
    }
    return ResolvedLanguage(
        code=lang.code,
        name=lang.name,
        weight=lang.weight,
        direction=lang.direction,
        title=lang.title or site.title,
        is_default=(lang.code == site.default_language),
        menus=freeze(resolved),
    )


def resolve_languages(site: SiteConfig, items: Sequence[ContentItem]) -> Tuple[ResolvedLanguage, ...]:
    """
    为每个启用的语言解析菜单。
    没有任何内容的语言同样保留；被禁用的语言不出现在结果中。
    """
    check_content_languages(site, items)

    present = {item.language for item in items}
    active = sorted(site.active_languages, key=lambda lang: (lang.weight, lang.code))
    resolved = []
    for lang in active:
        if lang.code not in present:
            logger.debug("Language '%s' has no content", lang.code)
        resolved.append(resolve_language(site, lang, items))

    logger.info("Resolved %d language(s): %s", len(resolved), ', '.join(r.code for r in resolved))
    return tuple(resolved)
