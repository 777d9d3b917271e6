# permalinks.py

import re

from models import ContentItem, SiteConfig


def make_internal_url(path: str, prefix: str = '') -> str:
    """生成规范化的内部 URL (Pretty URL: /slug/)。"""
    normalized_path = path if path.startswith('/') else f'/{path}'
    normalized_path = re.sub(r'/{2,}', '/', f'{prefix}{normalized_path}')
    if not normalized_path.endswith('/'):
        normalized_path = f'{normalized_path}/'
    return normalized_path


def language_prefix(site: SiteConfig, language: str) -> str:
    """主语言位于站点根目录，其他语言位于 /<code>/ 子目录。"""
    if language == site.default_language:
        return ''
    return f'/{language}'


def home_path(site: SiteConfig, language: str) -> str:
    return make_internal_url('/', language_prefix(site, language))


def section_path(site: SiteConfig, language: str, section: str) -> str:
    return make_internal_url(section, language_prefix(site, language))


def single_path(site: SiteConfig, item: ContentItem) -> str:
    path = f'{item.section}/{item.slug}' if item.section else item.slug
    return make_internal_url(path, language_prefix(site, item.language))


def taxonomy_path(site: SiteConfig, language: str, plural: str) -> str:
    return make_internal_url(plural, language_prefix(site, language))


def term_path(site: SiteConfig, language: str, plural: str, term_slug: str) -> str:
    return make_internal_url(f'{plural}/{term_slug}', language_prefix(site, language))
