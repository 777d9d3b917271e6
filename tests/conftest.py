# tests/conftest.py
import copy
from datetime import datetime, timezone

import pytest
import yaml

from config import parse_site_config
from parser import parse_source

NOW = datetime(2024, 1, 1, tzinfo=timezone.utc)

BASE_CONFIG = {
    'baseURL': 'https://example.org/',
    'title': 'Example blog',
    'languages': {
        'en': {
            'languageName': 'English',
            'weight': 1,
            'menu': {
                'main': [
                    {'name': 'Tags', 'url': 'tags/', 'weight': 10},
                    {'name': 'Archive', 'url': 'archives', 'weight': 5},
                ],
            },
        },
        'fr': {
            'languageName': 'Français',
            'weight': 2,
            'menu': {
                'main': [{'name': 'Archive', 'url': 'archives/', 'weight': 5}],
            },
        },
    },
    'outputs': {'home': ['HTML', 'RSS', 'JSON']},
    'taxonomies': {'category': 'categories', 'tag': 'tags', 'series': 'series'},
}


def make_text(front_matter, body='Some body text.'):
    """拼出一个带 YAML front-matter 的 Markdown 文件内容。"""
    return f"---\n{yaml.safe_dump(front_matter, allow_unicode=True)}---\n{body}\n"


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def site_data():
    """返回基础配置文档的可修改副本。"""
    return copy.deepcopy(BASE_CONFIG)


@pytest.fixture
def make_site(site_data):
    """用基础配置文档生成 SiteConfig，关键字参数覆盖顶层键。"""
    def _make(**overrides):
        data = copy.deepcopy(site_data)
        data.update(overrides)
        return parse_site_config(data)
    return _make


@pytest.fixture
def site(make_site):
    return make_site()


@pytest.fixture
def source():
    """在内存中用 front-matter 和正文构造 ContentSource (不写文件)。"""
    def _source(path, body='Some body text.', **front_matter):
        front_matter.setdefault('title', path)
        front_matter.setdefault('date', '2023-06-01')
        return parse_source(path, make_text(front_matter, body))
    return _source


@pytest.fixture
def write_site(tmp_path):
    """把 config.yml 和内容文件写入临时站点目录，返回配置文件路径。"""
    def _write(config_data, files):
        (tmp_path / 'config.yml').write_text(yaml.safe_dump(config_data), encoding='utf-8')
        content = tmp_path / 'content'
        content.mkdir(exist_ok=True)
        for rel_path, text in files.items():
            target = content / rel_path
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(text, encoding='utf-8')
        return tmp_path / 'config.yml'
    return _write
