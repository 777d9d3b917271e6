import json
import logging
import re
import threading
from dataclasses import replace

import pytest

from config import load_site_config
from errors import BuildCancelled, ContentError, DuplicateTermSlugError, NoOutputFormatsError, PlanConsistencyError, UnknownLanguageError
from models import PageKind
from planner import build_plan, run_stages, verify_plan
from tests.conftest import BASE_CONFIG, NOW, make_text


@pytest.fixture
def sources(source):
    return [
        source('posts/python.md', date='2023-05-01', tags=['Python', 'python', ' PYTHON '], categories=['dev']),
        source('posts/maps.md', date='2023-06-01', tags=['Cartography'], series=['maps']),
        source('posts/maps.fr.md', date='2023-06-01', tags=['Cartographie']),
        source('posts/draft.md', draft=True, tags=['secret', 'python']),
        source('about.md', title='About', menu={'main': {'weight': 7}}),
    ]


@pytest.fixture
def plan(site, sources):
    return build_plan(site, sources=sources, now=NOW)


def test_plan_is_deterministic(site, sources):
    first = build_plan(site, sources=sources, now=NOW)
    second = build_plan(site, sources=sources, now=NOW, max_workers=1)
    assert first.to_json() == second.to_json()
    assert first.fingerprint() == second.fingerprint()


def test_fingerprint_changes_with_content(site, sources, source):
    before = build_plan(site, sources=sources, now=NOW)
    after = build_plan(site, sources=sources + [source('posts/new.md')], now=NOW)
    assert before.fingerprint() != after.fingerprint()


def test_draft_is_absent_everywhere(plan):
    assert 'posts/draft.md' not in {item.path for item in plan.content_index}
    assert all(not item.draft for item in plan.content_index)
    assert 'secret' not in plan.taxonomies['tags']
    assert 'posts/draft.md' not in plan.taxonomies['tags']['python'].paths
    assert all(page.source != 'posts/draft.md' for page in plan.pages)


def test_drafts_included_when_requested(site, sources):
    plan = build_plan(site.with_policy(include_drafts=True), sources=sources, now=NOW)
    assert plan.taxonomies['tags']['secret'].paths == ('posts/draft.md',)


def test_taxonomy_terms_reference_content_index(plan):
    indexed = {item.path for item in plan.content_index}
    for terms in plan.taxonomies.values():
        for term in terms.values():
            assert set(term.paths) <= indexed
    assert plan.taxonomies['tags']['python'].paths == ('posts/python.md',)


def test_menus_and_languages(plan):
    en = plan.language('en')
    assert [e.name for e in en.menu] == ['Archive', 'About', 'Tags']
    assert en.menu[1].url == '/about/'
    assert [lang.code for lang in plan.languages] == ['en', 'fr']


def test_pages(plan):
    assert [p.path for p in plan.pages_of(PageKind.HOME)] == ['/', '/fr/']
    assert [p.path for p in plan.pages_of(PageKind.LIST, 'en')] == ['/posts/']
    singles = {p.source: p.path for p in plan.pages_of(PageKind.SINGLE)}
    assert singles == {
        'posts/maps.md': '/posts/maps/',
        'posts/maps.fr.md': '/fr/posts/maps/',
        'posts/python.md': '/posts/python/',
        'about.md': '/about/',
    }
    terms = {p.path for p in plan.pages_of(PageKind.TERM)}
    assert '/tags/python/' in terms
    assert '/fr/tags/cartographie/' in terms
    assert '/fr/tags/python/' not in terms
    assert [f.name for f in plan.pages_of(PageKind.HOME)[0].output_formats] == ['HTML', 'RSS', 'JSON']


def test_to_dict_is_json_ready(plan):
    data = json.loads(plan.to_json())
    assert data['site']['base_url'] == 'https://example.org/'
    home = next(p for p in data['pages'] if p['kind'] == 'home' and p['language'] == 'fr')
    assert home['permalink'] == 'https://example.org/fr/'
    assert data['outputs']['single'][0]['filename'] == 'index.html'
    assert data['taxonomies']['tags']['python']['items'] == ['posts/python.md']


def test_empty_output_list_fails_before_assembly(make_site, sources):
    with pytest.raises(NoOutputFormatsError):
        build_plan(make_site(outputs=[]), sources=sources, now=NOW)


def test_unknown_language_names_file_and_code(site, source):
    with pytest.raises(UnknownLanguageError) as exc:
        build_plan(site, sources=[source('posts/hallo.md', language='de')], now=NOW)
    assert exc.value.code == 'de'
    assert exc.value.path == 'posts/hallo.md'


def test_unknown_language_on_draft_still_fails(site, source):
    with pytest.raises(UnknownLanguageError) as exc:
        build_plan(site, sources=[source('a.md'), source('posts/hallo.md', language='de', draft=True)], now=NOW)
    assert exc.value.path == 'posts/hallo.md'


def test_term_slug_collision_fails_the_build(site, source):
    with pytest.raises(DuplicateTermSlugError, match=re.escape("'c' and 'c++'")):
        build_plan(site, sources=[source('posts/a.md', tags=['C++']), source('posts/b.md', tags=['C'])], now=NOW)


def test_single_url_collision_is_a_content_error(site, source):
    with pytest.raises(ContentError, match='already used'):
        build_plan(site, sources=[source('posts/a.md'), source('posts/2023-01-01-a.md')], now=NOW)


def test_other_url_collisions_only_warn(site, source, caplog):
    with caplog.at_level(logging.WARNING, logger='planner'):
        plan = build_plan(site, sources=[source('tags/index-of-tags.md')], now=NOW)
    assert plan.pages_of(PageKind.LIST, 'en')[0].path == '/tags/'
    assert 'produced by both' in caplog.text


def test_disabled_kinds_produce_no_pages(make_site, sources):
    plan = build_plan(make_site(disableKinds=['term', 'section']), sources=sources, now=NOW)
    assert not plan.pages_of(PageKind.TERM)
    assert not plan.pages_of(PageKind.LIST)
    assert plan.pages_of(PageKind.TAXONOMY)


def test_verify_plan_detects_dangling_references(plan):
    with pytest.raises(PlanConsistencyError):
        verify_plan(replace(plan, content_index=plan.content_index[1:]))


def test_verify_plan_requires_hypertext_first(plan):
    page = replace(plan.pages[0], output_formats=plan.pages[0].output_formats[1:])
    with pytest.raises(PlanConsistencyError, match='hypertext'):
        verify_plan(replace(plan, pages=(page,) + plan.pages[1:]))


def test_run_stages_returns_results():
    assert run_stages({'a': lambda: 1, 'b': lambda: 2}, threading.Event()) == {'a': 1, 'b': 2}


def test_run_stages_cancels_and_raises_the_real_error():
    cancel = threading.Event()

    def waits_for_cancel():
        if cancel.wait(5):
            raise BuildCancelled('stopped')
        return 'finished'

    def fails():
        raise ValueError('boom')

    with pytest.raises(ValueError, match='boom'):
        run_stages({'slow': waits_for_cancel, 'broken': fails}, cancel, max_workers=2)
    assert cancel.is_set()


def test_build_plan_from_disk(write_site):
    config_path = write_site(BASE_CONFIG, {
        'posts/2023-05-02-hello.md': make_text({'title': 'Hello', 'date': '2023-05-02', 'tags': ['Intro']}),
        'posts/_index.md': make_text({'title': 'Posts'}),
        'posts/hello-again.fr.md': make_text({'title': 'Re', 'date': '2023-05-03'}),
    })
    plan = build_plan(load_site_config(str(config_path)), now=NOW)
    assert [item.path for item in plan.content_index] == ['posts/hello-again.fr.md', 'posts/2023-05-02-hello.md']
    assert plan.pages_of(PageKind.SINGLE, 'en')[0].path == '/posts/hello/'
    assert plan.content_index[1].digest


def test_missing_content_dir_fails(make_site, tmp_path):
    site = replace(make_site(), content_dir=str(tmp_path / 'nothing'))
    with pytest.raises(ContentError):
        build_plan(site, now=NOW)
