import pytest

from errors import DuplicateTermSlugError, UnknownTaxonomyError
from models import TaxonomyKind
from parser import load_content
from taxonomy import normalize_term, resolve_taxonomies


def test_normalize_term():
    assert normalize_term('  Open   Data ') == 'open data'
    assert normalize_term('PYTHON') == 'python'


def test_case_variants_collapse_into_one_term(site, source, now):
    items = load_content([source('posts/a.md', tags=['Python', 'python', ' PYTHON '])], site, now=now)
    tags = resolve_taxonomies(items, site.taxonomies)['tags']
    assert list(tags) == ['python']
    assert tags['python'].paths == ('posts/a.md',)
    assert tags['python'].slug == 'python'


def test_terms_sorted_and_items_keep_content_order(site, source, now):
    items = load_content([
        source('a.md', date='2023-01-01', tags=['web', 'Elixir']),
        source('b.md', date='2023-03-01', tags=['elixir']),
    ], site, now=now)
    tags = resolve_taxonomies(items, site.taxonomies)['tags']
    assert list(tags) == ['elixir', 'web']
    assert tags['elixir'].paths == ('b.md', 'a.md')


def test_kind_without_terms_is_empty(site, source, now):
    items = load_content([source('a.md', tags=['x'])], site, now=now)
    result = resolve_taxonomies(items, site.taxonomies)
    assert set(result) == {'categories', 'tags', 'series'}
    assert result['series'] == {}


def test_draft_never_reaches_terms(site, source, now):
    items = load_content([
        source('live.md', tags=['shared']),
        source('draft.md', draft=True, tags=['shared', 'secret']),
    ], site, now=now)
    tags = resolve_taxonomies(items, site.taxonomies)['tags']
    assert 'secret' not in tags
    assert tags['shared'].paths == ('live.md',)


def test_terms_reference_only_indexed_items(site, source, now):
    items = load_content([
        source('a.md', tags=['x', 'y'], categories=['c']),
        source('b.md', tags=['y'], series=['s']),
        source('c.md', draft=True, tags=['x']),
    ], site, now=now)
    indexed = {item.path for item in items}
    for terms in resolve_taxonomies(items, site.taxonomies).values():
        for term in terms.values():
            assert set(term.paths) <= indexed


def test_accepts_plural_names():
    assert resolve_taxonomies((), ['tags']) == {'tags': {}}


@pytest.mark.parametrize('kinds', [
    [TaxonomyKind('tag', 'Tags!')],
    [TaxonomyKind('tag', 'tags'), TaxonomyKind('label', 'tags')],
])
def test_invalid_kinds(kinds):
    with pytest.raises(UnknownTaxonomyError):
        resolve_taxonomies((), kinds)


def test_terms_sharing_a_slug_are_rejected(site, source, now):
    items = load_content([
        source('posts/cpp.md', tags=['C++']),
        source('posts/c.md', tags=['C']),
    ], site, now=now)
    with pytest.raises(DuplicateTermSlugError) as exc:
        resolve_taxonomies(items, site.taxonomies)
    assert exc.value.kind == 'tags'
    assert exc.value.terms == ('c', 'c++')
    assert exc.value.slug == 'c'
    assert exc.value.path == 'posts/cpp.md'
    assert "'c'" in str(exc.value) and "'c++'" in str(exc.value) and "'tags'" in str(exc.value)


def test_same_slug_in_different_kinds_is_allowed(site, source, now):
    items = load_content([source('posts/a.md', tags=['C++'], categories=['C'])], site, now=now)
    result = resolve_taxonomies(items, site.taxonomies)
    assert result['tags']['c++'].slug == result['categories']['c'].slug == 'c'
