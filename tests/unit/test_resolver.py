"""Unit tests for ${path} interpolation in task input templates."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import pytest

from flowline.core.errors import ErrorCode, ResolutionError
from flowline.core.workflows.resolver import (
    find_references,
    lookup,
    parse_path,
    resolve,
    resolve_reference,
    stringify,
)

pytestmark = pytest.mark.unit


@dataclass
class _Article:
    title: str
    tags: list[str]


class _Color(Enum):
    RED = 'red'


# =============================================================================
# No markers
# =============================================================================


class TestIdentity:
    """Templates without markers come back unchanged."""

    @pytest.mark.parametrize(
        'template',
        [
            'plain text',
            42,
            3.5,
            None,
            True,
            {'a': 1, 'b': ['x', {'c': None}]},
            ['one', 2, ('three', 4.0)],
            '',
            '$ {not.a.marker}',
            'cost: $5',
        ],
    )
    def test_resolve_is_identity_without_markers(self, template: object) -> None:
        for initial_input in (None, {}, {'anything': 1}):
            assert resolve(template, initial_input, {}) == template

    def test_key_order_preserved(self) -> None:
        template = {'z': 1, 'a': 2, 'm': 3}
        assert list(resolve(template, {}, {})) == ['z', 'a', 'm']

    def test_tuple_container_preserved(self) -> None:
        result = resolve(('${input.x}', 'y'), {'x': 1}, {})
        assert result == (1, 'y')
        assert isinstance(result, tuple)


# =============================================================================
# Task references
# =============================================================================


class TestTaskReferences:
    def test_field_of_completed_task(self) -> None:
        assert resolve('${taskA.field}', {}, {'taskA': {'field': 'x'}}) == 'x'

    def test_missing_field_yields_none(self) -> None:
        assert resolve('${taskA.missing}', {}, {'taskA': {'field': 'x'}}) is None

    def test_missing_nested_field_yields_none(self) -> None:
        assert resolve('${taskA.a.b.c}', {}, {'taskA': {'a': {}}}) is None

    def test_missing_field_embedded_is_empty_string(self) -> None:
        assert resolve('value=[${taskA.missing}]', {}, {'taskA': {}}) == 'value=[]'

    def test_full_marker_preserves_native_type(self) -> None:
        outputs = {'fetch': {'count': 3, 'items': [1, 2], 'meta': {'ok': True}}}
        assert resolve('${fetch.count}', {}, outputs) == 3
        assert resolve('${fetch.items}', {}, outputs) == [1, 2]
        assert resolve('${fetch.meta}', {}, outputs) == {'ok': True}

    def test_whole_output_by_bare_task_id(self) -> None:
        outputs = {'fetch': {'value': 10}}
        assert resolve('${fetch}', {}, outputs) == {'value': 10}

    def test_output_segment_names_whole_output(self) -> None:
        assert resolve('${a.output}', {}, {'a': 'raw text'}) == 'raw text'
        assert resolve('${a.output_data}', {}, {'a': [1, 2]}) == [1, 2]
        assert resolve('${a.output.x}', {}, {'a': {'x': 5}}) == 5

    def test_output_key_in_mapping_wins(self) -> None:
        outputs = {'a': {'output': 'inner', 'other': 1}}
        assert resolve('${a.output}', {}, outputs) == 'inner'

    def test_sequence_index(self) -> None:
        outputs = {'search': {'results': [{'url': 'u0'}, {'url': 'u1'}]}}
        assert resolve('${search.results.1.url}', {}, outputs) == 'u1'

    def test_sequence_index_out_of_range_is_none(self) -> None:
        assert resolve('${search.results.5}', {}, {'search': {'results': []}}) is None

    def test_negative_or_named_index_on_sequence_is_none(self) -> None:
        outputs = {'s': {'items': ['a', 'b']}}
        assert resolve('${s.items.-1}', {}, outputs) is None
        assert resolve('${s.items.first}', {}, outputs) is None
        assert resolve('${s.items.¹}', {}, outputs) is None
        assert resolve('${s.items.١}', {}, outputs) is None

    def test_attribute_access_on_objects(self) -> None:
        outputs = {'article': _Article(title='Hello', tags=['x', 'y'])}
        assert resolve('${article.title}', {}, outputs) == 'Hello'
        assert resolve('${article.tags.1}', {}, outputs) == 'y'
        assert resolve('${article.__class__}', {}, outputs) is None

    def test_non_string_keys_matched_canonically(self) -> None:
        outputs = {'t': {1: 'one', _Color.RED: 'warm'}}
        assert resolve('${t.1}', {}, outputs) == 'one'
        assert resolve('${t.red}', {}, outputs) == 'warm'

    def test_failed_task_resolves_to_error_payload(self) -> None:
        outputs = {'risky': {'error': 'boom', 'error_code': 'UNHANDLED_EXCEPTION'}}
        assert resolve('${risky.error}', {}, outputs) == 'boom'


# =============================================================================
# Unresolved references
# =============================================================================


class TestUnresolved:
    def test_unfinished_task_raises(self) -> None:
        with pytest.raises(ResolutionError) as exc_info:
            resolve('${taskB.x}', {}, {'taskA': {'x': 1}})
        assert exc_info.value.code == ErrorCode.RESOLUTION_UNRESOLVED_REFERENCE
        assert exc_info.value.path == 'taskB.x'
        assert exc_info.value.reference == 'taskB'

    def test_unfinished_task_raises_inside_nested_template(self) -> None:
        template = {'outer': [{'inner': 'prefix ${taskB.x} suffix'}]}
        with pytest.raises(ResolutionError):
            resolve(template, {}, {})

    @pytest.mark.parametrize('path', ['', ' ', 'a..b', '.a', 'a.'])
    def test_malformed_path_raises(self, path: str) -> None:
        with pytest.raises(ResolutionError) as exc_info:
            resolve_reference(path, {}, {})
        assert exc_info.value.code == ErrorCode.RESOLUTION_MALFORMED_PATH


# =============================================================================
# Initial input aliases
# =============================================================================


class TestInputAliases:
    @pytest.mark.parametrize('alias', ['input', 'initial_input'])
    def test_alias_reads_initial_input(self, alias: str) -> None:
        initial = {'user': {'name': 'Ada'}}
        assert resolve(f'${{{alias}.user.name}}', initial, {}) == 'Ada'

    def test_bare_alias_is_whole_input(self) -> None:
        assert resolve('${input}', [1, 2], {}) == [1, 2]

    def test_missing_input_field_is_none(self) -> None:
        assert resolve('${input.nope}', {}, {}) is None
        assert resolve('${input.nope}', None, {}) is None


# =============================================================================
# Embedded markers
# =============================================================================


class TestEmbedded:
    def test_many_markers_in_one_string(self) -> None:
        outputs = {'a': {'x': 1}, 'b': {'y': 'two'}}
        assert resolve('${a.x} and ${b.y} for ${input.who}', {'who': 'me'}, outputs) == (
            '1 and two for me'
        )

    def test_structures_are_spliced_as_json(self) -> None:
        outputs = {'a': {'items': [1, 'b'], 'meta': {'k': 'v'}}}
        assert resolve('items=${a.items}', {}, outputs) == 'items=[1, "b"]'
        assert resolve('meta=${a.meta}', {}, outputs) == 'meta={"k": "v"}'

    def test_bool_spliced_lowercase(self) -> None:
        assert resolve('flag=${a.ok}', {}, {'a': {'ok': False}}) == 'flag=false'

    def test_non_string_keys_spliced_with_canonical_keys(self) -> None:
        outputs = {'a': {(1, 2): 'x', _Color.RED: [{3: True}]}}
        assert resolve('got ${a}', {}, outputs) == 'got {"(1, 2)": "x", "red": [{"3": true}]}'


class TestHelpers:
    def test_parse_path_strips_whitespace(self) -> None:
        assert parse_path(' a . b ') == ('a', 'b')

    def test_lookup_walks_mixed_structures(self) -> None:
        assert lookup({'a': [{'b': 7}]}, ['a', '0', 'b']) == 7
        assert lookup('text', ['length']) is None

    def test_stringify(self) -> None:
        assert stringify(None) == ''
        assert stringify('s') == 's'
        assert stringify(True) == 'true'
        assert stringify(1.5) == '1.5'
        assert stringify((1, 2)) == '[1, 2]'

    def test_find_references_excludes_aliases(self) -> None:
        template = {
            'prompt': 'Summarize ${fetch.text} for ${input.user}',
            'extra': ['${rank}', '${initial_input.x}', {'deep': '${score.value}'}],
        }
        assert find_references(template) == {'fetch', 'rank', 'score'}

    def test_find_references_on_plain_values(self) -> None:
        assert find_references(42) == set()
        assert find_references('no markers') == set()
