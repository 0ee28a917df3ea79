import pytest

from xbpredicate.context import QueryFlag
from xbpredicate.errors import (
    InvalidArgumentError,
    InvalidDataError,
    NotFoundError,
)
from xbpredicate.machine import Machine
from xbpredicate.opcode import INDEX_UNSET, OpcodeKind
from xbpredicate.query import Query, SectionKind


@pytest.fixture
def machine():
    return Machine()


def test_plain_sections(machine):
    query = Query(machine, "components/component/id")
    assert [s.element for s in query.sections] == ["components", "component", "id"]
    assert all(s.kind is SectionKind.ELEMENT for s in query.sections)
    assert str(query) == "components/component/id"
    assert query.xpath == "components/component/id"
    assert query.limit == 0


@pytest.mark.parametrize("xpath", ["..", "parent::*"])
def test_parent_section(machine, xpath):
    query = Query(machine, "a/" + xpath)
    assert query.sections[1].kind is SectionKind.PARENT
    assert str(query) == "a/.."


@pytest.mark.parametrize("xpath", ["*", "child::*"])
def test_wildcard_section(machine, xpath):
    query = Query(machine, xpath)
    assert query.sections[0].kind is SectionKind.WILDCARD
    assert str(query) == "*"


def test_element_index_lookup(machine):
    query = Query(machine, "component/id", string_index={"component": 3})
    assert query.sections[0].element_idx == 3
    assert query.sections[1].element_idx == INDEX_UNSET


def test_escaped_slash(machine):
    query = Query(machine, "a\\/b/c")
    assert [s.element for s in query.sections] == ["a/b", "c"]


@pytest.mark.parametrize("xpath", ["/a", "a//b"])
def test_empty_section(machine, xpath):
    with pytest.raises(NotFoundError):
        Query(machine, xpath)


def test_unfinished_predicate(machine):
    with pytest.raises(InvalidArgumentError):
        Query(machine, "x['a'")


def test_empty_predicate(machine):
    with pytest.raises(InvalidDataError):
        Query(machine, "x[]")


def test_predicate_without_optimize(machine):
    query = Query(machine, "x['a'='a']", QueryFlag.NONE)
    section = query.sections[0]
    assert section.element == "x"
    assert len(section.predicates) == 1
    assert str(query) == "x['a','a',eq()]"
    assert machine.run(section.predicates[0]) is True


def test_predicate_optimized_to_constant(machine):
    query = Query(machine, "x['a'='a']", QueryFlag.OPTIMIZE)
    stack = query.sections[0].predicates[0]
    assert len(stack) == 1
    assert stack.peek(0).kind == OpcodeKind.BOOLEAN
    assert str(query) == "x[True]"


def test_bind_str(machine):
    query = Query(machine, "x[?='a']", QueryFlag.NONE)
    query.bind_str(0, "a")
    op = query.sections[0].predicates[0].peek(0)
    assert op.kind == OpcodeKind.BOUND_TEXT
    assert op.text == "a"
    assert machine.run(query.sections[0].predicates[0]) is True


def test_bind_val(machine):
    query = Query(machine, "x[?=5]", QueryFlag.NONE)
    query.bind_val(0, 5)
    op = query.sections[0].predicates[0].peek(0)
    assert op.kind == OpcodeKind.BOUND_INTEGER
    assert op.val == 5


def test_bind_missing_index(machine):
    query = Query(machine, "x[?='a']", QueryFlag.NONE)
    with pytest.raises(InvalidArgumentError):
        query.bind_str(1, "b")
    with pytest.raises(InvalidArgumentError):
        query.bind_val(1, 2)


def test_bind_across_sections(machine):
    query = Query(machine, "a[?='x']/b[?='y']", QueryFlag.NONE)
    query.bind_str(1, "y")
    assert query.sections[1].predicates[0].peek(0).text == "y"
    assert query.sections[0].predicates[0].peek(0).kind == OpcodeKind.BOUND_INTEGER


def test_indexed_text_resolved(machine):
    query = Query(machine, "x[$'foo'='a']", QueryFlag.USE_INDEXES, {"foo": 7})
    op = query.sections[0].predicates[0].peek(0)
    assert op.kind == OpcodeKind.INDEXED_TEXT
    assert op.val == 7
    assert op.text == "foo"


def test_indexed_text_unfound(machine):
    with pytest.raises(InvalidArgumentError):
        Query(machine, "x[$'foo'='a']", QueryFlag.USE_INDEXES, {})


def test_indexed_text_without_indexes_becomes_text(machine):
    query = Query(machine, "x[$'foo'='a']", QueryFlag.NONE)
    op = query.sections[0].predicates[0].peek(0)
    assert op.kind == OpcodeKind.TEXT
    assert op.text == "foo"


def test_multiple_predicates(machine):
    query = Query(machine, "x['a'='a']['b'='b']", QueryFlag.NONE)
    assert len(query.sections[0].predicates) == 2
    assert all(machine.run(p) for p in query.sections[0].predicates)