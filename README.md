# xbpredicate

A small stack machine for XPath-style predicates, and a parser that splits
slash-separated XPath queries into sections with compiled predicates.

A predicate such as `@type='desktop'`, `contains('abcdef','cd')` or
`lower-case(?)=='firefox'` is parsed into a `Stack` of `Opcode` values, can be
optimized by folding calls whose arguments are already known, and is then run
to a single boolean.

The package has no dependencies beyond the standard library.

## Installing

```
pip install xbpredicate
```

## Evaluating predicates

```python
from xbpredicate.machine import Machine

machine = Machine()
opcodes = machine.parse("lower-case('ABC')=='abc'")
print(machine.run(opcodes))   # True
```

`Machine.parse(text)` parses with the optimizer on. `Machine.parse_full(text, flags)`
takes `ParseFlag.NONE` or `ParseFlag.OPTIMIZE`. `Machine.run(opcodes, exec_data=None)`
returns the boolean left on the stack; `exec_data` is handed to every method call.

Literals are `'text'`, `$'text'` (indexed text), plain unsigned 32-bit numbers
and `?` (a placeholder bound at run time).

Built-in methods: `and`, `or`, `not`, `eq`, `ne`, `lt`, `gt`, `le`, `ge`,
`lower-case`, `upper-case`, `contains`, `starts-with`, `ends-with`, `string`,
`number`, `string-length` and `in`. Built-in operators: ` and `, ` or `, `&&`,
`||`, `!=`, `<=`, `>=`, `==`, `=`, `>` and `<`. Comparisons work between two
integers, two texts, or an integer and a text holding a decimal number. The
methods themselves live in `xbpredicate.compare` and `xbpredicate.textfuncs`.

Parsing and running use stacks of `Machine.stack_size` entries (10 by default);
`Machine.new_stack()` returns an empty one. `Machine.set_debug_flags` takes
`DebugFlag` values that log the stack, the parsing, the optimizer and slow
comparison paths through the `logging` module at debug level.

### Extending the machine

- `Machine.add_method(name, n_opcodes, callback)` registers a method. The
  callback takes `(machine, stack, exec_data)`, pops its arguments and pushes
  its result, and raises an `XbError` without touching the stack when it
  cannot work on its arguments.
- `Machine.add_operator(text, name)` makes `text` an infix operator for the
  method `name`.
- `Machine.add_text_handler(callback)` adds a handler `(machine, stack, text)`
  that may push opcodes for a piece of text and returns True when it did.
- `Machine.add_opcode_fixup(signature, callback)` calls `callback(machine, stack)`
  on parsed stacks whose signature matches, e.g. `TEXT,TEXT,FUNC:eq`.
- `Machine.opcode_func(name)` returns a function opcode for a registered method.

### Bound values

```python
from xbpredicate.context import QueryContext
from xbpredicate.machine import Machine, ParseFlag

machine = Machine()
opcodes = machine.parse_full("?=='x'", ParseFlag.NONE)

context = QueryContext()
context.bind_str(0, "x")
print(machine.run_with_bindings(opcodes, context.bindings))   # True
```

Placeholders are filled in the order they appear. `QueryContext` also holds a
result `limit` (0 for all) and `QueryFlag` flags; `bind_val` binds an integer,
`copy()` and `clear()` do what they say.

## Queries

```python
from xbpredicate.machine import Machine
from xbpredicate.query import Query

query = Query(Machine(), "components/component[@type='desktop']/id",
              string_index={"components": 0, "component": 1, "id": 2})
for section in query.sections:
    print(section.kind, section.element, section.element_idx, len(section.predicates))
```

`Query` splits the XPath at `/` (`\/`, `\t` and `\n` escape a character) into
`QuerySection` objects. `..` and `parent::*` give `SectionKind.PARENT`; `*` and
`child::*` give `SectionKind.WILDCARD`. `string_index` maps strings to their
string-table index, used for element names and, with `QueryFlag.USE_INDEXES`,
for `$'...'` indexed text; without that flag indexed text is treated as plain
text. `QueryFlag.OPTIMIZE` turns on the optimizer for predicates; both flags are
on by default. `Query.bind_str` and `Query.bind_val` fill the n-th `?` in place,
and `str(query)` shows the parsed query.

## What this package does not do

It holds no XML documents. There is no store to load XML into and nothing
that runs a `Query` against elements: `Query` only parses and compiles, and a
predicate is evaluated with `Machine.run` on values it already carries. Methods
that read from a document, such as `text()`, have to be added with
`Machine.add_method`.

## Errors

Failures raise subclasses of `xbpredicate.errors.XbError`: `NotSupportedError`,
`InvalidDataError`, `NoSpaceError` (a stack is full), `NotFoundError` and
`InvalidArgumentError`.

## Running the tests

```
pip install -e ".[test]"
pytest
```