from quire.compiler.expressions import lower_expression, split_arguments


def test_sigils_are_lowered():
    """Dialect sigils become plain Python."""
    assert lower_expression("$user->name") == "user.name"
    assert lower_expression("$a && !$b") == "a and not b"
    assert lower_expression("$a || $b") == "a or b"
    assert lower_expression("$a === null") == "a == None"
    assert lower_expression("$a !== true") == "a != True"


def test_plain_python_is_untouched():
    assert lower_expression("count(items) > 0") == "count(items) > 0"
    assert lower_expression("a != b") == "a != b"
    assert lower_expression("'x' if flag else 'y'") == "'x' if flag else 'y'"


def test_string_literals_are_never_rewritten():
    assert lower_expression("'$x && y'") == "'$x && y'"
    assert lower_expression('"null -> true"') == '"null -> true"'


def test_arrays_with_arrows_become_dicts():
    assert lower_expression("['a' => 1, 'b' => $c]") == "{'a': 1, 'b': c}"


def test_array_items_without_arrow_get_ellipsis():
    """Items without a key keep their position as a key with no value."""
    assert lower_expression("['title', 'type' => 'info']") == "{'title': ..., 'type': 'info'}"


def test_nested_arrays_and_calls():
    lowered = lower_expression("['a' => ['b' => f(1, 2)], 'c' => [1, 2]]")
    assert lowered == "{'a': {'b': f(1, 2)}, 'c': [1, 2]}"


def test_keyword_methods_are_renamed():
    """Methods named after Python keywords get a trailing underscore."""
    assert lower_expression("$attributes->class(['a'])") == "attributes.class_(['a'])"
    assert lower_expression("$attributes->except('id')") == "attributes.except_('id')"


def test_line_breaks_are_joined():
    """Arguments may span lines; string literals keep their line breaks."""
    assert lower_expression("$a\n    and $b") == "a and b"
    assert lower_expression("'x\ny' +\n $z") == "'x\ny' + z"
    assert lower_expression("$a = 1\n$b = 2", multiline=True) == "a = 1\nb = 2"


def test_null_coalescing():
    assert lower_expression("$x ?? 'none'") == "__view.coalesce(lambda: x, lambda: 'none')"
    assert (
        lower_expression("f($a->b ?? $c ?? 0, 1)")
        == "f(__view.coalesce(lambda: a.b, lambda: c, lambda: 0), 1)"
    )
    assert (
        lower_expression("['a' => $x ?? 1]")
        == "{'a': __view.coalesce(lambda: x, lambda: 1)}"
    )
    assert (
        lower_expression("{'a': $x ?? 1, 'b': 2}")
        == "{'a': __view.coalesce(lambda: x, lambda: 1), 'b': 2}"
    )


def test_split_arguments_respects_nesting_and_strings():
    assert split_arguments("'a', f(1, 2), [3, 4]") == ["'a'", "f(1, 2)", "[3, 4]"]
    assert split_arguments("'x, y', {'k': 1, 'j': 2}") == ["'x, y'", "{'k': 1, 'j': 2}"]
    assert split_arguments("") == []
