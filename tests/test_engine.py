import os
import time

import pytest

from quire.compiler import lower_expression, raw_echo
from quire.exceptions import (
    TemplateNotFoundError,
    ViewEvaluationError,
    ViewStructureError,
)


def test_escaped_echo(make_engine):
    engine = make_engine({"hello": "Hello, {{ $name }}!"})
    assert engine.render("hello", {"name": "<b>Al</b>"}) == "Hello, &lt;b&gt;Al&lt;/b&gt;!"


def test_raw_echo(make_engine):
    engine = make_engine({"hello": "Hello, {!! $name !!}!"})
    assert engine.render("hello", {"name": "<b>Al</b>"}) == "Hello, <b>Al</b>!"


def test_none_echoes_as_empty(make_engine):
    engine = make_engine({"v": "[{{ $value }}]"})
    assert engine.render("v", {"value": None}) == "[]"


def test_foreach_indices(make_engine):
    engine = make_engine({"list": "@foreach($items as $i) {{ $i }}-{{ $loop->index }} @endforeach"})
    assert engine.render("list", {"items": ["a", "b"]}) == " a-0  b-1 "


def test_loop_first_and_last(make_engine):
    source = (
        "@foreach($items as $i)"
        "{{ 'F' if $loop->first else '' }}{{ 'L' if $loop->last else '' }}{{ $i }},"
        "@endforeach"
    )
    engine = make_engine({"list": source})
    assert engine.render("list", {"items": [1, 2, 3]}) == "F1,2,L3,"


def test_nested_loop_parent(make_engine):
    source = (
        "@foreach($rows as $r)\n"
        "@foreach($r as $c)\n"
        "{{ $loop->parent->index }}{{ $loop->index }}{{ $loop->depth }};\n"
        "@endforeach\n"
        "@endforeach\n"
    )
    engine = make_engine({"grid": source})
    assert engine.render("grid", {"rows": [[1, 2], [3]]}) == "002;\n012;\n102;\n"


def test_loop_over_generator_has_no_count(make_engine):
    engine = make_engine({"gen": "@foreach($items as $i){{ $loop->count is None }}@endforeach"})
    assert engine.render("gen", {"items": (x for x in range(2))}) == "TrueTrue"


def test_foreach_key_value(make_engine):
    engine = make_engine({"kv": "@foreach($prices as $name => $price){{ $name }}={{ $price }} @endforeach"})
    assert engine.render("kv", {"prices": {"a": 1, "b": 2}}) == "a=1 b=2 "


def test_forelse(make_engine):
    engine = make_engine({"f": "@forelse($items as $i){{ $i }} @empty none @endforelse"})
    assert engine.render("f", {"items": []}).strip() == "none"
    assert engine.render("f", {"items": ["a", "b"]}).strip() == "a b"


def test_forelse_inside_forelse_keeps_its_own_flag(make_engine):
    source = (
        "@forelse($groups as $g)[@forelse($g as $x){{ $x }}@empty -@endforelse]"
        " @empty none @endforelse"
    )
    engine = make_engine({"f": source})
    assert engine.render("f", {"groups": [[1], []]}).strip() == "[1] [ -]"


def test_conditionals(make_engine):
    source = "@if($n > 1) many @elseif($n == 1) one @else none @endif"
    engine = make_engine({"c": source})
    assert engine.render("c", {"n": 5}).strip() == "many"
    assert engine.render("c", {"n": 1}).strip() == "one"
    assert engine.render("c", {"n": 0}).strip() == "none"


def test_unless_isset_and_empty(make_engine):
    source = (
        "@unless($hidden) shown @endunless\n"
        "@isset($user) user @endisset\n"
        "@empty($items) no-items @endempty"
    )
    engine = make_engine({"c": source})
    out = engine.render("c", {"hidden": False, "items": []})
    assert "shown" in out
    assert "user" not in out
    assert "no-items" in out


def test_switch(make_engine):
    source = (
        "@switch($v)\n"
        "@case(1)\none\n@break\n"
        "@case(2)\ntwo\n@break\n"
        "@default\nother\n"
        "@endswitch\n"
    )
    engine = make_engine({"s": source})
    assert engine.render("s", {"v": 2}).strip() == "two"
    assert engine.render("s", {"v": 9}).strip() == "other"


def test_stacked_cases_fall_through(make_engine):
    source = "@switch($v) @case(1) @case(2) low @break @default other @endswitch"
    engine = make_engine({"s": source})
    assert engine.render("s", {"v": 1}).strip() == "low"
    assert engine.render("s", {"v": 2}).strip() == "low"
    assert engine.render("s", {"v": 5}).strip() == "other"


def test_case_without_break_runs_into_the_next(make_engine):
    source = "@switch($v)@case(1)[a]@case(2)[b]@break @case(3)[c]@endswitch"
    engine = make_engine({"s": source})
    assert engine.render("s", {"v": 1}).strip() == "[a][b]"
    assert engine.render("s", {"v": 3}).strip() == "[c]"


def test_directive_arguments_may_span_lines(make_engine):
    source = (
        "@if($a\n    and $b)[yes]@endif|"
        "@foreach([\n    1,\n    2,\n] as $i){{ $i }}@endforeach"
    )
    engine = make_engine({"c": source})
    assert engine.render("c", {"a": True, "b": True}) == "[yes]|12"
    assert engine.render("c", {"a": True, "b": False}) == "|12"


def test_null_coalescing(make_engine):
    engine = make_engine({"c": "{{ $name ?? 'guest' }}|{{ $user->name ?? $fallback ?? 'anon' }}"})
    assert engine.render("c") == "guest|anon"
    assert engine.render("c", {"name": "Al", "user": None, "fallback": "F"}) == "Al|F"


def test_layout_sections_and_default_yield(make_engine):
    engine = make_engine(
        {
            "layouts.app": (
                "<title>@yield('title', 'Default')</title>\n"
                "<main>@yield('content')</main>\n"
                "<aside>@yield('sidebar', 'None')</aside>\n"
            ),
            "pages.home": (
                "@extends('layouts.app')\n"
                "@section('title', 'Home')\n"
                "@section('content')\n"
                "<p>Hi {{ $name }}</p>\n"
                "@endsection\n"
            ),
        }
    )
    out = engine.render("pages.home", {"name": "Al"})
    assert "<title>Home</title>" in out
    assert "<main><p>Hi Al</p>" in out
    assert "<aside>None</aside>" in out


def test_child_output_outside_sections_is_dropped(make_engine):
    engine = make_engine(
        {
            "layouts.bare": "[@yield('a')]",
            "child": "@extends('layouts.bare')\nstray text\n@section('a', 'x')\n",
        }
    )
    assert engine.render("child") == "[x]"


def test_parent_directive(make_engine):
    engine = make_engine(
        {
            "layouts.side": "@section('sidebar')\nbase\n@show\n",
            "page": "@extends('layouts.side')\n@section('sidebar')\nchild @parent\n@endsection\n",
        }
    )
    assert "child base" in engine.render("page")


def test_show_without_child_section(make_engine):
    engine = make_engine(
        {
            "layouts.side": "@section('sidebar')\nbase\n@show\n",
            "page": "@extends('layouts.side')\n",
        }
    )
    assert engine.render("page").strip() == "base"


def test_multi_level_inheritance(make_engine):
    engine = make_engine(
        {
            "base": "[@yield('a')]",
            "mid": "@extends('base')\n@section('a')\nmid-@yield('b')@endsection\n",
            "page": "@extends('mid')\n@section('b', 'page')\n",
        }
    )
    assert engine.render("page") == "[mid-page]"


def test_has_section(make_engine):
    engine = make_engine(
        {
            "layouts.app": "@hasSection('nav') nav @endif\n@sectionMissing('foot') no-foot @endif",
            "page": "@extends('layouts.app')\n@section('nav', 'x')\n",
        }
    )
    out = engine.render("page")
    assert "nav" in out
    assert "no-foot" in out


def test_stacks_push_prepend_and_push_once(make_engine):
    engine = make_engine(
        {
            "layouts.stack": "<head>@stack('scripts')</head>@yield('content')",
            "page": (
                "@extends('layouts.stack')\n"
                "@push('scripts')<a>@endpush\n"
                "@prepend('scripts')<first>@endprepend\n"
                "@pushOnce('scripts')<once>@endPushOnce\n"
                "@pushOnce('scripts')<twice>@endPushOnce\n"
                "@section('content', 'body')\n"
            ),
        }
    )
    expected = "<head><first><a><once></head>body"
    assert engine.render("page") == expected
    # Push-once keys are forgotten between top-level renders.
    assert engine.render("page") == expected


def test_include_inherits_loop_variables(make_engine):
    engine = make_engine(
        {
            "partials.row": "<li>{{ $item }}</li>",
            "list": "@foreach($items as $item)\n@include('partials.row')\n@endforeach\n",
        }
    )
    assert engine.render("list", {"items": ["a", "b"]}) == "<li>a</li>\n<li>b</li>\n"


def test_include_variants(make_engine):
    engine = make_engine(
        {
            "partials.row": "<li>{{ $item }}</li>",
            "page": (
                "@include('partials.row', ['item' => 'z'])"
                "@includeIf('partials.missing')"
                "@includeWhen($show, 'partials.row', ['item' => 'w'])"
                "@includeUnless($show, 'partials.row', ['item' => 'u'])"
                "@includeFirst(['partials.missing', 'partials.row'], ['item' => 'f'])"
            ),
        }
    )
    assert engine.render("page", {"show": True}) == "<li>z</li><li>w</li><li>f</li>"


def test_include_first_fails_when_none_exist(make_engine):
    engine = make_engine({"page": "@includeFirst(['missing.a', 'missing.b'])"})
    with pytest.raises(TemplateNotFoundError):
        engine.render("page")


def test_missing_template(make_engine):
    engine = make_engine({})
    with pytest.raises(TemplateNotFoundError):
        engine.render("nope")


def test_unclosed_section_is_a_structure_error(make_engine):
    engine = make_engine({"bad": "@section('a')\nnever closed\n"})
    with pytest.raises(ViewStructureError) as excinfo:
        engine.render("bad")
    assert "section" in str(excinfo.value)
    assert excinfo.value.template == "bad"


def test_stray_end_section_is_a_structure_error(make_engine):
    engine = make_engine({"bad": "@endsection"})
    with pytest.raises(ViewStructureError):
        engine.render("bad")


def test_mismatched_end_is_a_structure_error(make_engine):
    engine = make_engine({"bad": "@push('a')\n@endsection\n"})
    with pytest.raises(ViewStructureError):
        engine.render("bad")


def test_evaluation_error_is_wrapped_with_location(make_engine):
    engine = make_engine({"boom": "before {{ 1 / 0 }} after"})
    with pytest.raises(ViewEvaluationError) as excinfo:
        engine.render("boom")
    error = excinfo.value
    assert isinstance(error.original, ZeroDivisionError)
    assert "ZeroDivisionError" in str(error)
    assert error.location.endswith(".py")
    assert error.template == "boom"


def test_buffers_are_released_after_failure(make_engine):
    """A failing render leaves no capture behind for the next one."""
    engine = make_engine(
        {
            "boom": "@section('a')\n@push('b')\n{{ $missing }}\n@endpush\n@endsection\n",
            "ok": "fine",
        }
    )
    with pytest.raises(ViewEvaluationError):
        engine.render("boom")
    assert engine._buffers == []
    assert engine._captures == []
    assert engine._loops == []
    assert engine.render("ok") == "fine"


def test_failure_in_include_releases_its_buffers(make_engine):
    engine = make_engine(
        {
            "partials.bad": "@foreach($xs as $x){{ $x.nope }}@endforeach",
            "page": "@section('a')@include('partials.bad')@endsection",
        }
    )
    with pytest.raises(ViewEvaluationError) as excinfo:
        engine.render("page", {"xs": [1]})
    assert excinfo.value.template == "partials.bad"
    assert engine._buffers == []


def test_content_edit_ignored_without_auto_reload(make_engine, views):
    engine = make_engine({"v": "one"})
    assert engine.render("v") == "one"

    source = views / "v.sot.html"
    source.write_text("two")
    future = time.time() + 100
    os.utime(source, (future, future))
    assert engine.render("v") == "one"

    engine.clear_cache()
    assert engine.render("v") == "two"


def test_auto_reload_recompiles_newer_source(make_engine, views):
    engine = make_engine({"v": "one"}, auto_reload=True)
    assert engine.render("v") == "one"

    source = views / "v.sot.html"
    source.write_text("two")
    future = time.time() + 100
    os.utime(source, (future, future))
    assert engine.render("v") == "two"


def test_forget_one_template(make_engine, views):
    engine = make_engine({"v": "one"})
    engine.render("v")
    (views / "v.sot.html").write_text("two")
    assert engine.forget("v") is True
    assert engine.render("v") == "two"


def test_disabled_cache_renders_in_memory(make_engine, tmp_path):
    engine = make_engine({"v": "{{ 1 + 1 }}"}, cache_enabled=False)
    assert engine.render("v") == "2"
    assert not (tmp_path / "compiled").exists()


def test_compile_without_rendering(make_engine):
    engine = make_engine({"v": "x"})
    artifact = engine.compile("v")
    assert artifact is not None and artifact.exists()
    assert engine.cache_stats().count == 1


def test_html_fallback_extension(make_engine, views):
    engine = make_engine({})
    (views / "plain.html").write_text("plain {{ $x }}")
    assert engine.render("plain", {"x": 1}) == "plain 1"


def test_custom_directive(make_engine):
    engine = make_engine({"d": "@upper($name)"})
    engine.directive("upper", lambda e: raw_echo(f"str({lower_expression(e)}).upper()"))
    assert engine.render("d", {"name": "al"}) == "AL"


def test_shared_data_and_composers(make_engine):
    engine = make_engine({"pages.home": "{{ $app }}:{{ $user }}", "other": "{{ $app }}"})
    engine.share("app", "Demo")
    engine.composer("pages.*", lambda name, data: {"user": "Al"})
    assert engine.render("pages.home") == "Demo:Al"
    assert engine.render("other") == "Demo"


def test_once(make_engine):
    engine = make_engine({"o": "@foreach([1, 2] as $i)@once once @endonce{{ $i }}@endforeach"})
    assert engine.render("o") == " once 12"


def test_form_helpers(make_engine):
    engine = make_engine(
        {
            "checked": "<input @checked($on)>",
            "cls": "<div @class(['p-4', 'bold' => $b])></div>",
            "json": "@json($data)",
            "method": "@method('put')",
            "error": "@error('email')<span>{{ $message }}</span>@enderror",
        }
    )
    assert engine.render("checked", {"on": True}) == "<input  checked>"
    assert engine.render("checked", {"on": False}) == "<input >"
    assert engine.render("cls", {"b": False}) == '<div class="p-4"></div>'
    assert engine.render("json", {"data": {"a": "<x>"}}) == '{"a": "\\u003cx\\u003e"}'
    assert engine.render("method") == '<input type="hidden" name="_method" value="PUT">'
    assert engine.render("error", {"errors": {"email": ["Bad"]}}) == "<span>Bad</span>"
    assert engine.render("error", {"errors": {}}) == ""
    assert engine.render("error") == ""


def test_environment_directives(make_engine):
    engine = make_engine(
        {"e": "@env('local') dev @endenv\n@production prod @endproduction"},
        environment="local",
    )
    assert engine.render("e").strip() == "dev"


def test_python_blocks(make_engine):
    engine = make_engine({"p": "@python\ntotal = sum(items)\n@endpython\n{{ $total }}"})
    assert engine.render("p", {"items": [1, 2, 3]}) == "6"
