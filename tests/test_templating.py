from rss_push.templating import get_environment, highlight_lines


def test_get_environment_registers_filters():
    env = get_environment()
    assert {"markdown", "sanitize", "datetime"} <= set(env.filters)
    rendered = env.from_string("{{ value | markdown }}").render(value="**bold**")
    assert "<strong>bold</strong>" in rendered


def test_sanitize_filter_strips_scripts():
    env = get_environment()
    rendered = env.from_string("{{ value | sanitize }}").render(
        value='<p onclick="x()">Hi<script>alert(1)</script></p>'
    )
    assert "<script>" not in rendered
    assert "onclick" not in rendered
    assert "<p>Hi" in rendered


def test_highlight_lines_returns_one_fragment_per_line():
    lines = highlight_lines("a = 1\nb = 2\n", "python")
    assert len(lines) == 2
    assert "a" in lines[0]


def test_highlight_lines_unknown_language_falls_back_to_text():
    lines = highlight_lines("<tag>", "no-such-language")
    assert lines == ["&lt;tag&gt;"]


def test_sanitize_filter_drops_script_and_style_contents():
    env = get_environment()
    rendered = env.from_string("{{ value | sanitize }}").render(
        value=(
            "<p>Hi</p><script>alert('x')</script>"
            "<style>p{color:red}</style><noscript>enable js</noscript>"
        )
    )
    assert "<p>Hi</p>" in rendered
    assert "alert" not in rendered
    assert "color:red" not in rendered
    assert "enable js" not in rendered


def test_sanitize_filter_keeps_tables_and_small_headings():
    env = get_environment()
    rendered = env.from_string("{{ value | sanitize }}").render(
        value="<h6>Note</h6><table><tr><td>cell</td></tr></table>"
    )
    assert "<h6>Note</h6>" in rendered
    assert "<td>cell</td>" in rendered


def test_highlight_lines_keeps_blank_lines():
    lines = highlight_lines("\n\nx = 1\n", "python")
    assert len(lines) == 3
    assert lines[0] == "" and lines[1] == ""
    assert "x" in lines[2]


def test_highlight_lines_keeps_trailing_blank_line():
    lines = highlight_lines("a\n\n", "no-such-language")
    assert lines == ["a", ""]
