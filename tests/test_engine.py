import pytest

from genkit.config import MarkdownOptions
from genkit.data import PreviewCache
from genkit.engine import GenkitEngine
from genkit.entity import Entity, Generator
from genkit.errors import BuildError


class Index(Entity):
    def __init__(self):
        self.body = ""

    def parse(self, source):
        self.body = (source / "index.md").read_text(encoding="utf-8")

    def render(self, env, context, dest):
        html = env.globals["markdown_to_html"](self.body)
        (dest / "index.html").write_text(html, encoding="utf-8")


class RecordingGenerator(Generator):
    def __init__(self, options=None):
        self.calls = []
        self.options = options

    def on_load(self, source):
        self.calls.append("load")
        return Index()

    def on_reload(self, source):
        self.calls.append("reload")
        return Index()

    def on_extend_environment(self, source, env, entity):
        self.calls.append("extend")
        return env

    def get_markdown_options(self, entity):
        return self.options

    def on_render(self, env, context, entity):
        self.calls.append("render")


def test_build_runs_every_stage(tmp_path, capsys):
    source = tmp_path / "src"
    source.mkdir()
    (source / "index.md").write_text("# Hello", encoding="utf-8")
    dest = tmp_path / "out"
    generator = RecordingGenerator()
    engine = GenkitEngine(source, dest, generator, PreviewCache(source / "genkit.json"))

    assert dest.exists()
    engine.build(reload=False)
    engine.build(reload=True)

    assert generator.calls == ["load", "extend", "render", "reload", "extend", "render"]
    assert '<h1 id="hello">' in (dest / "index.html").read_text(encoding="utf-8")
    out = capsys.readouterr().out
    assert out.count("Build cost: ") == 2
    assert "ms" in out


def test_build_pushes_markdown_options(tmp_path):
    source = tmp_path / "src"
    source.mkdir()
    (source / "index.md").write_text("```python\nx = 1\n```", encoding="utf-8")
    cache = PreviewCache(source / "genkit.json")
    generator = RecordingGenerator(MarkdownOptions(highlight_code=False))
    GenkitEngine(source, tmp_path / "out", generator, cache).build()

    assert cache.markdown_options.highlight_code is False
    html = (tmp_path / "out" / "index.html").read_text(encoding="utf-8")
    assert "<pre>x = 1\n</pre>" in html


def test_build_wraps_errors(tmp_path):
    source = tmp_path / "src"
    source.mkdir()
    # index.md is missing, so parsing fails
    engine = GenkitEngine(
        source, tmp_path / "out", RecordingGenerator(), PreviewCache(source / "genkit.json")
    )
    with pytest.raises(BuildError) as excinfo:
        engine.build()
    assert excinfo.value.source_path == source
    assert isinstance(excinfo.value.original_error, FileNotFoundError)
    assert "FileNotFoundError" in excinfo.value.message


def test_build_reports_block_syntax_errors(tmp_path):
    source = tmp_path / "src"
    source.mkdir()
    (source / "index.md").write_text("```callout, type: nope\nx\n```", encoding="utf-8")
    engine = GenkitEngine(
        source, tmp_path / "out", RecordingGenerator(), PreviewCache(source / "genkit.json")
    )
    with pytest.raises(BuildError, match="Invalid block syntax"):
        engine.build()
