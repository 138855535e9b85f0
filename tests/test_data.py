import json
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import CountingFetcher
from genkit.config import MarkdownOptions
from genkit.data import Failed, Finished, PreviewCache, PreviewRecord
from genkit.errors import CacheError, ConfigError, ExtractError


def test_preview_record_round_trip():
    record = PreviewRecord(title="T", description="D", image=None)
    assert record.to_json() == ["T", "D", ""]
    assert PreviewRecord.from_json(["T", "D", ""]) == record

    with_image = PreviewRecord("T", "D", "https://example.com/a.png")
    assert PreviewRecord.from_json(with_image.to_json()) == with_image


def test_preview_record_from_short_arrays():
    assert PreviewRecord.from_json(["T", "D"]) == PreviewRecord("T", "D", None)
    assert PreviewRecord.from_json(["T"]) == PreviewRecord("T", "", None)
    assert PreviewRecord.from_json([]) == PreviewRecord("", "", None)
    with pytest.raises(CacheError):
        PreviewRecord.from_json({"title": "T"})
    with pytest.raises(CacheError):
        PreviewRecord.from_json([1, 2])
    with pytest.raises(CacheError):
        PreviewRecord.from_json(["T", None])
    with pytest.raises(CacheError):
        PreviewRecord.from_json(["T", "D", "", "extra"])


def test_load_missing_file_is_empty(tmp_path):
    cache = PreviewCache.open(tmp_path)
    assert len(cache) == 0
    assert cache.get("https://example.com") is None
    assert not cache.is_dirty
    # second load is a no-op
    assert cache.load() is False


def test_load_existing_file(tmp_path):
    payload = {
        "urlPreviews": {
            "https://a.com": ["A", "About A", "https://a.com/a.png"],
            "https://b.com": ["B", "About B"],
        }
    }
    (tmp_path / "genkit.json").write_text(json.dumps(payload), encoding="utf-8")
    cache = PreviewCache.open(tmp_path)
    assert cache.get("https://a.com") == PreviewRecord("A", "About A", "https://a.com/a.png")
    assert cache.get("https://b.com") == PreviewRecord("B", "About B", None)
    assert set(cache.all_previews()) == {"https://a.com", "https://b.com"}
    assert not cache.is_dirty


def test_load_invalid_file(tmp_path):
    (tmp_path / "genkit.json").write_text("{not json", encoding="utf-8")
    with pytest.raises(CacheError):
        PreviewCache.open(tmp_path)

    (tmp_path / "other.json").write_text('{"urlPreviews": []}', encoding="utf-8")
    with pytest.raises(CacheError):
        PreviewCache.open(tmp_path, "other.json")

    invalid = {
        "empty.json": '{"urlPreviews": ""}',
        "ints.json": '{"urlPreviews": {"https://a.com": [1, 2]}}',
    }
    for name, body in invalid.items():
        (tmp_path / name).write_text(body, encoding="utf-8")
        with pytest.raises(CacheError):
            PreviewCache.open(tmp_path, name)


def test_export_is_dirty_gated(tmp_path):
    cache = PreviewCache.open(tmp_path)
    target = tmp_path / "genkit.json"

    # empty and clean: no file
    assert cache.export() is False
    assert not target.exists()

    cache.insert("https://b.com", PreviewRecord("B", "About B"))
    cache.insert("https://a.com", PreviewRecord("A", "About A", "https://a.com/a.png"))
    assert cache.is_dirty
    assert cache.export() is True
    assert not cache.is_dirty

    content = target.read_text(encoding="utf-8")
    assert content.index("https://a.com") < content.index("https://b.com")
    assert '\n  "urlPreviews"' in content
    assert json.loads(content) == {
        "urlPreviews": {
            "https://a.com": ["A", "About A", "https://a.com/a.png"],
            "https://b.com": ["B", "About B", ""],
        }
    }

    mtime = target.stat().st_mtime_ns
    assert cache.export() is False
    assert target.stat().st_mtime_ns == mtime


def test_export_to_directory(tmp_path):
    cache = PreviewCache.open(tmp_path)
    cache.insert("https://a.com", PreviewRecord("A", ""))
    out = tmp_path / "out"
    out.mkdir()
    assert cache.export(out) is True
    assert (out / "genkit.json").exists()
    assert not (tmp_path / "genkit.json").exists()


def test_insert_during_export_keeps_dirty(tmp_path, monkeypatch):
    cache = PreviewCache.open(tmp_path)
    cache.insert("https://a.com", PreviewRecord("A", ""))
    original = cache.to_json

    def racing_to_json():
        text = original()
        cache.insert("https://b.com", PreviewRecord("B", ""))
        return text

    monkeypatch.setattr(cache, "to_json", racing_to_json)
    assert cache.export() is True
    assert cache.is_dirty


def test_get_or_fetch_known_record_is_resolved(tmp_path):
    fetcher = CountingFetcher()
    cache = PreviewCache.open(tmp_path, fetcher=fetcher)
    cache.insert("https://a.com", PreviewRecord("A", "About A"))

    # no loop needed for known records
    is_new, handle = cache.get_or_fetch("https://a.com")
    assert is_new is False
    assert handle.done()
    assert handle.result() == Finished(PreviewRecord("A", "About A"))
    assert fetcher.calls == []


def test_get_or_fetch_requires_loop(tmp_path):
    cache = PreviewCache.open(tmp_path, fetcher=CountingFetcher())
    with pytest.raises(RuntimeError):
        cache.get_or_fetch("https://a.com")


def test_get_or_fetch_caches_success(cache, fetcher):
    is_new, handle = cache.get_or_fetch("https://example.com")
    assert is_new is True
    outcome = handle.result(timeout=5)
    assert outcome == Finished(
        PreviewRecord("Example Page", "An example page", "https://example.com/cover.png")
    )
    assert cache.get("https://example.com") == outcome.record
    assert cache.is_dirty

    is_new, handle = cache.get_or_fetch("https://example.com")
    assert is_new is False
    assert handle.result(timeout=5) == outcome
    assert fetcher.calls == ["https://example.com"]


def test_concurrent_requests_share_one_fetch(tmp_path, background_loop):
    fetcher = CountingFetcher(delay=0.2)
    cache = PreviewCache.open(tmp_path, fetcher=fetcher)
    cache.attach_loop(background_loop)

    def request(_):
        is_new, handle = cache.get_or_fetch("https://example.com")
        return is_new, handle.result(timeout=5)

    with ThreadPoolExecutor(max_workers=8) as executor:
        results = list(executor.map(request, range(8)))

    assert fetcher.calls == ["https://example.com"]
    assert sum(1 for is_new, _ in results if is_new) == 1
    outcomes = {outcome for _, outcome in results}
    assert len(outcomes) == 1
    assert isinstance(outcomes.pop(), Finished)


def test_failed_fetch_is_retried(tmp_path, background_loop):
    fetcher = CountingFetcher(failures={"https://down.com": 1})
    cache = PreviewCache.open(tmp_path, fetcher=fetcher)
    cache.attach_loop(background_loop)

    is_new, handle = cache.get_or_fetch("https://down.com")
    assert is_new is True
    outcome = handle.result(timeout=5)
    assert isinstance(outcome, Failed)
    assert "500" in outcome.reason
    assert cache.get("https://down.com") is None
    assert not cache.is_dirty

    is_new, handle = cache.get_or_fetch("https://down.com")
    assert is_new is True
    assert isinstance(handle.result(timeout=5), Finished)
    assert fetcher.calls == ["https://down.com", "https://down.com"]


def test_extract_error_degrades_to_empty_record(tmp_path, background_loop):
    def extractor(raw):
        raise ExtractError("broken")

    cache = PreviewCache.open(tmp_path, fetcher=CountingFetcher(), extractor=extractor)
    cache.attach_loop(background_loop)
    _, handle = cache.get_or_fetch("https://example.com")
    assert handle.result(timeout=5) == Finished(PreviewRecord("", "", None))


def test_crashing_extractor_fails_and_is_retried(tmp_path, background_loop):
    def extractor(raw):
        raise ValueError("boom")

    fetcher = CountingFetcher()
    cache = PreviewCache.open(tmp_path, fetcher=fetcher, extractor=extractor)
    cache.attach_loop(background_loop)

    is_new, first = cache.get_or_fetch("https://example.com")
    assert is_new is True
    outcome = first.result(timeout=5)
    assert outcome == Failed("ValueError: boom")
    assert cache.get("https://example.com") is None

    is_new, second = cache.get_or_fetch("https://example.com")
    assert is_new is True
    assert second is not first
    assert isinstance(second.result(timeout=5), Failed)
    assert fetcher.calls == ["https://example.com", "https://example.com"]


def test_cancelled_fetch_can_be_requested_again(tmp_path, background_loop):
    cache = PreviewCache.open(tmp_path, fetcher=CountingFetcher(delay=30))
    cache.attach_loop(background_loop)

    _, first = cache.get_or_fetch("https://slow.com")
    assert first.cancel()
    deadline = time.monotonic() + 5
    while "https://slow.com" in cache._inflight and time.monotonic() < deadline:
        time.sleep(0.01)

    is_new, second = cache.get_or_fetch("https://slow.com")
    assert is_new is True
    assert second is not first
    second.cancel()


def test_fetched_text_is_truncated(tmp_path, background_loop):
    long_title = "x" * 300
    page = f"<html><head><title>{long_title}</title></head></html>".encode()
    fetcher = CountingFetcher(pages={"https://long.com": page})
    cache = PreviewCache.open(tmp_path, fetcher=fetcher)
    cache.attach_loop(background_loop)
    _, handle = cache.get_or_fetch("https://long.com")
    assert handle.result(timeout=5).record.title == "x" * 200


def test_markdown_options(tmp_path):
    cache = PreviewCache.open(tmp_path)
    assert cache.markdown_options == MarkdownOptions(True, "monokai")
    cache.set_markdown_options(MarkdownOptions(highlight_code=False, highlight_theme="default"))
    assert cache.markdown_options.highlight_code is False
    with pytest.raises(ConfigError):
        cache.set_markdown_options(MarkdownOptions(highlight_theme="no-such-theme"))
    assert cache.markdown_options.highlight_theme == "default"
