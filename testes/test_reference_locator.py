import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from image_migrator.parsers.reference_locator import (
    ARRAY_ELEMENT_FIELD,
    COLLECTIONS,
    EMBEDDED_IN_TEXT,
    FLAT_FIELD,
    SourceMatcher,
    apply_rewrite,
    locate,
    source_pattern_for,
)
from fakes import cdn, src

MATCHER = SourceMatcher()


def test_flat_field_reference():
    record = {"id": 1, "title": "Hello", "image_url": src("a.jpg")}
    refs = locate(record, COLLECTIONS["articles"], MATCHER)
    assert len(refs) == 1
    assert refs[0].location_kind == FLAT_FIELD
    assert refs[0].source_url == src("a.jpg")
    assert refs[0].path == ("image_url",)
    assert refs[0].record_id == 1


def test_target_and_empty_values_are_not_references():
    articles = COLLECTIONS["articles"]
    assert locate({"id": 1, "image_url": cdn("a.jpg")}, articles, MATCHER) == []
    assert locate({"id": 2, "image_url": None}, articles, MATCHER) == []
    assert locate({"id": 3, "image_url": "https://example.com/a.jpg"}, articles, MATCHER) == []


def test_array_elements_are_located_by_index():
    record = {
        "id": 7,
        "title": "Story",
        "featured_image": src("cover.jpg"),
        "slides": [
            {"image": src("s0.jpg"), "text": "first"},
            {"image": cdn("s1.jpg")},
            {"text": "no image"},
            {"image": src("s3.jpg")},
        ],
    }
    refs = locate(record, COLLECTIONS["webstories"], MATCHER)
    assert [r.path for r in refs] == [("featured_image",), ("slides", 0, "image"), ("slides", 3, "image")]
    assert [r.location_kind for r in refs[1:]] == [ARRAY_ELEMENT_FIELD, ARRAY_ELEMENT_FIELD]


def test_embedded_literals_are_deduplicated_but_variants_kept():
    html = (
        f'<p><img src="{src("a.jpg")}"></p>'
        f'<p><img src="{src("a.jpg")}"></p>'
        f'<p><img src="{src("a.jpg")}?width=300"></p>'
    )
    refs = locate({"id": 1, "content": html}, COLLECTIONS["content"], MATCHER)
    assert [r.source_url for r in refs] == [src("a.jpg"), src("a.jpg") + "?width=300"]
    assert all(r.location_kind == EMBEDDED_IN_TEXT for r in refs)


def test_locate_does_not_mutate_the_record():
    record = {"id": 1, "slides": [{"image": src("s.jpg")}], "featured_image": None}
    snapshot = {"id": 1, "slides": [{"image": src("s.jpg")}], "featured_image": None}
    locate(record, COLLECTIONS["webstories"], MATCHER)
    assert record == snapshot


def test_flat_rewrite():
    record = {"id": 1, "image_url": src("a.jpg")}
    ref = locate(record, COLLECTIONS["articles"], MATCHER)[0]
    assert apply_rewrite(record, ref, cdn("a.jpg"))
    assert record["image_url"] == cdn("a.jpg")
    # already rewritten
    assert not apply_rewrite(record, ref, cdn("a.jpg"))


def test_array_rewrite_keeps_siblings_and_order():
    record = {
        "id": 1,
        "slides": [{"image": src("s0.jpg"), "text": "one"}, {"image": src("s1.jpg"), "text": "two"}],
    }
    first = record["slides"][0]
    ref = locate(record, COLLECTIONS["webstories"], MATCHER)[1]

    assert apply_rewrite(record, ref, cdn("s1.jpg"))
    assert record["slides"] == [
        {"image": src("s0.jpg"), "text": "one"},
        {"image": cdn("s1.jpg"), "text": "two"},
    ]
    assert record["slides"][0] is first


def test_embedded_rewrite_replaces_every_whole_occurrence_only():
    longer = src("a.jpg.bak")
    html = f'<img src="{src("a.jpg")}"> <img src="{longer}"> <a href="{src("a.jpg")}">x</a>'
    record = {"id": 1, "content": html}
    ref = locate(record, COLLECTIONS["content"], MATCHER)[0]

    assert apply_rewrite(record, ref, cdn("a.jpg"), MATCHER)
    assert record["content"] == f'<img src="{cdn("a.jpg")}"> <img src="{longer}"> <a href="{cdn("a.jpg")}">x</a>'


def test_custom_patterns():
    matcher = SourceMatcher(r"https://old\.example/[^\"\s]+", r"https://new\.example/[^\"\s]+")
    refs = locate({"id": 1, "image_url": "https://old.example/x.png"}, COLLECTIONS["articles"], matcher)
    assert len(refs) == 1
    assert matcher.is_target("https://new.example/x.png")


def test_collection_fields_include_id_label_and_schema_columns():
    assert COLLECTIONS["webstories"].fields == ["id", "title", "featured_image", "slides"]
    assert COLLECTIONS["articles"].is_flat
    assert not COLLECTIONS["content"].is_flat


def test_source_pattern_follows_the_configured_project_url():
    matcher = SourceMatcher(source_pattern_for("https://media.example.com/"))
    assert matcher.is_source("https://media.example.com/storage/v1/object/public/article-images/a.jpg")
    assert matcher.is_source("HTTP://Media.Example.com/storage/v1/object/public/article-images/a.jpg")
    assert not matcher.is_source("https://media.example.com/storage/v1/object/public/")
    assert not matcher.is_source(src("a.jpg"))


def test_default_pattern_accepts_http_scheme():
    assert MATCHER.is_source("http://proj.supabase.co/storage/v1/object/public/article-images/a.jpg")
