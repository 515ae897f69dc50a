import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from image_migrator.parsers.reference_locator import COLLECTIONS, SourceMatcher
from image_migrator.reconcilers.status_reconciler import collection_status, pending_assets
from fakes import MemoryStore, cdn, src

MATCHER = SourceMatcher()


def test_flat_collection_counts_records():
    rows = [{"id": i, "title": str(i), "image_url": cdn(f"{i}.jpg")} for i in range(6)]
    rows += [{"id": i, "title": str(i), "image_url": src(f"{i}.jpg")} for i in range(6, 10)]
    rows += [{"id": 10, "title": "no image", "image_url": None}, {"id": 11, "title": "blank", "image_url": ""}]
    status = collection_status(MemoryStore({"articles": rows}), COLLECTIONS["articles"], MATCHER)

    assert status.to_dict() == {"total": 10, "sourceCount": 4, "targetCount": 6, "migrated": 6, "pending": 4}
    assert status.records == 12


def test_web_stories_count_assets_across_featured_image_and_slides():
    stories = [
        {"id": 1, "title": "a", "featured_image": src("f1.jpg"), "slides": [{"image": src("s.jpg")}, {"image": cdn("t.jpg")}]},
        {"id": 2, "title": "b", "featured_image": cdn("f2.jpg"), "slides": []},
        {"id": 3, "title": "c", "featured_image": None, "slides": None},
    ]
    status = collection_status(MemoryStore({"web_stories": stories}), COLLECTIONS["webstories"], MATCHER)

    assert status.to_dict() == {
        "total": 3,
        "totalAssets": 4,
        "migratedAssets": 2,
        "pendingAssets": 2,
        "pending": 2,
    }


def test_embedded_content_counts_distinct_urls():
    html = f'<img src="{src("a.jpg")}"><img src="{src("a.jpg")}"><img src="{src("b.jpg")}"><img src="{cdn("c.jpg")}">'
    store = MemoryStore({"articles": [{"id": 1, "title": "x", "content": html}, {"id": 2, "title": "y", "content": None}]})
    status = collection_status(store, COLLECTIONS["content"], MATCHER)

    assert (status.pending, status.migrated, status.total) == (2, 1, 3)


def test_pending_assets_sums_every_collection():
    store = MemoryStore(
        {
            "articles": [{"id": 1, "title": "x", "image_url": src("a.jpg"), "content": f"<img src='{src('b.jpg')}'>"}],
            "web_stories": [{"id": 1, "title": "s", "featured_image": cdn("f.jpg"), "slides": [{"image": src("c.jpg")}]}],
        }
    )
    statuses = [collection_status(store, c, MATCHER) for c in COLLECTIONS.values()]
    assert pending_assets(statuses) == 3
