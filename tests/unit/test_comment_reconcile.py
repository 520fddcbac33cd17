import mongomock
import pytest

from noteclub.migrations import comment_reconcile as cr


def comment(cid, content="Great record, loved it", author="u1", album="a1", created="2024-03-01T12:00:00+00:00"):
    return {"id": cid, "content": content, "author": author, "album": album, "created_at": created}


def album(aid, posted_by="u1", posted_at="2024-03-01T10:00:00+00:00", title="Blue Lines", artist="Massive Attack",
          description=None):
    return {"id": aid, "posted_by": posted_by, "posted_at": posted_at, "title": title, "artist": artist,
            "description": description}


def test_normalize_text_collapses_case_and_whitespace():
    assert cr.normalize_text("  Hello \n  World ") == "hello world"
    assert cr.normalize_text(None) == ""


def test_split_album_comments():
    ids, embedded = cr.split_album_comments({"comments": ["c1", {"content": "hi"}, "c2"]})
    assert ids == ["c1", "c2"]
    assert embedded == [{"content": "hi"}]


def test_embedded_to_standalone():
    doc = cr.embedded_to_standalone("a1", {
        "_id": {"$oid": "5f1d7f0c2b3e4a0012345678"},
        "content": "  Such a good album  ",
        "postedBy": "u1",
        "postedAt": "2020-07-26T18:00:00Z",
    })
    assert doc["album"] == "a1"
    assert doc["content"] == "Such a good album"
    assert doc["author"] == "u1"
    assert doc["legacy_id"] == "5f1d7f0c2b3e4a0012345678"
    assert doc["created_at"] == "2020-07-26T18:00:00+00:00"
    assert doc["depth"] == 0


def test_embedded_without_text_is_dropped():
    assert cr.embedded_to_standalone("a1", {"content": "   "}) is None


def test_find_duplicates_keeps_earliest_within_window():
    comments = [
        comment("c2", created="2024-03-01T12:00:30+00:00"),
        comment("c1", created="2024-03-01T12:00:00+00:00"),
        comment("c3", created="2024-03-01T12:05:00+00:00"),
        comment("c4", content="GREAT record,   loved it", created="2024-03-01T12:00:10+00:00"),
    ]
    assert sorted(cr.find_duplicates(comments)) == ["c2", "c4"]


def test_find_duplicates_needs_same_author_and_album():
    comments = [
        comment("c1"),
        comment("c2", author="u2"),
        comment("c3", album="a2"),
    ]
    assert cr.find_duplicates(comments) == []


def test_match_by_author_window_picks_closest_album():
    albums = [
        album("a1", posted_at="2024-02-20T10:00:00+00:00"),
        album("a2", posted_at="2024-03-02T10:00:00+00:00"),
        album("a3", posted_by="u2", posted_at="2024-03-01T12:00:00+00:00"),
    ]
    match = cr.match_by_author_window(comment("c1", album=None), albums)
    assert match["id"] == "a2"


def test_match_by_author_window_outside_window():
    albums = [album("a1", posted_at="2024-01-01T10:00:00+00:00")]
    assert cr.match_by_author_window(comment("c1", album=None), albums) is None


def test_keywords_skip_short_words_and_stopwords():
    assert cr.keywords("This album by Portishead is really GREAT, dummy!") == {"portishead", "dummy"}


def test_match_by_keywords_requires_single_match():
    albums = [
        album("a1", title="Dummy", artist="Portishead"),
        album("a2", title="Mezzanine", artist="Massive Attack"),
    ]
    assert cr.match_by_keywords({"content": "Portishead at their best"}, albums)["id"] == "a1"
    assert cr.match_by_keywords({"content": "nothing relevant here"}, albums) is None

    albums.append(album("a3", title="Third", artist="Portishead"))
    assert cr.match_by_keywords({"content": "Portishead at their best"}, albums) is None


def test_is_low_quality():
    assert cr.is_low_quality(comment("c1", content="ok"))
    assert cr.is_low_quality(comment("c1", author=None))
    assert cr.is_low_quality(comment("c1", created=None))
    assert not cr.is_low_quality(comment("c1"))


def test_relink_orphan_prefers_author_window():
    albums = [album("a1", title="Dummy", artist="Portishead"),
              album("a2", posted_by="u2", title="Third", artist="Beak")]
    found, strategy = cr.relink_orphan(comment("c1", content="Portishead forever and ever", album=None), albums)
    assert (found["id"], strategy) == ("a1", "author_window")

    found, strategy = cr.relink_orphan(comment("c2", content="Beak sounds huge", author="u9", album=None), albums)
    assert (found["id"], strategy) == ("a2", "keywords")


@pytest.fixture
def legacy_db():
    db = mongomock.MongoClient()["reconcile-test"]
    db.albums.insert_many([
        {"id": "a1", "title": "Dummy", "artist": "Portishead", "posted_by": "u1",
         "posted_at": "2024-03-01T10:00:00+00:00",
         "comments": ["c1", {"content": "Embedded thoughts on this", "postedBy": "u2",
                             "postedAt": "2024-03-01T11:00:00+00:00"}]},
        {"id": "a2", "title": "Mezzanine", "artist": "Massive Attack", "posted_by": "u2",
         "posted_at": "2024-05-01T10:00:00+00:00", "comments": []},
    ])
    db.comments.insert_many([
        comment("c1", album="a1"),
        comment("c1dup", album="a1", created="2024-03-01T12:00:20+00:00"),
        comment("orphan1", content="Still thinking about Mezzanine", author="u9", album="gone"),
        comment("orphan2", content="meh", author=None, album="gone"),
        comment("orphan3", content="A long comment nobody can place", author="u9", album="gone",
                created="2023-01-01T00:00:00+00:00"),
    ])
    return db


def test_analyze_counts_both_storage_kinds(legacy_db):
    report = cr.analyze(legacy_db)
    assert report["albums"] == 2
    assert report["standalone"] == 5
    assert report["embedded"] == 1
    assert report["albums_with_embedded"] == 1
    assert report["orphaned"] == 3
    assert report["mixed_album_ids"] == ["a1"]


def test_dry_run_writes_nothing(legacy_db):
    cr.reconcile(legacy_db, apply=False)
    assert legacy_db.comments.count_documents({}) == 5
    assert isinstance(legacy_db.albums.find_one({"id": "a1"})["comments"][1], dict)


def test_reconcile_apply(legacy_db):
    result = cr.reconcile(legacy_db, apply=True)

    assert result["migrated"] == 1
    assert result["duplicates"] == 1
    assert result["orphans"]["keywords"] == 1
    assert result["orphans"]["deleted"] == 1
    assert result["orphans"]["manual_review"] == ["orphan3"]

    a1 = legacy_db.albums.find_one({"id": "a1"}, {"_id": 0})
    assert all(isinstance(c, str) for c in a1["comments"])
    assert "c1dup" not in a1["comments"]
    assert legacy_db.comments.count_documents({"album": "a1"}) == 2
    assert legacy_db.comments.find_one({"id": "orphan1"})["album"] == "a2"
    assert legacy_db.comments.find_one({"id": "orphan2"}) is None
    assert result["after"]["embedded"] == 0
