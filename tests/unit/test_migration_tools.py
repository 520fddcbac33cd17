import gzip
import os
import shutil

import pytest
from bson import json_util

from noteclub.http_api.auth import verify_password
from noteclub.migrations import backups, members, verify

ALICE = "64c0a6f4e5b1a2c3d4e5f601"
BOB = "64c0a6f4e5b1a2c3d4e5f602"
GROUP = "64c0a6f4e5b1a2c3d4e5f700"


def test_verify_clean_seed_data(db):
    result = verify.verify(db)
    assert result["counts"]["users"] == 3
    assert result["counts"]["groups"] == 1
    assert result["ok"] is True


def test_verify_reports_broken_references(db):
    db.albums.insert_one({"schema_version": 1, "id": "a1", "title": "T", "artist": "A",
                          "posted_by": "nobody", "posted_at": "2024-01-01T00:00:00+00:00", "turn_number": 1})
    db.comments.insert_one({"schema_version": 1, "id": "c1", "content": "hello there", "author": ALICE,
                            "album": "missing", "depth": 0, "created_at": "2024-01-01T00:00:00+00:00"})
    db.groups.update_one({"id": GROUP}, {"$set": {"current_turn_index": 9},
                                         "$push": {"turn_order": "ghost"}})

    problems = verify.verify(db)["problems"]
    assert problems["albums_without_poster"] == ["a1"]
    assert problems["comments_without_album"] == ["c1"]
    assert problems["turn_order_unknown_users"] == [GROUP]
    assert problems["turn_index_out_of_range"] == [GROUP]


def test_set_active_dry_run_and_apply(db):
    result = members.set_active(["Bob", "nobody"], False, db=db)
    assert result["matched"] == ["bob"]
    assert result["missing"] == ["nobody"]
    assert db.users.find_one({"id": BOB})["is_active"] is True

    members.set_active(["bob"], False, db=db, apply=True)
    assert db.users.find_one({"id": BOB})["is_active"] is False
    assert members.roster(db)["inactive"] == ["bob", "carol"]


def test_backup_and_restore(db, tmp_path):
    path = backups.backup(db, collections=["users", "groups"], backup_dir=str(tmp_path), upload=False)
    assert path.endswith(".jsonl.gz")
    with gzip.open(path, "rt") as f:
        assert len(f.readlines()) == 4

    db.users.delete_many({})
    db.groups.update_one({"id": GROUP}, {"$set": {"name": "Renamed"}})

    assert backups.restore(path, db=db) == {"users": 3, "groups": 1}
    assert db.users.count_documents({}) == 0

    backups.restore(path, db=db, apply=True)
    assert db.users.count_documents({}) == 3
    assert db.groups.find_one({"id": GROUP})["name"] == "Note Club"
    assert backups.list_backups(str(tmp_path)) == [path.rsplit("/", 1)[-1]]


def test_reset_password_for_imported_member(db):
    assert members.reset_password("Bob", "new-password", db=db) is True
    assert db.users.find_one({"id": BOB})["password_hash"] is None

    assert members.reset_password("bob", "new-password", db=db, apply=True) is True
    assert verify_password("new-password", db.users.find_one({"id": BOB})["password_hash"])

    assert members.reset_password("nobody", "new-password", db=db, apply=True) is False
    with pytest.raises(ValueError):
        members.reset_password("bob", "123", db=db)


class FakeS3:
    def __init__(self, objects):
        self.objects = objects
        self.downloads = []

    def download_backup(self, key, path):
        self.downloads.append(key)
        if key not in self.objects:
            return False
        shutil.copyfile(self.objects[key], path)
        return True


def test_restore_from_s3_key(db, tmp_path, monkeypatch):
    local = backups.backup(db, collections=["groups"], backup_dir=str(tmp_path / "made"), upload=False)
    key = "backups/" + os.path.basename(local)
    fake = FakeS3({key: local})
    monkeypatch.setenv("S3_BUCKET_NAME", "noteclub-backups")
    monkeypatch.setattr(backups, "get_s3_service", lambda: fake)

    db.groups.update_one({"id": GROUP}, {"$set": {"name": "Renamed"}})
    counts = backups.restore(key, db=db, apply=True, backup_dir=str(tmp_path / "fetched"))

    assert counts == {"groups": 1}
    assert fake.downloads == [key]
    assert (tmp_path / "fetched" / os.path.basename(local)).exists()
    assert db.groups.find_one({"id": GROUP})["name"] == "Note Club"

    with pytest.raises(FileNotFoundError):
        backups.restore("backups/missing.jsonl.gz", db=db, backup_dir=str(tmp_path / "fetched"))


def test_restore_without_s3_needs_a_local_file(db, monkeypatch):
    monkeypatch.delenv("S3_BUCKET_NAME", raising=False)
    with pytest.raises(FileNotFoundError):
        backups.restore("backups/noteclub-20240101T000000Z.jsonl.gz", db=db)


def test_failed_restore_keeps_existing_documents(db, tmp_path):
    path = tmp_path / "broken.jsonl.gz"
    duplicate = {"schema_version": 1, "id": "u9", "username": "twin", "name": "Twin", "email": "twin@noteclub.test"}
    with gzip.open(path, "wt", encoding="utf-8") as f:
        for doc in (duplicate, {**duplicate, "id": "u10", "username": "twin2"}):
            f.write(json_util.dumps({"collection": "users", "document": doc}) + "\n")

    with pytest.raises(Exception):
        backups.restore(str(path), db=db, apply=True)

    assert sorted(u["username"] for u in db.users.find({})) == ["alice", "bob", "carol"]
