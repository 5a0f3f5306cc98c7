import os
import time
from app.core.config import settings
from app.core.scheduler import cleanup_orphaned_files_job, find_orphaned_files
from app.models.media_item import MediaItem
from app.models.user import User
from app.storage.local_storage import LocalStorage


def _age(path, minutes):
    stamp = time.time() - minutes * 60
    os.utime(path, (stamp, stamp))


def _item_for(db_session, filename):
    owner = User(name="Owner", email="owner@example.com", hashed_password="x")
    db_session.add(owner)
    db_session.commit()
    item = MediaItem(
        user_id=owner.id, title="kept", original_name="kept.png", filename=filename,
        mime_type="image/png", size=1,
    )
    db_session.add(item)
    db_session.commit()
    return item


def test_find_orphaned_files_respects_grace_period(db_session, tmp_path):
    file_storage = LocalStorage(str(tmp_path))
    referenced = tmp_path / "kept.png"
    old_orphan = tmp_path / "old.png"
    fresh_orphan = tmp_path / "fresh.png"
    for path in (referenced, old_orphan, fresh_orphan):
        path.write_bytes(b"x")
    _age(referenced, 120)
    _age(old_orphan, 120)
    _item_for(db_session, "kept.png")

    orphaned = find_orphaned_files(db_session, file_storage, grace_minutes=60)

    assert orphaned == [old_orphan]


def test_cleanup_job_deletes_only_orphans(db_session, tmp_path, monkeypatch):
    monkeypatch.setattr(settings, "ORPHAN_FILE_GRACE_MINUTES", 0)
    file_storage = LocalStorage(str(tmp_path))
    (tmp_path / "kept.png").write_bytes(b"x")
    (tmp_path / "stray.png").write_bytes(b"x")
    _age(tmp_path / "stray.png", 1)
    _item_for(db_session, "kept.png")

    deleted = cleanup_orphaned_files_job(db=db_session, file_storage=file_storage)

    assert deleted == 1
    assert (tmp_path / "kept.png").exists()
    assert not (tmp_path / "stray.png").exists()


def test_cleanup_job_with_nothing_to_do(db_session, tmp_path):
    assert cleanup_orphaned_files_job(db=db_session, file_storage=LocalStorage(str(tmp_path))) == 0
