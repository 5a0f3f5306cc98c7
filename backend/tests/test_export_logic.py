import io
import os
import zipfile
from app.utils import export_utils
from app.utils.export_utils import create_zip_archive, dedupe_entry_name, iter_file_chunks, safe_entry_name
from conftest import auth_headers
from test_media import upload


def test_entry_names_cannot_escape_archive_root():
    assert safe_entry_name("../../etc/passwd") == "passwd"
    assert safe_entry_name("C:\\Users\\me\\photo.jpg") == "photo.jpg"
    assert safe_entry_name("what?.png") == "what_.png"
    assert safe_entry_name("..") == "file"


def test_duplicate_entry_names_get_counter():
    used = {"photo.jpg", "photo (1).jpg"}
    assert dedupe_entry_name("photo.jpg", used) == "photo (2).jpg"
    assert dedupe_entry_name("other.jpg", used) == "other.jpg"


def test_zip_structure_flat_with_duplicates(tmp_path):
    first = tmp_path / "a"
    second = tmp_path / "b"
    first.write_bytes(b"content1")
    second.write_bytes(b"content2")

    archive, skipped = create_zip_archive([("photo.jpg", first), ("photo.jpg", second)])

    assert skipped == []
    with archive, zipfile.ZipFile(archive) as zf:
        assert zf.namelist() == ["photo.jpg", "photo (1).jpg"]
        assert zf.read("photo (1).jpg") == b"content2"


def test_zip_skips_missing_files(tmp_path):
    present = tmp_path / "present"
    present.write_bytes(b"here")

    archive, skipped = create_zip_archive([("gone.txt", tmp_path / "gone"), ("here.txt", present)])

    assert skipped == [0]
    with archive, zipfile.ZipFile(archive) as zf:
        assert zf.namelist() == ["here.txt"]


def test_large_archive_is_streamed_in_chunks(tmp_path, monkeypatch):
    monkeypatch.setattr(export_utils, "SPOOL_MAX_MEMORY", 16)
    source = tmp_path / "noise.bin"
    source.write_bytes(os.urandom(4096))

    archive, _ = create_zip_archive([("noise.bin", source)])
    chunks = list(iter_file_chunks(archive, chunk_size=1024))

    assert len(chunks) > 1
    assert all(len(chunk) <= 1024 for chunk in chunks)
    assert archive.closed
    with zipfile.ZipFile(io.BytesIO(b"".join(chunks))) as zf:
        assert zf.read("noise.bin") == source.read_bytes()


def test_zip_endpoint_exports_own_active_items(client, alice, bob, upload_dir):
    headers = auth_headers(alice["token"])
    first = upload(client, alice["token"], name="one.png", content=b"1", mime="image/png")
    second = upload(client, alice["token"], name="two.png", content=b"2", mime="image/png")
    trashed = upload(client, alice["token"], name="three.png", content=b"3", mime="image/png")
    foreign = upload(client, bob["token"], name="bob.png", content=b"4", mime="image/png", is_shared=True)
    client.delete(f"/api/media/{trashed['id']}", headers=headers)
    (upload_dir / second["filename"]).unlink()

    response = client.post(
        "/api/media/zip",
        json={"ids": [first["id"], second["id"], trashed["id"], foreign["id"], 9999]},
        headers=headers,
    )

    assert response.status_code == 200
    assert response.headers["content-type"] == "application/zip"
    assert response.headers["content-disposition"].startswith('attachment; filename="media-')
    skipped = {int(value) for value in response.headers["x-skipped-items"].split(",")}
    assert skipped == {second["id"], trashed["id"], foreign["id"], 9999}
    with zipfile.ZipFile(io.BytesIO(response.content)) as zf:
        assert zf.namelist() == ["one.png"]
        assert zf.read("one.png") == b"1"


def test_zip_endpoint_without_ids(client, alice):
    response = client.post("/api/media/zip", json={"ids": []}, headers=auth_headers(alice["token"]))
    assert response.status_code == 400
    assert response.json()["detail"] == "No IDs provided"


def test_zip_endpoint_with_nothing_exportable(client, alice, bob):
    foreign = upload(client, bob["token"])
    response = client.post("/api/media/zip", json={"ids": [foreign["id"]]}, headers=auth_headers(alice["token"]))
    assert response.status_code == 404
