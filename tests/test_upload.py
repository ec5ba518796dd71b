import io
import os
import stat

import pytest

import pair_server
from pair_server import save_stream


def _post_files(client, *files):
    data = {"files": [(io.BytesIO(content), name) for name, content in files]}
    return client.post("/upload", data=data, content_type="multipart/form-data")


def test_upload_page_served_on_root(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.mimetype == "text/html"
    body = resp.get_data(as_text=True)
    assert 'type="file"' in body
    assert "/upload" in body


@pytest.mark.parametrize("method", ["post", "put", "delete"])
def test_root_other_methods_not_found(client, method):
    assert getattr(client, method)("/").status_code == 404


def test_unknown_path_not_found(client):
    assert client.get("/nope").status_code == 404


def test_upload_two_files(client, work_dir):
    resp = _post_files(client, ("a.txt", b"alpha"), ("b.bin", b"\x00\x01\x02beta"))

    assert resp.status_code == 200
    assert resp.mimetype == "text/plain"
    assert resp.get_data(as_text=True) == "Successfully uploaded 2 files: a.txt, b.bin"
    assert (work_dir / "a.txt").read_bytes() == b"alpha"
    assert (work_dir / "b.bin").read_bytes() == b"\x00\x01\x02beta"


def test_uploaded_file_permissions(client, work_dir):
    assert _post_files(client, ("perm.txt", b"x")).status_code == 200
    assert stat.S_IMODE(os.stat(work_dir / "perm.txt").st_mode) == 0o644


def test_upload_conflict_keeps_existing(client, work_dir):
    (work_dir / "a.txt").write_bytes(b"original")

    resp = _post_files(client, ("a.txt", b"replacement"))

    assert resp.status_code == 409
    assert "already exists" in resp.get_data(as_text=True)
    assert (work_dir / "a.txt").read_bytes() == b"original"


def test_upload_conflict_keeps_earlier_parts(client, work_dir):
    (work_dir / "b.txt").write_bytes(b"old")

    resp = _post_files(client, ("a.txt", b"new a"), ("b.txt", b"new b"), ("c.txt", b"new c"))

    assert resp.status_code == 409
    assert (work_dir / "a.txt").read_bytes() == b"new a"
    assert (work_dir / "b.txt").read_bytes() == b"old"
    assert not (work_dir / "c.txt").exists()


def test_upload_ignores_client_directories(client, work_dir):
    resp = _post_files(client, ("../../evil.txt", b"evil"), ("photos/2024/pic.jpg", b"pic"))

    assert resp.status_code == 200
    assert (work_dir / "evil.txt").read_bytes() == b"evil"
    assert (work_dir / "pic.jpg").read_bytes() == b"pic"
    assert not (work_dir.parent / "evil.txt").exists()
    assert not (work_dir / "photos").exists()


def test_upload_name_is_last_segment():
    assert pair_server.upload_name("a/b/c.txt") == "c.txt"
    assert pair_server.upload_name("C:\\Users\\me\\c.txt") == "c.txt"
    assert pair_server.upload_name("plain.txt") == "plain.txt"


def test_upload_rejects_dot_names(client, work_dir):
    resp = _post_files(client, ("a/..", b"x"))
    assert resp.status_code == 400


def test_upload_without_files(client):
    resp = client.post("/upload", data={"other": "value"}, content_type="multipart/form-data")
    assert resp.status_code == 400
    assert resp.get_data(as_text=True) == "No files were uploaded"


def test_upload_not_multipart(client):
    resp = client.post("/upload", data=b"raw", content_type="application/octet-stream")
    assert resp.status_code == 400


@pytest.mark.parametrize("method", ["get", "put", "delete"])
def test_upload_wrong_method(client, method):
    resp = getattr(client, method)("/upload")
    assert resp.status_code == 405
    assert resp.get_data(as_text=True) == "Only POST method is supported"


def test_upload_io_error(client, work_dir, monkeypatch):
    def broken(stream, dest):
        raise OSError("disk full")

    monkeypatch.setattr(pair_server, "save_stream", broken)

    resp = _post_files(client, ("a.txt", b"a"), ("b.txt", b"b"))

    assert resp.status_code == 500
    assert "disk full" in resp.get_data(as_text=True)


class FailingStream:
    def __init__(self):
        self.calls = 0

    def read(self, size):
        self.calls += 1
        if self.calls == 1:
            return b"partial"
        raise OSError("connection reset")


def test_save_stream_removes_partial_file(tmp_path):
    dest = tmp_path / "out.bin"
    with pytest.raises(OSError, match="connection reset"):
        save_stream(FailingStream(), str(dest))
    assert not dest.exists()


def test_save_stream_is_exclusive(tmp_path):
    dest = tmp_path / "out.bin"
    dest.write_bytes(b"keep")
    with pytest.raises(FileExistsError):
        save_stream(io.BytesIO(b"new"), str(dest))
    assert dest.read_bytes() == b"keep"


def test_save_stream_large_content(tmp_path):
    payload = os.urandom(pair_server.CHUNK_SIZE * 2 + 17)
    dest = tmp_path / "big.bin"
    save_stream(io.BytesIO(payload), str(dest))
    assert dest.read_bytes() == payload
