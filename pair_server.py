import os
import re
import stat
import logging
from dataclasses import dataclass
from urllib.parse import quote, unquote

from flask import (
    Flask,
    Response,
    request,
    render_template_string,
    abort,
)
from werkzeug.exceptions import HTTPException

from pair_config import ShareConfig, join_under

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024  # 1 MiB

# Routes take every method so a wrong one can get the status the route
# documents (404 on pages, 405 on the upload/download APIs).
ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

UPLOAD_FIELD = "files"
TEXT_PLAIN = "text/plain; charset=utf-8"

_MALFORMED_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")

UPLOAD_HTML = r'''
<!doctype html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Upload files</title>
    <style>
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body {
            max-width: 600px;
            margin: 0 auto;
            padding: 20px 15px;
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Arial, sans-serif;
            line-height: 1.5;
        }
        .upload-box {
            padding: 25px 15px;
            border: 2px dashed #ccc;
            border-radius: 8px;
            text-align: center;
        }
        h1 { font-size: 1.8rem; margin-bottom: 20px; color: #333; }
        #fileInput { margin: 20px 0; padding: 10px; width: 100%; font-size: 1rem; }
        #uploadBtn {
            padding: 12px 30px;
            background-color: #4285f4;
            color: white;
            border: none;
            border-radius: 4px;
            cursor: pointer;
            font-size: 1rem;
            width: 100%;
            max-width: 300px;
        }
        #uploadBtn:disabled { background-color: #9aa0a6; cursor: not-allowed; }
        .progress {
            display: none;
            height: 20px;
            margin: 20px 0 8px;
            border: 1px solid #ccc;
            border-radius: 10px;
            overflow: hidden;
        }
        .progress-bar { height: 100%; width: 0%; background-color: #28a745; transition: width 0.2s ease; }
        #progressText { display: none; color: #666; font-size: 0.9rem; }
        #result { display: none; margin-top: 20px; padding: 15px; border-radius: 4px; font-size: 0.95rem; }
        #result.success { color: #28a745; border: 1px solid #28a745; background-color: #f8fff9; }
        #result.error { color: #dc3545; border: 1px solid #dc3545; background-color: #fff5f5; }
        .download-link { display: block; margin-top: 20px; color: #4285f4; text-decoration: none; }
    </style>
</head>
<body>
<div class="upload-box">
    <h1>Upload files</h1>
    <input type="file" id="fileInput" name="files" multiple>
    <button id="uploadBtn" type="button">Upload</button>

    <div class="progress" id="progress"><div class="progress-bar" id="progressBar"></div></div>
    <div id="progressText">Upload Progress: 0%</div>

    <div id="result"></div>
    <a href="/downloads" class="download-link">Go to Download List Page</a>
</div>

<script>
    const fileInput = document.getElementById('fileInput');
    const uploadBtn = document.getElementById('uploadBtn');
    const progress = document.getElementById('progress');
    const progressBar = document.getElementById('progressBar');
    const progressText = document.getElementById('progressText');
    const result = document.getElementById('result');

    function showResult(msg, kind) {
        result.textContent = msg;
        result.className = kind;
        result.style.display = 'block';
    }

    uploadBtn.addEventListener('click', () => {
        const files = fileInput.files;
        if (files.length === 0) {
            showResult('Please select at least one file!', 'error');
            return;
        }

        const formData = new FormData();
        for (const f of files) {
            formData.append('files', f);
        }

        uploadBtn.disabled = true;
        progress.style.display = 'block';
        progressText.style.display = 'block';
        result.style.display = 'none';

        const xhr = new XMLHttpRequest();
        xhr.open('POST', '/upload', true);
        xhr.upload.addEventListener('progress', (e) => {
            if (!e.lengthComputable) return;
            const percent = Math.round((e.loaded / e.total) * 100);
            progressBar.style.width = percent + '%';
            progressText.textContent = 'Upload Progress: ' + percent + '%';
        });
        xhr.addEventListener('load', () => {
            if (xhr.status >= 200 && xhr.status < 300) {
                showResult(xhr.responseText, 'success');
            } else {
                showResult('Upload failed: ' + (xhr.responseText || xhr.statusText), 'error');
            }
            uploadBtn.disabled = false;
        });
        xhr.addEventListener('error', () => {
            showResult('Upload failed: Network error', 'error');
            uploadBtn.disabled = false;
        });
        xhr.send(formData);
    });
</script>
</body>
</html>
'''

DOWNLOADS_HTML = r'''
<!doctype html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Download Files List</title>
    <style>
        * { margin: 0; padding: 0; box-sizing: border-box; }
        body {
            max-width: 900px;
            margin: 0 auto;
            padding: 20px 15px;
            font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Arial, sans-serif;
            line-height: 1.5;
        }
        h1 { font-size: 1.8rem; color: #333; text-align: center; margin-bottom: 20px; }
        .table-container { overflow-x: auto; margin: 20px 0; }
        table { border-collapse: collapse; width: 100%; min-width: 300px; }
        th, td { padding: 12px 8px; text-align: left; border-bottom: 1px solid #ddd; font-size: 0.9rem; }
        th { background-color: #f8f9fa; font-weight: 600; }
        td.mono { font-family: ui-monospace, SFMono-Regular, Menlo, Monaco, Consolas, "Liberation Mono", "Courier New", monospace; }
        td.size { white-space: nowrap; }
        .download-btn {
            display: inline-block;
            padding: 8px 12px;
            background-color: #28a745;
            color: white;
            border-radius: 4px;
            text-decoration: none;
            font-size: 0.85rem;
        }
        .download-btn.disabled { background-color: #6c757d; cursor: not-allowed; }
        .back-link { color: #4285f4; text-decoration: none; }
        .empty-message {
            text-align: center;
            color: #666;
            margin: 40px 0;
            padding: 20px;
            border: 1px dashed #ddd;
            border-radius: 4px;
        }
    </style>
</head>
<body>
<h1>Downloadable Files</h1>
<a href="/" class="back-link">&larr; Back to Upload</a>

{% if files %}
<div class="table-container">
    <table>
        <tr><th>Filename</th><th>Size</th><th>Action</th></tr>
        {% for f in files %}
        <tr>
            <td class="mono">{{ f.name }}</td>
            <td class="size">{{ f.size_human }}</td>
            <td>
                {% if f.exists %}
                <a href="/download/{{ f.url_path }}" class="download-btn">Download</a>
                {% else %}
                <span class="download-btn disabled" aria-disabled="true">Download</span>
                {% endif %}
            </td>
        </tr>
        {% endfor %}
    </table>
</div>
{% else %}
<div class="empty-message">No downloadable files configured (use -f or -x parameter)</div>
{% endif %}
</body>
</html>
'''

# ----------------------------
# Shared helpers
# ----------------------------

def format_file_size(num: int) -> str:
    """Human-readable file sizes (1024-based, one decimal above bytes)."""
    units = ["B", "KB", "MB", "GB", "TB", "PB", "EB"]
    size = float(num)
    for unit in units:
        if size < 1024 or unit == units[-1]:
            if unit == "B":
                return f"{int(size)} {unit}"
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{num} B"

@dataclass(frozen=True)
class DownloadableFile:
    name: str
    rel_path: str
    abs_path: str
    exists: bool
    size: int = 0

    @property
    def size_human(self) -> str:
        return format_file_size(self.size) if self.exists else "-"

    @property
    def url_path(self) -> str:
        return quote(self.rel_path, safe="")

def describe_file(config: ShareConfig, rel_path: str) -> DownloadableFile:
    abs_path = config.abs_path(rel_path)
    exists, size = False, 0
    try:
        st = os.stat(abs_path)
    except (OSError, ValueError):
        pass
    else:
        if stat.S_ISREG(st.st_mode):
            exists, size = True, st.st_size
    return DownloadableFile(
        name=os.path.basename(abs_path),
        rel_path=rel_path,
        abs_path=abs_path,
        exists=exists,
        size=size,
    )

def downloadable_files(config: ShareConfig) -> list[DownloadableFile]:
    """Allow-list entries with their current on-disk state."""
    return [describe_file(config, p) for p in config.allowed_paths]

def ensure_within_dir(base_dir: str, target: str) -> None:
    """Abort with 403 if target escapes base_dir (prevents path traversal)."""
    try:
        rel = os.path.relpath(target, base_dir)
    except ValueError:
        abort(403, f"Access denied: File must be within current directory ({base_dir})")
    if rel == os.pardir or rel.startswith(os.pardir + os.sep):
        abort(403, f"Access denied: File must be within current directory ({base_dir})")

def decode_path(raw: str) -> str:
    if _MALFORMED_ESCAPE.search(raw):
        abort(400, f"Failed to decode file path: invalid escape in {raw!r}")
    try:
        return unquote(raw, errors="strict")
    except UnicodeDecodeError as e:
        abort(400, f"Failed to decode file path: {e}")

def upload_name(raw_name: str) -> str:
    """Last path segment of a client-declared filename."""
    return raw_name.replace("\\", "/").rsplit("/", 1)[-1]

def content_disposition(filename: str) -> str:
    ascii_name = filename.encode("ascii", "replace").decode().replace('"', "")
    header = f'attachment; filename="{ascii_name}"'
    if ascii_name != filename:
        header += f"; filename*=UTF-8''{quote(filename, safe='')}"
    return header

def text_response(msg: str, status: int = 200):
    return msg, status, {"Content-Type": TEXT_PLAIN}

def _remove_partial(path: str) -> None:
    try:
        os.remove(path)
    except OSError as e:
        logger.warning("failed to remove partial upload %s: %s", path, e)

def save_stream(stream, dest: str) -> None:
    """Create dest exclusively and copy stream into it in chunks.

    Raises FileExistsError if dest appeared meanwhile. A failed copy removes
    the partial file before re-raising.
    """
    with open(dest, "xb") as out:
        try:
            for chunk in iter(lambda: stream.read(CHUNK_SIZE), b""):
                out.write(chunk)
        except OSError:
            out.close()
            _remove_partial(dest)
            raise

def _read_chunks(f):
    with f:
        while True:
            try:
                chunk = f.read(CHUNK_SIZE)
            except OSError as e:
                logger.error("failed to read download file %s: %s", f.name, e)
                return
            if not chunk:
                return
            yield chunk

# ----------------------------
# Flask app
# ----------------------------

def create_app(config: ShareConfig) -> Flask:
    app = Flask(__name__)
    app.config["SHARE_CONFIG"] = config

    # Uploads of any size; Werkzeug spools large parts to temp files.
    app.config["MAX_CONTENT_LENGTH"] = None

    work_dir = config.work_dir

    @app.errorhandler(HTTPException)
    def plain_text_error(e: HTTPException):
        return text_response(e.description or e.name, e.code)

    @app.route("/", methods=ALL_METHODS)
    def upload_page():
        if request.method != "GET":
            abort(404)
        return render_template_string(UPLOAD_HTML)

    @app.route("/upload", methods=ALL_METHODS)
    def upload_files():
        if request.method != "POST":
            return text_response("Only POST method is supported", 405)

        if request.mimetype != "multipart/form-data":
            return text_response(f"Failed to parse form: expected multipart/form-data, got {request.mimetype or 'nothing'}", 400)

        parts = [f for f in request.files.getlist(UPLOAD_FIELD) if f.filename]
        if not parts:
            return text_response("No files were uploaded", 400)

        saved: list[str] = []
        for part in parts:
            name = upload_name(part.filename)
            if name in ("", ".", "..") or "\x00" in name:
                return text_response(f"Invalid filename {part.filename!r}", 400)

            dest = join_under(work_dir, name)
            ensure_within_dir(work_dir, dest)

            if os.path.lexists(dest):
                return text_response(f"File {name} already exists", 409)

            try:
                save_stream(part.stream, dest)
            except FileExistsError:
                return text_response(f"File {name} already exists", 409)
            except OSError as e:
                logger.error("failed to save upload %s: %s", dest, e)
                return text_response(f"Failed to save file {name}: {e}", 500)

            try:
                os.chmod(dest, 0o644)
            except OSError as e:
                logger.warning("failed to set permissions for file %s: %s", dest, e)

            logger.info("saved upload %s", dest)
            saved.append(name)

        return text_response(f"Successfully uploaded {len(saved)} files: {', '.join(saved)}")

    @app.route("/downloads", methods=ALL_METHODS)
    def downloads_list():
        if request.method != "GET":
            abort(404)
        return render_template_string(DOWNLOADS_HTML, files=downloadable_files(config))

    @app.route("/download/", defaults={"raw_path": ""}, methods=ALL_METHODS)
    @app.route("/download/<path:raw_path>", methods=ALL_METHODS)
    def download_file(raw_path: str):
        if request.method != "GET":
            return text_response("Only GET method is supported", 405)

        if not raw_path:
            return text_response(f"Please specify relative path (under {work_dir}) e.g., /download/uploads/test.txt", 400)

        rel_path = decode_path(raw_path)
        target = join_under(work_dir, rel_path)
        ensure_within_dir(work_dir, target)

        allowed = any(f.exists and f.abs_path == target for f in downloadable_files(config))
        if not allowed:
            abort(403, "Access denied: File is not in allowed download list")

        try:
            st = os.stat(target)
        except FileNotFoundError:
            abort(404, f"File {rel_path} does not exist (under {work_dir})")
        except OSError as e:
            logger.error("failed to stat %s: %s", target, e)
            abort(500, f"Failed to get file information: {e}")

        if stat.S_ISDIR(st.st_mode):
            abort(400, f"{rel_path} is a directory, download is not supported")

        try:
            f = open(target, "rb")
        except OSError as e:
            logger.error("failed to open %s: %s", target, e)
            abort(500, f"Failed to open file: {e}")

        resp = Response(_read_chunks(f), mimetype="application/octet-stream", direct_passthrough=True)
        resp.headers["Content-Disposition"] = content_disposition(os.path.basename(target))
        resp.headers["Content-Length"] = str(st.st_size)
        resp.call_on_close(f.close)
        return resp

    return app
