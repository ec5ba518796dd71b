import sys
import logging
import threading
from urllib.parse import quote

import qrcode

from pair_config import ShareConfig, MODE_SINGLE, MODE_MULTI

logger = logging.getLogger(__name__)

def qr_target_url(config: ShareConfig, host: str, port: int) -> str:
    """URL worth scanning: the single file, the download list, or the upload page."""
    base = f"http://{host}:{port}"
    if config.mode == MODE_SINGLE:
        return f"{base}/download/{quote(config.single_file)}"
    if config.mode == MODE_MULTI:
        return f"{base}/downloads"
    return base

def qr_hint(config: ShareConfig) -> str:
    if config.mode == MODE_SINGLE:
        return f"Scan below qrcode to download file: {config.single_file}"
    if config.mode == MODE_MULTI:
        return "Scan below qrcode to access downloadable files list."
    return "Scan below qrcode to upload files."

def print_qr(url: str, hint: str | None = None, out=None) -> None:
    out = out or sys.stdout
    qr = qrcode.QRCode(error_correction=qrcode.constants.ERROR_CORRECT_M, border=1)
    qr.add_data(url)
    qr.make(fit=True)
    if hint:
        print(f"\n{hint}", file=out)
    qr.print_ascii(out=out, invert=True)
    out.flush()

def _render_safely(url: str, hint: str | None, out) -> None:
    try:
        print_qr(url, hint, out)
    except Exception as e:
        logger.warning("could not render QR code for %s: %s", url, e)

def start_qr_thread(config: ShareConfig, host: str, port: int, out=None) -> threading.Thread:
    """Render the QR code in the background so the server starts right away."""
    t = threading.Thread(
        target=_render_safely,
        args=(qr_target_url(config, host, port), qr_hint(config), out),
        name="qr-render",
        daemon=True,
    )
    t.start()
    return t
