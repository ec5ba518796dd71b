#!/usr/bin/env python3
import os
import sys
import argparse
import logging

from pair_config import (
    DEFAULT_HOST,
    DEFAULT_PORT,
    ShareConfig,
    clean_work_dir,
    parse_multi_paths,
)
from pair_network import NetworkDiscoveryError, local_ip_string
from pair_qr import start_qr_thread
from pair_server import create_app

logger = logging.getLogger("pair")

DESCRIPTION = "CLI to transfer files between PC and mobile via QR code scanning."

ACCESS_EPILOG = f"""\
Access:
  Upload Page:     http://localhost:{DEFAULT_PORT}
  Download List:   http://localhost:{DEFAULT_PORT}/downloads (shows all downloadable files)
  Direct Download: http://localhost:{DEFAULT_PORT}/download/[filename]
"""

# ----------------------------
# CLI
# ----------------------------

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pair",
        description=DESCRIPTION,
        epilog=ACCESS_EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-f",
        dest="single_file",
        metavar="PATH",
        default="",
        help="Single file to allow download (relative to current dir)",
    )
    parser.add_argument(
        "-x",
        dest="multi_files",
        metavar="PATHS",
        default="",
        help="Multiple files to allow download (comma-separated, relative to current dir), "
             "e.g. -x uploads/file1.txt,docs/readme.md",
    )
    return parser

def resolve_config(argv: list[str] | None = None) -> ShareConfig:
    """Parse argv into a ShareConfig; exits on -h (0) and on bad arguments (1 or 2)."""
    args = build_parser().parse_args(argv)

    multi = parse_multi_paths(args.multi_files)
    if multi:
        print(f"- Configured {len(multi)} files for download via -x parameter")

    if args.single_file and multi:
        print("Error: Only one of -f (single file) or -x (multiple files) can be used", file=sys.stderr)
        raise SystemExit(1)

    try:
        work_dir = clean_work_dir(os.getcwd())
    except OSError as e:
        print(f"Failed to get current working directory: {e}", file=sys.stderr)
        raise SystemExit(1)

    return ShareConfig(work_dir=work_dir, single_file=args.single_file or None, multi_files=multi)

def print_banner(config: ShareConfig, local_ip: str, port: int) -> None:
    base = f"http://{local_ip}:{port}"

    print(f"Local IP address: {local_ip}")
    print(f"Server started, current working directory: {config.work_dir}")
    print(f"- Upload Page: {base}")

    if config.single_file:
        print(f"- Allowed download file: {config.single_file} (absolute: {config.abs_path(config.single_file)})")
        print(f"  Direct download URL: {base}/download/{config.single_file}")
    elif config.multi_files:
        print(f"- Download List Page: {base}/downloads (shows all configured files)")
        print(f"- Allowed download files (total: {len(config.multi_files)}):")
        for i, p in enumerate(config.multi_files, 1):
            print(f"  {i}. {p} (absolute: {config.abs_path(p)})")
            print(f"     Direct download URL: {base}/download/{p}")
    else:
        print("- No download files configured (use -f for single file or -x for multiple files)")

# ----------------------------
# Main
# ----------------------------

def main(argv: list[str] | None = None) -> None:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    config = resolve_config(argv)

    try:
        local_ip = local_ip_string()
    except NetworkDiscoveryError as e:
        logger.error("Failed to get local IP address: %s", e)
        raise SystemExit(1)

    app = create_app(config)
    print_banner(config, local_ip, DEFAULT_PORT)

    start_qr_thread(config, local_ip, DEFAULT_PORT)
    app.run(debug=False, host=DEFAULT_HOST, port=DEFAULT_PORT, threaded=True)

if __name__ == "__main__":
    main()
