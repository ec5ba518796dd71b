import os
from dataclasses import dataclass

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080

MODE_NONE = "none"
MODE_SINGLE = "single"
MODE_MULTI = "multi"

def parse_multi_paths(value: str | None) -> tuple[str, ...]:
    """Split a -x value on commas, trim entries, drop empties and duplicates (first wins)."""
    if not value:
        return ()
    seen: dict[str, None] = {}
    for part in value.split(","):
        p = part.strip()
        if p:
            seen.setdefault(p, None)
    return tuple(seen)

def clean_work_dir(path: str) -> str:
    return os.path.normpath(os.path.abspath(path))

def join_under(base_dir: str, rel_path: str) -> str:
    """Join rel_path onto base_dir and normalize.

    A leading separator in rel_path does not make it absolute: "/etc/passwd"
    lands at "<base_dir>/etc/passwd".
    """
    return os.path.normpath(base_dir + os.sep + rel_path)

@dataclass(frozen=True)
class ShareConfig:
    work_dir: str
    single_file: str | None = None
    multi_files: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if self.single_file and self.multi_files:
            raise ValueError("Only one of -f (single file) or -x (multiple files) can be used")

    @property
    def mode(self) -> str:
        if self.single_file:
            return MODE_SINGLE
        if self.multi_files:
            return MODE_MULTI
        return MODE_NONE

    @property
    def allowed_paths(self) -> tuple[str, ...]:
        if self.single_file:
            return (self.single_file,)
        return self.multi_files

    def abs_path(self, rel_path: str) -> str:
        return join_under(self.work_dir, rel_path)
