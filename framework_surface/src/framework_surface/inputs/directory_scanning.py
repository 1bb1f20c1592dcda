# --- Directory scanning convenience -----------------------------------------
import logging
import os

from framework_surface.src.framework_surface.indexer import JavaIndexer

logger = logging.getLogger(__name__)


def read_text(path: str) -> str:
    with open(path, "r", encoding="utf-8", errors="replace") as f:
        return f.read()


def index_directory(indexer: JavaIndexer, root_dir: str, application: bool = True) -> int:
    """
    Recursively index all .java files in a directory. Files that cannot be
    read are logged and skipped. Returns how many files were indexed.
    """
    if not os.path.isdir(root_dir):
        logger.warning("Source root %s is not a directory; skipping", root_dir)
        return 0

    count = 0
    for dirpath, dirnames, filenames in os.walk(root_dir):
        dirnames.sort()
        for fn in sorted(filenames):
            if fn.endswith(".java"):
                full = os.path.join(dirpath, fn)
                try:
                    src = read_text(full)
                except OSError as e:
                    logger.warning("Failed to read %s: %s", full, e)
                    continue
                indexer.index_source(src, full, application=application)
                count += 1

    kind = "application" if application else "library"
    logger.info("Indexed %d %s files under %s", count, kind, root_dir)
    return count
