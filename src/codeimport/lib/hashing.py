import hashlib
from pathlib import Path


def md5_file(path: str) -> str:
    """Compute MD5 hex digest for a file in streaming fashion."""
    h = hashlib.md5()
    p = Path(path)
    with p.open("rb") as fh:
        for chunk in iter(lambda: fh.read(8192), b""):
            h.update(chunk)
    return h.hexdigest()


def name_digest(*parts: str) -> str:
    """Stable fixed-length (40 hex chars) digest of the given name parts.

    Parts are joined with a separator that cannot appear in a code type label,
    so ("ab", "c") and ("a", "bc") hash differently.
    """
    joined = "\x1f".join(str(p) for p in parts)
    return hashlib.sha1(joined.encode("utf-8")).hexdigest()
