"""Fast file hashing for copy verification.

Uses xxhash for speed when available, falls back to md5.
Designed for verifying copies where speed matters more than cryptographic security.
"""

import hashlib
from pathlib import Path

try:
    import xxhash
    XXHASH_AVAILABLE = True
except ImportError:
    XXHASH_AVAILABLE = False

# Buffer size for file reading (64KB is good for most filesystems)
BUFFER_SIZE = 65536


def _new_hasher(algorithm: str):
    if algorithm == "auto":
        return xxhash.xxh64() if XXHASH_AVAILABLE else hashlib.md5()
    if algorithm == "xxhash":
        if not XXHASH_AVAILABLE:
            raise ImportError("xxhash not installed. Install with: pip install gadget-mirror[fast]")
        return xxhash.xxh64()
    if algorithm == "md5":
        return hashlib.md5()
    if algorithm == "sha256":
        return hashlib.sha256()
    raise ValueError(f"Unknown algorithm: {algorithm}")


def fast_hash_file(file_path: Path, algorithm: str = "auto") -> str:
    """Compute a fast hash of a file.

    Args:
        file_path: Path to the file to hash
        algorithm: Hash algorithm ("auto", "xxhash", "md5", "sha256")
                   "auto" uses xxhash if available, else md5

    Returns:
        Hex digest of the file hash

    Raises:
        FileNotFoundError: If file doesn't exist
        ValueError: If the path is not a regular file
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    if not file_path.is_file():
        raise ValueError(f"Not a file: {file_path}")

    hasher = _new_hasher(algorithm)

    # Read and hash in chunks
    with open(file_path, "rb") as f:
        while True:
            data = f.read(BUFFER_SIZE)
            if not data:
                break
            hasher.update(data)

    return hasher.hexdigest()


def files_match(first: Path, second: Path, algorithm: str = "auto") -> bool:
    """Check whether two files have identical content.

    Sizes are compared first so mismatched files are never read.
    """
    if Path(first).stat().st_size != Path(second).stat().st_size:
        return False
    return fast_hash_file(first, algorithm) == fast_hash_file(second, algorithm)
