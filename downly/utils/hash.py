import hashlib

def hash_stable(*parts: str, length: int = 16) -> str:
    """Short SHA256 digest of one or more strings, stable across processes"""
    digest = hashlib.sha256()
    for part in parts:
        digest.update(part.encode())
        digest.update(b"\0")
    return digest.hexdigest()[:length]
