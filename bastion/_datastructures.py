"""
Core data structures for the request model.

Provides:
- Headers: case-insensitive header mapping with raw preservation
- parse_cookie_header: Cookie header parsing
"""

from __future__ import annotations

from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union


HeaderSource = Union[Mapping[str, str], Iterable[Tuple[bytes, bytes]], None]


# ============================================================================
# Headers
# ============================================================================

class Headers:
    """
    Case-insensitive header access with raw preservation.

    Accepts either a plain ``{name: value}`` mapping (tests, handlers) or the
    ASGI list of ``(bytes, bytes)`` pairs. Names are normalized for lookup
    while the original pairs are kept for iteration.
    """

    __slots__ = ("_raw", "_index")

    def __init__(self, source: HeaderSource = None):
        self._raw: List[Tuple[str, str]] = []
        self._index: Dict[str, List[str]] = {}
        if source is None:
            return
        pairs = source.items() if isinstance(source, Mapping) else source
        for name, value in pairs:
            if isinstance(name, bytes):
                name = name.decode("latin-1")
            if isinstance(value, bytes):
                value = value.decode("latin-1")
            self.add(name, value)

    def add(self, name: str, value: str) -> None:
        """Append a header value without replacing existing ones."""
        self._raw.append((name, value))
        self._index.setdefault(name.lower(), []).append(value)

    def set(self, name: str, value: str) -> None:
        """Replace every value of a header."""
        key = name.lower()
        self._raw = [(n, v) for n, v in self._raw if n.lower() != key]
        self._raw.append((name, value))
        self._index[key] = [value]

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Get first value for header (case-insensitive)."""
        values = self._index.get(name.lower())
        if values:
            return values[0]
        return default

    def get_all(self, name: str) -> List[str]:
        """Get all values for header (case-insensitive)."""
        return list(self._index.get(name.lower(), []))

    def has(self, name: str) -> bool:
        return name.lower() in self._index

    def items(self) -> Iterator[Tuple[str, str]]:
        return iter(list(self._raw))

    def keys(self) -> Iterator[str]:
        for name, _ in self._raw:
            yield name

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.has(name)

    def __getitem__(self, name: str) -> str:
        value = self.get(name)
        if value is None:
            raise KeyError(f"Header '{name}' not found")
        return value

    def __len__(self) -> int:
        return len(self._raw)

    def __repr__(self) -> str:
        return f"Headers({self._raw!r})"


def parse_cookie_header(header: Optional[str]) -> Dict[str, str]:
    """Parse a ``Cookie`` header into a dict. Later duplicates are ignored."""
    cookies: Dict[str, str] = {}
    if not header:
        return cookies
    for chunk in header.split(";"):
        if "=" not in chunk:
            continue
        name, _, value = chunk.partition("=")
        name = name.strip()
        if name and name not in cookies:
            cookies[name] = value.strip().strip('"')
    return cookies


__all__ = ["Headers", "parse_cookie_header"]
