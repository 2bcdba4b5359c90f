"""
In-place editing of .NET style settings files (Web.config / App.config).

Only existing ``<add key="..." value="..."/>`` entries are touched. The
document is parsed with lxml to check that every requested key exists; the
new values are then spliced into the original text, so every other byte is
written back as it was read. There is no backup and no atomic replace.
"""

from __future__ import annotations

import codecs
import re
from pathlib import Path
from typing import Dict, Optional, Tuple, Union
from xml.sax.saxutils import escape, unescape

from lxml import etree

PathLike = Union[str, Path]

# Comments and CDATA sections hold text, not live elements
RE_INERT = re.compile(r"<!--.*?-->|<!\[CDATA\[.*?\]\]>", re.S)
RE_ADD_TAG = re.compile(
    r"<(?:[\w.-]+:)?add\b(?P<attrs>(?:\s+[\w:.-]+\s*=\s*(?:\"[^\"]*\"|'[^']*'))*)\s*/?>"
)
RE_ATTR = re.compile(r"(?P<name>[\w:.-]+)\s*=\s*(?P<q>[\"'])(?P<val>.*?)(?P=q)", re.S)

# Whitespace in attribute values is normalized by XML parsers unless escaped
ATTR_ENTITIES = {"\n": "&#10;", "\r": "&#13;", "\t": "&#9;"}
QUOTE_ENTITIES = {'"': "&quot;", "'": "&apos;"}


class ConfigKeyNotFound(RuntimeError):
    def __init__(self, key: str, path: PathLike) -> None:
        super().__init__(f"Key '{key}' not found in '{path}'")
        self.key = key
        self.path = str(path)


class DuplicateConfigKey(RuntimeError):
    def __init__(self, key: str, path: PathLike, count: int) -> None:
        super().__init__(f"Key '{key}' appears {count} times in '{path}'")
        self.key = key
        self.path = str(path)


def _load(path: PathLike) -> Tuple[etree._Element, str, str, bool]:
    raw = Path(path).read_bytes()
    has_bom = raw.startswith(codecs.BOM_UTF8)
    parser = etree.XMLParser(remove_blank_text=False, resolve_entities=False)
    root = etree.fromstring(raw, parser=parser)
    encoding = root.getroottree().docinfo.encoding or "utf-8"
    text = raw[len(codecs.BOM_UTF8):].decode("utf-8") if has_bom else raw.decode(encoding)
    return root, text, encoding, has_bom


def count_settings(root: etree._Element, key: str) -> int:
    return sum(1 for el in root.iter("{*}add") if el.get("key") == key)


def _escape_attr(value: str, quote: str) -> str:
    return escape(value, {**ATTR_ENTITIES, quote: QUOTE_ENTITIES[quote]})


def _set_value(text: str, key: str, value: str) -> Optional[str]:
    """Rewrite the value attribute of the first live <add key=...> tag."""
    inert = [m.span() for m in RE_INERT.finditer(text)]
    for tag in RE_ADD_TAG.finditer(text):
        if any(start <= tag.start() < end for start, end in inert):
            continue
        attrs = {m.group("name"): m for m in RE_ATTR.finditer(tag.group("attrs"))}
        k = attrs.get("key")
        if k is None or unescape(k.group("val"), {"&quot;": '"', "&apos;": "'"}) != key:
            continue

        base = tag.start("attrs")
        v = attrs.get("value")
        if v is None:
            pos = tag.end("attrs")
            return text[:pos] + ' value="%s"' % _escape_attr(value, '"') + text[pos:]
        new_val = _escape_attr(value, v.group("q"))
        return text[: base + v.start("val")] + new_val + text[base + v.end("val"):]
    return None


def replace_settings(path: PathLike, settings: Dict[str, str]) -> None:
    """Set several keys in one read/write; every key must exist exactly once.

    All keys are checked before anything is written, so a missing or
    repeated key leaves the file untouched.
    """
    root, text, encoding, has_bom = _load(path)
    for key in settings:
        n = count_settings(root, key)
        if n == 0:
            raise ConfigKeyNotFound(key, path)
        if n > 1:
            raise DuplicateConfigKey(key, path, n)

    for key, value in settings.items():
        patched = _set_value(text, key, value)
        if patched is None:
            raise ConfigKeyNotFound(key, path)
        text = patched

    data = text.encode(encoding)
    if has_bom:
        data = codecs.BOM_UTF8 + data
    Path(path).write_bytes(data)


def replace_setting(path: PathLike, key: str, new_value: str) -> None:
    replace_settings(path, {key: new_value})
