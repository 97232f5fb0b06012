"""Regex-based extraction of package descriptors (rockspec files).

Rockspecs are Lua source; executing them would require a sandboxed
interpreter, so only the declarative fields the resolver needs are read.
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional

from .exceptions import RockspecError
from .models import Rockspec

_STRING_RE = re.compile(r"""["']([^"']*)["']""")
_ENTRY_RE = re.compile(r"""\[?\s*["']([^"']+)["']\s*\]?\s*=\s*["']([^"']+)["']""")


def _field_pattern(name: str) -> re.Pattern:
    return re.compile(rf"""(?m)^\s*{name}\s*=\s*["']([^"']*)["']""")


def _extract_field(content: str, name: str) -> Optional[str]:
    match = _field_pattern(name).search(content)
    return match.group(1) if match else None


def extract_table_block(content: str, name: str) -> Optional[str]:
    """Return the text between the braces of ``name = { ... }``, or None."""

    match = re.search(rf"(?m)^\s*{name}\s*=\s*\{{", content)
    if not match:
        return None
    depth = 1
    quote: Optional[str] = None
    start = match.end()
    for index in range(start, len(content)):
        char = content[index]
        if quote:
            if char == quote and content[index - 1] != "\\":
                quote = None
            continue
        if char in {'"', "'"}:
            quote = char
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return content[start:index]
    raise RockspecError(f"Unterminated '{name}' table in rockspec")


def _parse_dependencies(content: str) -> List[str]:
    block = extract_table_block(content, "dependencies")
    if block is None:
        return []
    return [entry.strip() for entry in _STRING_RE.findall(block) if entry.strip()]


def _parse_binary_urls(content: str) -> Dict[str, str]:
    block = extract_table_block(content, "binary_urls")
    if block is None:
        return {}
    return {key: value for key, value in _ENTRY_RE.findall(block)}


def parse_rockspec(content: str) -> Rockspec:
    package = _extract_field(content, "package")
    version = _extract_field(content, "version")
    if not package:
        raise RockspecError("Rockspec is missing the 'package' field")
    if not version:
        raise RockspecError(f"Rockspec for {package} is missing the 'version' field")

    source_block = extract_table_block(content, "source") or ""
    build_block = extract_table_block(content, "build") or ""
    description_block = extract_table_block(content, "description") or ""

    return Rockspec(
        package=package,
        version=version,
        dependencies=_parse_dependencies(content),
        source_url=_extract_field(source_block, "url"),
        source_tag=_extract_field(source_block, "tag"),
        build_type=_extract_field(build_block, "type") or ("builtin" if build_block else None),
        description=_extract_field(description_block, "summary"),
        homepage=_extract_field(description_block, "homepage"),
        license=_extract_field(description_block, "license"),
        lua_version=_extract_field(content, "lua_version"),
        binary_urls=_parse_binary_urls(content),
    )
