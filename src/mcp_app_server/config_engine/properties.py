"""Property substitution for commands and scripts.

Goals may name ``.properties`` files and inline system properties. Before a
command is parsed, every ``${name}`` or ``${name:default}`` whose name is
defined is replaced by its value. Expressions naming an undefined property
are left as written, so the server resolves them itself (``${env.HOME:/tmp}``).
"""
import logging
import re
from pathlib import Path
from typing import Iterable, Mapping, Union

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# ${name} or ${name:default}; the default may not contain braces
EXPRESSION_PATTERN = re.compile(r"\$\{([^{}:]+)(?::([^{}]*))?\}")

PROPERTIES_COMMENTS = ("#", "!")


def parse_properties(lines: Iterable[str]) -> dict[str, str]:
    """
    Parse lines in ``.properties`` format.

    Supports ``key=value``, ``key: value`` and ``key value`` entries, ``#`` and
    ``!`` comments, and values continued with a trailing backslash.
    """
    properties: dict[str, str] = {}
    pending = ""
    for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not pending:
            line = line.lstrip()
            if not line or line.startswith(PROPERTIES_COMMENTS):
                continue
        else:
            line = line.lstrip()

        # An odd number of trailing backslashes continues the entry
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending += line[:-1]
            continue

        entry, pending = pending + line, ""
        key, value = _split_entry(entry)
        properties[key] = value

    if pending:
        key, value = _split_entry(pending)
        properties[key] = value
    return properties


def _split_entry(entry: str) -> tuple[str, str]:
    index = 0
    while index < len(entry):
        char = entry[index]
        if char == "\\":
            index += 2
            continue
        if char in "=:" or char.isspace():
            break
        index += 1

    key = entry[:index]
    rest = entry[index:].lstrip()
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip()
    return _unescape(key), _unescape(rest)


def _unescape(text: str) -> str:
    escapes = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}
    return re.sub(r"\\(.)", lambda m: escapes.get(m.group(1), m.group(1)), text)


def load_properties_file(path: Union[str, Path]) -> dict[str, str]:
    """
    Load one ``.properties`` file.

    Raises:
        ConfigurationError: If the file cannot be read
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            return parse_properties(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read properties file {path}: {e}")
    except UnicodeDecodeError as e:
        raise ConfigurationError(f"Properties file {path} is not valid UTF-8: {e}")


def collect_properties(
    files: Iterable[Union[str, Path]],
    system_properties: Mapping[str, str]
) -> dict[str, str]:
    """Merge properties files in order; inline system properties win."""
    properties: dict[str, str] = {}
    for path in files:
        loaded = load_properties_file(path)
        logger.debug(f"Loaded {len(loaded)} properties from {path}")
        properties.update(loaded)
    properties.update({str(k): str(v) for k, v in system_properties.items()})
    return properties


def substitute_properties(text: str, properties: Mapping[str, str]) -> str:
    """Replace ``${name[:default]}`` expressions whose name is defined."""
    if not properties or "${" not in text:
        return text

    def replace(match: re.Match) -> str:
        name = match.group(1).strip()
        if name in properties:
            return properties[name]
        return match.group(0)

    return EXPRESSION_PATTERN.sub(replace, text)
