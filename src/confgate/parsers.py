"""Document loading: turn input files into generic document trees."""

from __future__ import annotations

import configparser
import json
import logging
import sys
import tomllib
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol

import yaml

from confgate.errors import ParseError

if TYPE_CHECKING:
    from collections.abc import Iterable
    from typing import TextIO

logger = logging.getLogger(__name__)

STDIN_LABEL = "-"


class Parser(Protocol):
    """Turns raw text into a document tree (dicts, lists, scalars)."""

    def parse(self, text: str) -> Any: ...


# ---------------------------------------------------------------------------
# Parsers
# ---------------------------------------------------------------------------


class YamlParser:
    """YAML; a multi-document stream becomes a list of documents."""

    def parse(self, text: str) -> Any:
        docs = [d for d in yaml.safe_load_all(text) if d is not None]
        if not docs:
            return None
        if len(docs) == 1:
            return docs[0]
        return docs


class JsonParser:
    def parse(self, text: str) -> Any:
        return json.loads(text)


class TomlParser:
    def parse(self, text: str) -> Any:
        return tomllib.loads(text)


class IniParser:
    """INI; each section becomes a mapping of its keys.

    Keys outside any section are rejected by ``configparser``.
    """

    def parse(self, text: str) -> Any:
        cp = configparser.ConfigParser(interpolation=None)
        cp.optionxform = str  # type: ignore[assignment,method-assign]
        cp.read_string(text)
        return {section: dict(cp.items(section)) for section in cp.sections()}


class HclParser:
    """HCL2 / Terraform, via the optional ``python-hcl2`` package."""

    def parse(self, text: str) -> Any:
        try:
            import hcl2
        except ImportError as exc:
            msg = "HCL support requires python-hcl2. Install with: pip install confgate[hcl]"
            raise ValueError(msg) from exc
        try:
            return hcl2.loads(text)
        except Exception as exc:  # lark raises its own hierarchy
            raise ValueError(str(exc)) from exc


_PARSERS: dict[str, type[Parser]] = {
    "yaml": YamlParser,
    "json": JsonParser,
    "toml": TomlParser,
    "ini": IniParser,
    "hcl": HclParser,
}

_EXTENSIONS: dict[str, str] = {
    ".yaml": "yaml",
    ".yml": "yaml",
    ".json": "json",
    ".toml": "toml",
    ".ini": "ini",
    ".cfg": "ini",
    ".conf": "ini",
    ".tf": "hcl",
    ".hcl": "hcl",
}

# Errors a parser may raise on malformed input.
_PARSE_ERRORS: tuple[type[Exception], ...] = (
    yaml.YAMLError,
    json.JSONDecodeError,
    tomllib.TOMLDecodeError,
    configparser.Error,
    ValueError,
)


def valid_inputs() -> list[str]:
    """Return the accepted values for the input-type override."""
    return sorted(_PARSERS)


def get_parser(filename: str, input_type: str | None = None) -> Parser:
    """Select a parser by *input_type*, else by file extension.

    Unrecognized extensions fall back to YAML.
    """
    if input_type:
        try:
            return _PARSERS[input_type]()
        except KeyError:
            msg = f"unknown input type '{input_type}', must be one of {valid_inputs()}"
            raise ParseError(filename, msg) from None

    kind = _EXTENSIONS.get(Path(filename).suffix.lower(), "yaml")
    return _PARSERS[kind]()


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def parse_document(filename: str, text: str, input_type: str | None = None) -> Any:
    """Parse *text* as the document named *filename*."""
    parser = get_parser(filename, input_type)
    try:
        return parser.parse(text)
    except _PARSE_ERRORS as exc:
        raise ParseError(filename, str(exc)) from exc


def load_configurations(
    files: Iterable[str],
    input_type: str | None = None,
    *,
    stdin: TextIO | None = None,
) -> dict[str, Any]:
    """Parse every file into an ordered mapping of label to document.

    ``"-"`` reads standard input (or *stdin* when given).

    Raises
    ------
    ParseError
        When a file cannot be read or parsed.
    """
    configurations: dict[str, Any] = {}
    for name in files:
        if name == STDIN_LABEL:
            text = (stdin or sys.stdin).read()
        else:
            try:
                text = Path(name).read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                raise ParseError(name, f"cannot read file: {exc}") from exc

        configurations[name] = parse_document(name, text, input_type)
        logger.debug("Parsed %s", name)

    return configurations
