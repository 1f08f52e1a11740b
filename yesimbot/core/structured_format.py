"""
Structured reply formats â candidate extraction, JSON repair, XML parse/build.

Models are asked to answer with a JSON object or an XML fragment, but often
wrap it in prose, fence it in a code block of the wrong language, or emit
slightly broken syntax. This module finds the most plausible payload span
and turns it into a plain dict.

XML leaves named in RAW_TEXT_FIELDS hold natural language that may contain
markup or stray `<`/`&`; they are wrapped in CDATA before parsing so their
text survives verbatim.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from lxml import etree

RAW_TEXT_FIELDS = ("logic", "reply", "check", "finalReply")

_ROOT_TAG = "payload_root"

_FENCE_RE = re.compile(r"```[ \t]*([A-Za-z]*)[ \t]*\r?\n(.*?)```", re.S)
_BARE_JSON_RE = re.compile(r"\{.*\}", re.S)
_BARE_XML_RE = re.compile(r"<[A-Za-z_][\w.-]*(?:\s[^>]*)?>.*</[A-Za-z_][\w.-]*\s*>", re.S)
_RAW_FIELD_RE = re.compile(
    r"<(" + "|".join(RAW_TEXT_FIELDS) + r")(\s[^>]*)?>(.*?)</\1\s*>", re.S,
)
_TAG_NAME_RE = re.compile(r"^[A-Za-z_][\w.-]*$")

_SMART_DOUBLE_QUOTES = "“”„‟"


class ReplyFormat(str, Enum):
    JSON = "json"
    XML = "xml"

    @classmethod
    def parse(cls, value: Any) -> ReplyFormat:
        if isinstance(value, ReplyFormat):
            return value
        return cls(str(value).strip().lower())

    @property
    def other(self) -> ReplyFormat:
        return ReplyFormat.XML if self is ReplyFormat.JSON else ReplyFormat.JSON

    @property
    def label(self) -> str:
        return self.value.upper()


class PayloadParseError(ValueError):
    """The reply could not be decoded as a structured payload."""

    def __init__(self, fmt: ReplyFormat, detail: str, raw: str = ""):
        self.format = fmt
        self.detail = detail
        self.raw = raw
        super().__init__(f"{fmt.label} parse failed: {detail}")


@dataclass
class Candidate:
    """A span of the raw reply that looks like a payload."""
    text: str
    format: ReplyFormat
    fenced: bool


# ââ Candidate extraction ââââââââââââââââââââââââââââââââââââââ

def _sniff(text: str) -> Optional[ReplyFormat]:
    stripped = text.lstrip()
    if stripped.startswith("{"):
        return ReplyFormat.JSON
    if stripped.startswith("<"):
        return ReplyFormat.XML
    return None


def find_candidates(raw: str, target: ReplyFormat) -> list[Candidate]:
    """
    Payload spans ranked by preference:
    fenced block tagged with the target format, bare element of the target
    format, fenced block of the other format, bare element of the other format.
    """
    fenced: list[Candidate] = []
    for m in _FENCE_RE.finditer(raw):
        tag = m.group(1).lower()
        body = m.group(2).strip()
        fmt = ReplyFormat(tag) if tag in ("json", "xml") else _sniff(body)
        if fmt is not None and body:
            fenced.append(Candidate(body, fmt, True))

    # bare spans are searched outside fenced blocks
    outside = _FENCE_RE.sub(" ", raw)
    bare: list[Candidate] = []
    m = _BARE_JSON_RE.search(outside)
    if m:
        bare.append(Candidate(m.group(0), ReplyFormat.JSON, False))
    m = _BARE_XML_RE.search(outside)
    if m:
        bare.append(Candidate(m.group(0), ReplyFormat.XML, False))

    ranked = [c for c in fenced if c.format is target]
    ranked += [c for c in bare if c.format is target]
    ranked += [c for c in fenced if c.format is not target]
    ranked += [c for c in bare if c.format is not target]
    return ranked


# ââ JSON ââââââââââââââââââââââââââââââââââââââââââââââââââââââ

def escape_control_chars(raw: str) -> str:
    """Escape literal newlines/tabs that appear inside quoted JSON strings."""
    result = []
    in_string = False
    i = 0
    while i < len(raw):
        ch = raw[i]
        if ch == "\\" and in_string:
            result.append(raw[i:i + 2])
            i += 2
            continue
        if ch == '"':
            in_string = not in_string
        elif in_string and ch in ("\n", "\r", "\t"):
            ch = {"\n": "\\n", "\r": "\\r", "\t": "\\t"}[ch]
        result.append(ch)
        i += 1
    return "".join(result)


def _next_significant(raw: str, start: int) -> str:
    """First non-whitespace character at or after `start`, or "" at the end."""
    for ch in raw[start:]:
        if not ch.isspace():
            return ch
    return ""


def fix_delimiters(raw: str) -> str:
    """
    Straighten smart quotes used as string delimiters and drop trailing
    commas, leaving string contents untouched.

    Outside a string any smart double quote opens one. Inside a string a
    smart quote only closes it when followed by `,` `:` `}` `]` or the end
    of the text; otherwise it is quoted prose (他说“你好”) and is kept.
    """
    result = []
    in_string = False
    i = 0
    while i < len(raw):
        ch = raw[i]
        if in_string:
            if ch == "\\":
                result.append(raw[i:i + 2])
                i += 2
                continue
            if ch == '"':
                in_string = False
            elif ch in _SMART_DOUBLE_QUOTES and _next_significant(raw, i + 1) in ("", ",", ":", "}", "]"):
                in_string = False
                ch = '"'
        elif ch == '"' or ch in _SMART_DOUBLE_QUOTES:
            in_string = True
            ch = '"'
        elif ch == "," and _next_significant(raw, i + 1) in ("}", "]"):
            i += 1
            continue
        result.append(ch)
        i += 1
    return "".join(result)


def repair_json(text: str) -> str:
    """Best-effort fix of common model JSON mistakes."""
    s = re.sub(r"\\\r?\n", "\n", text.strip())
    while s.startswith("{{") and s.endswith("}}"):
        s = s[1:-1].strip()
    return escape_control_chars(fix_delimiters(s))


def parse_json(text: str) -> dict:
    value = json.loads(text)
    if not isinstance(value, dict):
        raise ValueError(f"expected an object, got {type(value).__name__}")
    return value


# ââ XML âââââââââââââââââââââââââââââââââââââââââââââââââââââââ

def _cdata(text: str) -> str:
    return "<![CDATA[" + text.replace("]]>", "]]]]><![CDATA[>") + "]]>"


def protect_raw_fields(text: str) -> str:
    """Wrap raw-text field bodies in CDATA unless they already are."""

    def wrap(m: re.Match) -> str:
        tag, attrs, body = m.group(1), m.group(2) or "", m.group(3)
        if body.strip().startswith("<![CDATA["):
            return m.group(0)
        return f"<{tag}{attrs}>{_cdata(body)}</{tag}>"

    return _RAW_FIELD_RE.sub(wrap, text)


def _element_value(el) -> Any:
    children = [c for c in el if isinstance(c.tag, str)]
    if not children:
        return (el.text or "").strip()
    result: dict = {}
    for child in children:
        value = _element_value(child)
        if child.tag in result:
            if not isinstance(result[child.tag], list):
                result[child.tag] = [result[child.tag]]
            result[child.tag].append(value)
        else:
            result[child.tag] = value
    return result


def parse_xml(text: str) -> dict:
    """Parse an XML fragment into a dict; repeated tags become lists."""
    body = protect_raw_fields(text.strip())
    if body.startswith("<?xml"):
        body = body.split("?>", 1)[-1]
    wrapped = f"<{_ROOT_TAG}>{body}</{_ROOT_TAG}>"
    parser = etree.XMLParser(recover=True, resolve_entities=False, no_network=True)
    root = etree.fromstring(wrapped.encode("utf-8"), parser)
    if root is None:
        raise ValueError("no XML element found")
    value = _element_value(root)
    if not isinstance(value, dict) or not value:
        raise ValueError("no XML element found")
    # <response><status>..</status>..</response> â inner mapping
    if "status" not in value and len(value) == 1:
        inner = next(iter(value.values()))
        if isinstance(inner, dict) and "status" in inner:
            return inner
    return value


def _append_xml(parent, key: str, value: Any) -> None:
    if not _TAG_NAME_RE.match(key):
        raise ValueError(f"cannot encode key {key!r} as an XML tag")
    if isinstance(value, list):
        if key == "functions":
            container = etree.SubElement(parent, key)
            for item in value:
                _append_xml(container, "function", item)
        else:
            for item in value:
                _append_xml(parent, key, item)
        return
    el = etree.SubElement(parent, key)
    if isinstance(value, dict):
        for k, v in value.items():
            _append_xml(el, str(k), v)
        return
    if value is None:
        text = ""
    elif isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)
    el.text = etree.CDATA(text) if key in RAW_TEXT_FIELDS and text else text


def payload_to_xml(payload: dict) -> str:
    """Serialize a payload dict to the XML reply shape `parse_xml` reads back."""
    root = etree.Element(_ROOT_TAG)
    for key, value in payload.items():
        _append_xml(root, str(key), value)
    return "".join(etree.tostring(child, encoding="unicode") for child in root)


# ââ Entry point âââââââââââââââââââââââââââââââââââââââââââââââ

def _decode(text: str, fmt: ReplyFormat, repair: bool) -> dict:
    if fmt is ReplyFormat.JSON:
        return parse_json(repair_json(text) if repair else text)
    return parse_xml(text)


def decode_payload(raw: str, target: ReplyFormat) -> dict:
    """
    Decode the most plausible payload in `raw`.

    Order: the best candidate as-is, the best candidate repaired, then the
    entire raw text repaired and parsed as the target format.
    Raises PayloadParseError carrying the raw text when all attempts fail.
    """
    target = ReplyFormat.parse(target)
    if not raw or not raw.strip():
        raise PayloadParseError(target, "empty reply", raw)

    errors: list[str] = []
    candidates = find_candidates(raw, target)
    if candidates:
        best = candidates[0]
        for repair in (False, True):
            if repair and best.format is ReplyFormat.XML:
                break
            try:
                return _decode(best.text, best.format, repair)
            except (ValueError, etree.XMLSyntaxError) as e:
                errors.append(str(e))
    else:
        errors.append(f"no {target.label} found")

    try:
        return _decode(raw, target, repair=True)
    except (ValueError, etree.XMLSyntaxError) as e:
        errors.append(str(e))
    raise PayloadParseError(target, "; ".join(dict.fromkeys(errors)), raw)
