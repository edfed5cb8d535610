"""Namespace-agnostic lookups over lxml trees.

Issuer software binds the NF-e schema under different namespace prefixes (or
none at all), so every lookup matches on the unqualified tag name. Nothing
outside this module touches lxml element APIs directly.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TypeVar

from lxml import etree

from conferente.services.exceptions import XmlReadError

T = TypeVar("T")

Element = etree._Element


def make_parser(encoding: str | None = None) -> etree.XMLParser:
    """Fresh hardened parser: no DTDs, no entity expansion, no network.

    lxml parsers must not be shared across threads. *encoding* overrides the
    XML declaration.
    """
    return etree.XMLParser(
        encoding=encoding,
        resolve_entities=False,
        load_dtd=False,
        no_network=True,
        dtd_validation=False,
        remove_comments=True,
        remove_pis=True,
    )


def parse_xml(data: bytes | str, file_name: str | None = None) -> Element:
    """Parse *data* into a root element, raising XmlReadError on any structural problem.

    Text input is already decoded, so its encoding declaration is ignored.
    """
    if not data.strip():
        raise XmlReadError("Documento XML vazio", file_name)
    if isinstance(data, str):
        parser = make_parser("utf-8")
        data = data.encode("utf-8")
    else:
        parser = make_parser()
    try:
        root = etree.fromstring(data, parser=parser)
    except etree.XMLSyntaxError as exc:
        raise XmlReadError(f"XML mal formado: {exc}", file_name) from exc
    if root is None:
        raise XmlReadError("Elemento raiz ausente", file_name)
    return root


def local_name(element: Element) -> str:
    tag = element.tag
    if not isinstance(tag, str):
        return ""
    return etree.QName(tag).localname


def find(parent: Element | None, tag: str) -> Element | None:
    """First descendant of *parent* whose local name is *tag*."""
    if parent is None:
        return None
    for el in parent.iterdescendants():
        if local_name(el) == tag:
            return el
    return None


def find_all(parent: Element | None, tag: str) -> list[Element]:
    if parent is None:
        return []
    return [el for el in parent.iterdescendants() if local_name(el) == tag]


def child(parent: Element | None, tag: str) -> Element | None:
    """First direct child of *parent* whose local name is *tag*."""
    if parent is None:
        return None
    for el in parent:
        if local_name(el) == tag:
            return el
    return None


def value(element: Element | None) -> str:
    if element is None:
        return ""
    return "".join(element.itertext()).strip()


def text(parent: Element | None, tag: str) -> str:
    """Stripped text of the first descendant named *tag*, or ''."""
    return value(find(parent, tag))


def child_text(parent: Element | None, tag: str) -> str:
    return value(child(parent, tag))


def attr(element: Element | None, name: str) -> str:
    if element is None:
        return ""
    return (element.get(name) or "").strip()


def first_of(*candidates: Callable[[], T], default: T) -> T:
    """Evaluate *candidates* in order and return the first non-empty result.

    Candidates are zero-argument callables so that later fallbacks are only
    computed when the earlier ones came back empty.
    """
    for candidate in candidates:
        result = candidate()
        if result:
            return result
    return default


def first_text(parent: Element | None, *tags: str, default: str = "") -> str:
    """First non-empty descendant text among *tags*, tried in order."""
    return first_of(*(lambda t=t: text(parent, t) for t in tags), default=default)
