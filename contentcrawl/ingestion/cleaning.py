"""Content cleaning applied to scraped HTML before storage."""

import html
import re
from typing import Iterable

import lxml.html
from lxml import etree

from .configs import CleaningOptions

# Characters lxml refuses: C0 controls other than tab/newline/CR, lone surrogates, non-characters
_XML_INVALID_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\ud800-\udfff\ufffe\uffff]")
_WHITESPACE_RE = re.compile(r"\s+")

VOID_TAGS = frozenset(
    ("area", "base", "br", "col", "embed", "hr", "img", "input", "link", "meta", "source", "track", "wbr")
)


def strip_control_chars(content: str) -> str:
    """Remove characters that cannot appear in an XML or HTML tree."""
    return _XML_INVALID_RE.sub("", content)


def parse_fragment(content: str) -> lxml.html.HtmlElement:
    """Parse an HTML fragment under a wrapping div."""
    return lxml.html.fragment_fromstring(strip_control_chars(content), create_parent="div")


def inner_html(wrapper: etree._Element) -> str:
    """Serialize the children of an element, without the element itself."""
    parts = [html.escape(wrapper.text or "", quote=False)]
    for child in wrapper:
        parts.append(etree.tostring(child, encoding="unicode", method="html", with_tail=True))
    return "".join(parts)


def _drop_nodes(wrapper: lxml.html.HtmlElement, xpath: str) -> None:
    for node in wrapper.xpath(xpath):
        # drop_tree keeps the tail text in place
        node.drop_tree()


def _drop_empty(wrapper: lxml.html.HtmlElement) -> None:
    # Reverse document order visits children before parents so nested wrappers collapse
    for element in reversed(list(wrapper.iterdescendants())):
        if not isinstance(element.tag, str) or element.tag in VOID_TAGS:
            continue
        if len(element) == 0 and not (element.text or "").strip():
            element.drop_tree()


def _strip_attributes(wrapper: etree._Element, names: Iterable[str]) -> None:
    for element in wrapper.iter():
        if not isinstance(element.tag, str):
            continue
        for name in names:
            if name in element.attrib:
                del element.attrib[name]


def strip_attributes(content: str, attributes: Iterable[str]) -> str:
    """Remove the named attributes from every element in an HTML fragment."""
    names = [a for a in attributes if a]
    if not names or not content.strip():
        return content
    wrapper = parse_fragment(content)
    _strip_attributes(wrapper, names)
    return inner_html(wrapper)


def html_to_text(content: str) -> str:
    """Extract the text content of an HTML fragment."""
    if not content.strip():
        return ""
    return parse_fragment(content).text_content()


def normalize_whitespace(content: str) -> str:
    """Collapse runs of whitespace to single spaces."""
    return _WHITESPACE_RE.sub(" ", content).strip()


def clean_content(content: str, options: CleaningOptions) -> str:
    """Apply the configured cleaning steps to content."""
    content = strip_control_chars(content or "")
    if not content.strip():
        return ""

    names = [a for a in options.remove_attributes if a]
    if (
        options.remove_scripts
        or options.remove_styles
        or options.remove_comments
        or options.remove_empty_tags
        or names
    ):
        wrapper = parse_fragment(content)
        if options.remove_scripts:
            _drop_nodes(wrapper, ".//script")
        if options.remove_styles:
            _drop_nodes(wrapper, ".//style")
        if options.remove_comments:
            _drop_nodes(wrapper, ".//comment()")
        if options.remove_empty_tags:
            _drop_empty(wrapper)
        if names:
            _strip_attributes(wrapper, names)
        content = inner_html(wrapper)

    if options.normalize_whitespace:
        content = normalize_whitespace(content)
    if options.extract_text_only:
        content = html_to_text(content)
        if options.normalize_whitespace:
            content = normalize_whitespace(content)

    return content
