"""Response body parsing.

Bodies that look like AWS XML are upgraded from text to an
:class:`XMLDocument`; everything else stays text. Element lookup is an
explicit accessor (:meth:`XMLDocument.get_children`) rather than
attribute magic.
"""

import logging
import re
import xml.etree.ElementTree as ET
from typing import Any, Iterator, List, Optional, Union

logger = logging.getLogger(__name__)

_AWS_NAMESPACE_RE = re.compile(
    r'^<(\w*) xmlns="http(s?)://(\w*).amazon(aws)?.com',
    re.IGNORECASE | re.MULTILINE,
)

XML_DECLARATION = '<?xml version="1.0" encoding="UTF-8"?>\n'


class XMLDocument:
    """Thin wrapper around an ElementTree element.

    :param source: XML text or an existing element
    :type source: Union[str, bytes, ET.Element]
    """

    def __init__(self, source: Union[str, bytes, ET.Element]):
        if isinstance(source, ET.Element):
            self.element = source
        else:
            self.element = ET.fromstring(source)

    @property
    def tag(self) -> str:
        return self.element.tag

    @property
    def text(self) -> Optional[str]:
        return self.element.text

    @property
    def attrib(self) -> dict:
        return dict(self.element.attrib)

    def get_children(self, tag: str) -> List["XMLDocument"]:
        """Return every element named ``tag`` at any depth, in document order.

        The element itself is included when its own tag matches.

        :param tag: Element name
        :type tag: str
        :return: Matching elements, possibly empty
        :rtype: List[XMLDocument]
        """
        return [XMLDocument(el) for el in self.element.iter(tag)]

    def get_child(self, tag: str, index: int = 0) -> Optional["XMLDocument"]:
        """Return one element named ``tag``.

        :param tag: Element name
        :type tag: str
        :param index: Position among the matches
        :type index: int
        :return: The element, or None if there is no such match
        :rtype: Optional[XMLDocument]
        """
        matches = self.get_children(tag)
        if 0 <= index < len(matches):
            return matches[index]
        return None

    def find_text(self, tag: str, default: Optional[str] = None) -> Optional[str]:
        """Return the text of the first element named ``tag``."""
        child = self.get_child(tag)
        if child is None or child.text is None:
            return default
        return child.text

    def to_xml(self) -> str:
        """Serialize the element back to XML text.

        The text starts with an XML declaration, so :func:`parse_body`
        recognises it again after a round trip through the cache.

        :return: XML text
        :rtype: str
        """
        return XML_DECLARATION + ET.tostring(self.element, encoding="unicode")

    def __iter__(self) -> Iterator["XMLDocument"]:
        return (XMLDocument(el) for el in self.element)

    def __len__(self) -> int:
        return len(self.element)

    def __eq__(self, other: Any) -> bool:
        if isinstance(other, XMLDocument):
            return self.to_xml() == other.to_xml()
        return NotImplemented

    def __str__(self) -> str:
        return self.to_xml()

    def __repr__(self) -> str:
        return f"<XMLDocument {self.tag!r}>"

    def __getstate__(self):
        return self.to_xml()

    def __setstate__(self, state):
        self.element = ET.fromstring(state.encode("utf-8"))


def looks_like_xml(body: str) -> bool:
    """Check whether a body should be parsed as AWS XML.

    :param body: Response body text
    :type body: str
    :return: True for an XML declaration, an ``<Error>`` root or an
        element in an Amazon namespace
    :rtype: bool
    """
    return (
        body[:5].lower() == "<?xml"
        or body.startswith("<Error>")
        or bool(_AWS_NAMESPACE_RE.search(body))
    )


def parse_body(body: Any) -> Any:
    """Parse ``body`` into an :class:`XMLDocument` when it looks like XML.

    The default namespace is renamed so element names match without a
    namespace prefix. Malformed XML is left as text.

    :param body: Response body
    :type body: Any
    :return: Parsed document or the original body
    :rtype: Any
    """
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError:
            return body
    if not isinstance(body, str) or not looks_like_xml(body):
        return body

    try:
        return XMLDocument(body.replace("xmlns=", "ns=").encode("utf-8"))
    except ET.ParseError as e:
        logger.warning(f"Response looked like XML but failed to parse: {e}")
        return body
