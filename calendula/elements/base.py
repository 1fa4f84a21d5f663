#!/usr/bin/env python
"""
Request body elements.  A body is composed by adding elements together,
``dav.Propfind() + (dav.Prop() + [dav.GetEtag()])``, and serialized
with :meth:`BaseElement.tobytes`.
"""
import sys
from typing import ClassVar
from typing import Dict
from typing import Iterable
from typing import List
from typing import Optional
from typing import Union

from lxml import etree
from lxml.etree import _Element

from calendula.lib.namespace import nsmap
from calendula.lib.python_utilities import to_unicode

if sys.version_info < (3, 11):
    from typing_extensions import Self
else:
    from typing import Self


class BaseElement:
    tag: ClassVar[Optional[str]] = None

    def __init__(
        self, name: Optional[str] = None, value: Union[str, bytes, None] = None
    ) -> None:
        self.children: List[BaseElement] = []
        self.attributes: Dict[str, str] = {}
        self.value: Optional[str] = to_unicode(value)
        if name is not None:
            self.attributes["name"] = name

    def __add__(self, other: Union["BaseElement", Iterable["BaseElement"]]) -> Self:
        ## note that this appends in place, ``prop += x`` and ``prop + x``
        ## both grow prop
        return self.append(other)

    def __repr__(self) -> str:
        return "%s(%r, children=%i)" % (
            type(self).__name__,
            self.value if self.value is not None else self.attributes.get("name"),
            len(self.children),
        )

    def __str__(self) -> str:
        return to_unicode(self.tobytes(pretty=True))

    def append(self, element: Union["BaseElement", Iterable["BaseElement"]]) -> Self:
        if isinstance(element, BaseElement):
            self.children.append(element)
        else:
            self.children.extend(element)
        return self

    def xmlelement(self, parent: Optional[_Element] = None) -> _Element:
        """
        Render this element and its children as an lxml tree.  The
        namespace prefixes are declared once, on the root.
        """
        if self.tag is None:
            raise ValueError("%s has no tag" % type(self).__name__)
        if parent is None:
            node = etree.Element(self.tag, nsmap=nsmap)
        else:
            node = etree.SubElement(parent, self.tag)
        if self.value is not None:
            node.text = self.value
        for key, value in self.attributes.items():
            node.set(key, value)
        for child in self.children:
            child.xmlelement(node)
        return node

    def tobytes(self, pretty: bool = False) -> bytes:
        return etree.tostring(
            self.xmlelement(),
            encoding="utf-8",
            xml_declaration=True,
            pretty_print=pretty,
        )


class NamedBaseElement(BaseElement):
    """comp-filter, prop-filter and comp carry a mandatory name attribute"""

    def __init__(self, name: str) -> None:
        if not name:
            raise ValueError("%s needs a name" % type(self).__name__)
        super(NamedBaseElement, self).__init__(name=name)


class ValuedBaseElement(BaseElement):
    def __init__(self, value: Union[str, bytes, None] = None) -> None:
        super(ValuedBaseElement, self).__init__(value=value)
