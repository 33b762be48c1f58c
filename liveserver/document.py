"""
In-memory HTML document model.

A Document owns every node in a flat list (the arena) and nodes refer to
each other by index. Children are ordered index lists; ``parent`` is a
lookup relation only. Dropping the Document drops all of its nodes.

Parsing is built on the standard library HTMLParser and is deliberately
forgiving: it never synthesizes elements the source did not contain, so a
page without a ``<head>`` stays without one. Common optional end tags are
implied: ``</head>`` before body content, ``</p>`` before a block, and
``</li>``, ``</dt>``, ``</dd>``, ``</option>``, ``</tr>``, ``</td>`` before
a sibling of the same kind. The serializer writes
explicit end tags for every non-void element, which makes
``parse(serialize(doc))`` structurally equal to ``doc``.
"""

from dataclasses import dataclass, field
from enum import Enum
from html import escape
from html.parser import HTMLParser
from typing import List, Optional, Tuple

from liveserver.errors import ParseError


class NodeKind(str, Enum):
    """Node variants."""
    DOCUMENT = "document"
    ELEMENT = "element"
    TEXT = "text"
    COMMENT = "comment"
    DOCTYPE = "doctype"


Attribute = Tuple[str, Optional[str]]

VOID_ELEMENTS = frozenset({
    "area", "base", "br", "col", "embed", "hr", "img", "input", "link",
    "meta", "param", "source", "track", "wbr",
})

# Whatever the parser treats as raw text must be written back raw.
RAW_TEXT_ELEMENTS = frozenset(getattr(HTMLParser, "CDATA_CONTENT_ELEMENTS", ("script", "style")))

# Start tags that leave an open <head> open; anything else ends it.
HEAD_ELEMENTS = frozenset({
    "base", "basefont", "bgsound", "head", "html", "link", "meta", "noscript",
    "script", "style", "template", "title",
})

# Start tags that end an open <p>.
CLOSES_P = frozenset({
    "address", "article", "aside", "blockquote", "center", "dd", "details", "dialog",
    "dir", "div", "dl", "dt", "fieldset", "figcaption", "figure", "footer", "form",
    "h1", "h2", "h3", "h4", "h5", "h6", "header", "hgroup", "hr", "li", "listing",
    "main", "menu", "nav", "ol", "p", "plaintext", "pre", "section", "summary",
    "table", "ul", "xmp",
})

DEFAULT_SCOPE = frozenset({
    "applet", "caption", "html", "marquee", "object", "table", "td", "template", "th",
})
BUTTON_SCOPE = DEFAULT_SCOPE | {"button"}
TABLE_SCOPE = frozenset({"html", "table", "tbody", "template", "tfoot", "thead"})

# start tag -> (open elements it ends, elements the search does not cross)
IMPLIED_END = {
    "li": (frozenset({"li"}), DEFAULT_SCOPE | {"ol", "ul"}),
    "dt": (frozenset({"dd", "dt"}), DEFAULT_SCOPE | {"dl"}),
    "dd": (frozenset({"dd", "dt"}), DEFAULT_SCOPE | {"dl"}),
    "option": (frozenset({"option"}), DEFAULT_SCOPE | {"datalist", "optgroup", "select"}),
    "optgroup": (frozenset({"optgroup", "option"}), DEFAULT_SCOPE | {"datalist", "select"}),
    "tr": (frozenset({"tr"}), TABLE_SCOPE),
    "td": (frozenset({"td", "th"}), TABLE_SCOPE | {"tr"}),
    "th": (frozenset({"td", "th"}), TABLE_SCOPE | {"tr"}),
}


@dataclass
class Node:
    """A single arena slot."""
    kind: NodeKind
    tag: str = ""
    attrs: List[Attribute] = field(default_factory=list)
    data: str = ""
    children: List[int] = field(default_factory=list)
    parent: Optional[int] = None

    def get_attr(self, name: str) -> Optional[str]:
        for key, value in self.attrs:
            if key == name:
                return value
        return None


class Document:
    """Arena-backed HTML document tree. Index 0 is the document root."""

    ROOT = 0

    def __init__(self):
        self.nodes: List[Node] = [Node(NodeKind.DOCUMENT)]

    def __len__(self) -> int:
        return len(self.nodes)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Document):
            return NotImplemented
        return self.to_tree() == other.to_tree()

    def node(self, index: int) -> Node:
        return self.nodes[index]

    def _add(self, node: Node) -> int:
        self.nodes.append(node)
        return len(self.nodes) - 1

    def create_element(self, tag: str, attrs: Optional[List[Attribute]] = None) -> int:
        return self._add(Node(NodeKind.ELEMENT, tag=tag.lower(), attrs=list(attrs or [])))

    def create_text(self, data: str) -> int:
        return self._add(Node(NodeKind.TEXT, data=data))

    def create_comment(self, data: str) -> int:
        return self._add(Node(NodeKind.COMMENT, data=data))

    def create_doctype(self, data: str) -> int:
        return self._add(Node(NodeKind.DOCTYPE, data=data))

    def append_child(self, parent: int, child: int) -> None:
        """Append ``child`` as the last child of ``parent``."""
        node = self.nodes[child]
        if node.parent is not None:
            raise ValueError(f"node {child} already has a parent")
        node.parent = parent
        self.nodes[parent].children.append(child)

    def children(self, index: int) -> List[int]:
        return self.nodes[index].children

    def parent(self, index: int) -> Optional[int]:
        return self.nodes[index].parent

    def elements(self, tag: str) -> List[int]:
        """Indices of attached elements named ``tag``, in document order."""
        found = []
        stack = [self.ROOT]
        while stack:
            index = stack.pop()
            node = self.nodes[index]
            if node.kind is NodeKind.ELEMENT and node.tag == tag:
                found.append(index)
            stack.extend(reversed(node.children))
        return found

    def to_tree(self, index: int = ROOT) -> tuple:
        """Nested tuple view of the subtree, used for structural comparison."""
        node = self.nodes[index]
        if node.kind is NodeKind.ELEMENT:
            return (
                node.kind.value,
                node.tag,
                tuple(node.attrs),
                tuple(self.to_tree(child) for child in node.children),
            )
        if node.kind is NodeKind.DOCUMENT:
            return (node.kind.value, tuple(self.to_tree(child) for child in node.children))
        return (node.kind.value, node.data)


class _TreeBuilder(HTMLParser):
    """Feeds HTMLParser events into a Document."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.document = Document()
        self.stack: List[int] = [Document.ROOT]

    @property
    def current(self) -> int:
        return self.stack[-1]

    def _append(self, index: int) -> None:
        self.document.append_child(self.current, index)

    def _current_tag(self) -> str:
        return self.document.node(self.current).tag

    def _close(self, names, boundaries) -> None:
        """Pop the outermost open ``names`` element above the nearest boundary."""
        found = None
        for depth in range(len(self.stack) - 1, 0, -1):
            tag = self.document.node(self.stack[depth]).tag
            if tag in names:
                found = depth
            elif tag in boundaries:
                break
        if found is not None:
            del self.stack[found:]

    def _imply_end_tags(self, tag: str) -> None:
        # The subset of HTML's optional end tags that real pages rely on.
        if self._current_tag() == "head" and tag not in HEAD_ELEMENTS:
            self.stack.pop()
        if tag in CLOSES_P:
            self._close({"p"}, BUTTON_SCOPE)
        if tag in IMPLIED_END:
            self._close(*IMPLIED_END[tag])

    def handle_starttag(self, tag, attrs):
        self._imply_end_tags(tag)
        index = self.document.create_element(tag, attrs)
        self._append(index)
        if tag not in VOID_ELEMENTS:
            self.stack.append(index)

    def handle_startendtag(self, tag, attrs):
        self._imply_end_tags(tag)
        self._append(self.document.create_element(tag, attrs))

    def handle_endtag(self, tag):
        # Close up to the nearest open element with this name; stray end
        # tags are dropped.
        for depth in range(len(self.stack) - 1, 0, -1):
            if self.document.node(self.stack[depth]).tag == tag:
                del self.stack[depth:]
                return

    def handle_data(self, data):
        if not data:
            return
        if self._current_tag() == "head" and data.strip():
            self.stack.pop()
        siblings = self.document.children(self.current)
        if siblings:
            last = self.document.node(siblings[-1])
            if last.kind is NodeKind.TEXT:
                last.data += data
                return
        self._append(self.document.create_text(data))

    def handle_comment(self, data):
        self._append(self.document.create_comment(data))

    def handle_decl(self, decl):
        self._append(self.document.create_doctype(decl))

    def handle_pi(self, data):
        # HTML treats processing instructions as bogus comments
        self._append(self.document.create_comment("?" + data))

    def unknown_decl(self, data):
        self._append(self.document.create_comment(f"[{data}]"))


def parse(html: str) -> Document:
    """Parse HTML text into a Document."""
    builder = _TreeBuilder()
    try:
        builder.feed(html)
        builder.close()
    except (AssertionError, ValueError) as e:
        raise ParseError(f"Unable to parse HTML: {e}") from e
    return builder.document


def parse_bytes(data: bytes, encoding: str = "utf-8") -> Document:
    """Decode and parse HTML bytes."""
    try:
        html = data.decode(encoding)
    except UnicodeDecodeError as e:
        raise ParseError(f"HTML is not valid {encoding}: {e}") from e
    return parse(html)


def serialize(document: Document) -> str:
    """Serialize a Document back to HTML text."""
    out: List[str] = []
    for child in document.children(Document.ROOT):
        _write(document, child, out, raw=False)
    return "".join(out)


def _write(document: Document, index: int, out: List[str], raw: bool) -> None:
    node = document.node(index)

    if node.kind is NodeKind.TEXT:
        out.append(node.data if raw else escape(node.data, quote=False))
    elif node.kind is NodeKind.COMMENT:
        out.append(f"<!--{node.data}-->")
    elif node.kind is NodeKind.DOCTYPE:
        out.append(f"<!{node.data}>")
    elif node.kind is NodeKind.ELEMENT:
        out.append(f"<{node.tag}")
        for name, value in node.attrs:
            if value is None:
                out.append(f" {name}")
            else:
                out.append(f' {name}="{_escape_attr(value)}"')
        out.append(">")
        if node.tag in VOID_ELEMENTS:
            return
        child_raw = node.tag in RAW_TEXT_ELEMENTS
        for child in node.children:
            _write(document, child, out, raw=child_raw)
        out.append(f"</{node.tag}>")


def _escape_attr(value: str) -> str:
    return value.replace("&", "&amp;").replace('"', "&quot;")
