"""
Live-reload script injection.

Appends ``<script type="text/javascript" src="...">`` as the last child of
the document's head. Injection is idempotent: if head already holds a
script element with the same ``src`` the document is left as is.
"""

from dataclasses import dataclass
from typing import Optional

from liveserver.document import Document, NodeKind
from liveserver.errors import MissingHeadError

SCRIPT_TYPE = "text/javascript"


@dataclass
class _Walk:
    """Traversal state."""
    in_head: bool = False
    head: Optional[int] = None


def _walk(document: Document, index: int, state: _Walk) -> None:
    # Nothing after the first head can change the result.
    if state.head is not None and not state.in_head:
        return

    node = document.node(index)
    is_head = node.kind is NodeKind.ELEMENT and node.tag == "head"

    if is_head:
        state.in_head = True
        if state.head is None:
            state.head = index

    for child in node.children:
        _walk(document, child, state)

    if index == state.head:
        state.in_head = False


def find_head(document: Document) -> Optional[int]:
    """Index of the first head element, or None."""
    state = _Walk()
    _walk(document, Document.ROOT, state)
    return state.head


def create_script(document: Document, path: str) -> int:
    """Create a detached script reference node for ``path``."""
    return document.create_element("script", [("type", SCRIPT_TYPE), ("src", path)])


def has_script(document: Document, head: int, path: str) -> bool:
    """True if ``head`` already has a script child loading ``path``."""
    for child in document.children(head):
        node = document.node(child)
        if node.kind is NodeKind.ELEMENT and node.tag == "script" and node.get_attr("src") == path:
            return True
    return False


def inject(document: Document, script_path: str) -> Document:
    """
    Append a script reference for ``script_path`` to the document's head.

    Mutates and returns ``document``. Raises MissingHeadError, leaving the
    document untouched, when there is no head element.
    """
    head = find_head(document)
    if head is None:
        raise MissingHeadError("Document has no <head> element")

    if not has_script(document, head, script_path):
        document.append_child(head, create_script(document, script_path))

    return document
