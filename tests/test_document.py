"""Tests for the HTML document model."""

import pytest

from liveserver.document import Document, NodeKind, parse, parse_bytes, serialize
from liveserver.errors import ParseError

SAMPLES = [
    '<!DOCTYPE html><html><head><meta charset="utf-8"><title>t</title></head><body></body></html>',
    "<html><head></head><body><p>a &amp; b &lt; c</p><br><img src=x.png alt></body></html>",
    "<!-- lead --><html><head><script>if (a < b && c) {}</script><style>p > a {}</style></head></html>",
    "<div><p>unclosed<span>deep</div>tail",
    '<a href="/x?a=1&amp;b=&quot;2&quot;" disabled>link</a>',
    "<html><head><title>x</title></head><body><div/><p>1<!--c-->2</p></body></html>",
    "plain text with no markup",
    "",
]


class TestParse:
    """Test building the tree."""

    def test_structure(self):
        """Elements, attributes and text land in the right places."""
        doc = parse('<!DOCTYPE html><html><head><meta charset="utf-8"></head><body>hi</body></html>')

        top = doc.children(Document.ROOT)
        assert [doc.node(i).kind for i in top] == [NodeKind.DOCTYPE, NodeKind.ELEMENT]

        html = top[1]
        head, body = doc.children(html)
        assert doc.node(head).tag == "head"
        assert doc.node(body).tag == "body"

        meta = doc.children(head)[0]
        assert doc.node(meta).attrs == [("charset", "utf-8")]
        assert doc.node(meta).children == []
        assert doc.node(doc.children(body)[0]).data == "hi"

    def test_parent_is_lookup(self):
        """Every attached node knows its parent index."""
        doc = parse("<html><head><title>t</title></head></html>")
        title = doc.elements("title")[0]
        head = doc.parent(title)
        assert doc.node(head).tag == "head"
        assert title in doc.children(head)
        assert doc.parent(Document.ROOT) is None

    def test_no_head_is_not_invented(self):
        """Missing structure is not synthesized."""
        doc = parse("<body><p>x</p></body>")
        assert doc.elements("head") == []
        assert doc.elements("html") == []

    def test_stray_end_tag_dropped(self):
        doc = parse("<p>a</span>b</p>")
        p = doc.elements("p")[0]
        assert [doc.node(c).data for c in doc.children(p)] == ["ab"]

    def test_adjacent_text_merged(self):
        doc = parse("<p>a&amp;b</p>")
        p = doc.elements("p")[0]
        assert len(doc.children(p)) == 1
        assert doc.node(doc.children(p)[0]).data == "a&b"

    def test_invalid_utf8(self):
        with pytest.raises(ParseError):
            parse_bytes(b"<html>\xff\xfe</html>")

    def test_append_child_twice_rejected(self):
        doc = parse("<html><head></head><body></body></html>")
        head = doc.elements("head")[0]
        body = doc.elements("body")[0]
        node = doc.create_element("span")
        doc.append_child(head, node)
        with pytest.raises(ValueError):
            doc.append_child(body, node)


class TestSerialize:
    """Test writing the tree back out."""

    def test_identity_on_canonical_input(self):
        html = '<!DOCTYPE html><html><head><meta charset="utf-8"><title>t</title></head><body></body></html>'
        assert serialize(parse(html)) == html

    def test_text_escaped(self):
        assert serialize(parse("<p>a &lt; b &amp; c</p>")) == "<p>a &lt; b &amp; c</p>"

    def test_raw_text_not_escaped(self):
        html = "<script>if (a < b && c) {}</script>"
        assert serialize(parse(html)) == html

    def test_attribute_quoting(self):
        doc = parse('<a title="say &quot;hi&quot; &amp; go" hidden>x</a>')
        assert serialize(doc) == '<a title="say &quot;hi&quot; &amp; go" hidden>x</a>'

    def test_void_and_self_closing(self):
        assert serialize(parse("<br/><div/>")) == "<br><div></div>"

    def test_implicitly_closed_elements_get_end_tags(self):
        assert serialize(parse("<div><p>x")) == "<div><p>x</p></div>"

    @pytest.mark.parametrize("html", SAMPLES)
    def test_round_trip(self, html):
        """parse(serialize(parse(html))) == parse(html)"""
        first = parse(html)
        assert parse(serialize(first)) == first


class TestImpliedEndTags:
    """Test the optional end tags pages commonly leave out."""

    @pytest.mark.parametrize("html, expected", [
        (
            "<html><head><title>t</title><body><p>x</body></html>",
            "<html><head><title>t</title></head><body><p>x</p></body></html>",
        ),
        (
            '<head><meta charset="utf-8"><div>content</div>',
            '<head><meta charset="utf-8"></head><div>content</div>',
        ),
        ("<head><title>t</title>loose text", "<head><title>t</title></head>loose text"),
        ("<head>\n  <title>t</title>\n</head>", "<head>\n  <title>t</title>\n</head>"),
    ])
    def test_head(self, html, expected):
        assert serialize(parse(html)) == expected

    @pytest.mark.parametrize("html, expected", [
        ("<p>one<p>two<div>d</div>", "<p>one</p><p>two</p><div>d</div>"),
        ("<p>a<span>b<h1>c</h1>", "<p>a<span>b</span></p><h1>c</h1>"),
        ("<p>a<hr>b", "<p>a</p><hr>b"),
        ("<p>a<b>bold</b>c</p>", "<p>a<b>bold</b>c</p>"),
        ("<p><button><p>in</button>out", "<p><button><p>in</p></button>out</p>"),
    ])
    def test_paragraph(self, html, expected):
        assert serialize(parse(html)) == expected

    @pytest.mark.parametrize("html, expected", [
        ("<ul><li>a<li>b</ul>", "<ul><li>a</li><li>b</li></ul>"),
        ("<ul><li>a<ul><li>b</ul></ul>", "<ul><li>a<ul><li>b</li></ul></li></ul>"),
        ("<dl><dt>t<dd>d<dt>u</dl>", "<dl><dt>t</dt><dd>d</dd><dt>u</dt></dl>"),
        (
            "<select><option>a<option>b</select>",
            "<select><option>a</option><option>b</option></select>",
        ),
        (
            "<select><optgroup><option>a<optgroup><option>b</select>",
            "<select><optgroup><option>a</option></optgroup><optgroup><option>b</option></optgroup></select>",
        ),
        (
            "<table><tr><td>1<td>2<tr><th>3</table>",
            "<table><tr><td>1</td><td>2</td></tr><tr><th>3</th></tr></table>",
        ),
    ])
    def test_siblings(self, html, expected):
        assert serialize(parse(html)) == expected

    def test_implied_tree_is_stable(self):
        first = parse("<html><head><title>t</title><body><ul><li>a<li>b</ul><p>x<p>y")
        assert parse(serialize(first)) == first
