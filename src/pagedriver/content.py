"""Main-content detection and text extraction.

``extract_main_content`` finds the region of a page that carries its actual
content (article body, documentation, product description) and serializes
it as lightweight markdown. Detection tries, in order:

1. a semantic ``main``/``article``/``[role=main]`` element with substantial text,
2. well-known content container classes and ids,
3. the best scoring ``div``/``section``/``td`` block,
4. the page body with navigation, headers, footers and ads removed.

``visible_text`` is the simpler flattening used by ``extract``/``extractAll``.
"""

from __future__ import annotations

import re

from pagedriver.config import ExtractionConfig
from pagedriver.dom import Document, DomNode, TextNode

TRUNCATION_MARKER = "\n\n[Content truncated...]"

SEMANTIC_SELECTOR = 'main, article, [role="main"]'

COMMON_CONTENT_SELECTORS = [
    ".article-content",
    ".article-body",
    ".article__body",
    ".post-content",
    ".post-body",
    ".entry-content",
    ".story-body",
    ".story-content",
    ".content-body",
    ".content-area",
    ".main-content",
    "#content",
    "#main-content",
    "#main",
    ".markdown-body",
    ".prose",
    ".rich-text",
    ".documentation",
    ".wysiwyg",
    ".text-content",
    ".page-content",
    "[data-article-body]",
    "[data-content]",
    ".product-description",
    ".product-details",
]

BOILERPLATE_TAGS = frozenset({"nav", "header", "footer", "aside"})
BOILERPLATE_ROLES = frozenset({"navigation", "banner", "contentinfo", "complementary"})
BOILERPLATE_PATTERNS = (
    "nav",
    "menu",
    "header",
    "footer",
    "sidebar",
    "aside",
    "widget",
    "ad-",
    "ads-",
    "advertisement",
    "promo",
    "social",
    "share",
    "comment",
    "related",
    "recommend",
    "newsletter",
    "subscribe",
    "popup",
    "modal",
    "cookie",
    "breadcrumb",
    "pagination",
    "tag-",
    "category-",
)

CLEAN_BODY_REMOVE = ", ".join(
    [
        "nav",
        "header",
        "footer",
        "aside",
        '[role="navigation"]',
        '[role="banner"]',
        '[role="contentinfo"]',
        ".nav",
        ".menu",
        ".header",
        ".footer",
        ".sidebar",
        ".ad",
        ".ads",
        ".advertisement",
        ".promo",
        ".social",
        ".share",
        ".comments",
        ".related",
        "script",
        "style",
        "noscript",
        "svg",
        "iframe",
    ]
)

STRUCTURE_SKIP_TAGS = frozenset(
    {"script", "style", "noscript", "svg", "iframe", "nav", "header", "footer", "aside"}
)
VISIBLE_TEXT_SKIP_TAGS = frozenset(
    {"script", "style", "noscript", "svg", "path", "template"}
)
HEADING_RE = re.compile(r"^h([1-6])$")
_POSITIVE_CLASS_RE = re.compile(r"article|content|post|story|entry")
_NEGATIVE_CLASS_RE = re.compile(r"sidebar|widget|comment|related|recommend")
_WS_RUN_RE = re.compile(r"\s+")


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def word_count(node: DomNode) -> int:
    return len(node.inner_text().split())


def has_substantial_content(node: DomNode, config: ExtractionConfig) -> bool:
    words = word_count(node)
    links = len(node.find_all("a"))
    return words > config.min_words and links / (words or 1) < config.max_link_density


def is_boilerplate(node: DomNode) -> bool:
    if node.tag in BOILERPLATE_TAGS:
        return True
    if node.get("role") in BOILERPLATE_ROLES:
        return True
    combined = f"{node.class_name} {(node.get('id') or '').lower()}"
    return any(pattern in combined for pattern in BOILERPLATE_PATTERNS)


def content_score(node: DomNode) -> float:
    words = word_count(node)
    if words < 50:
        return 0

    paragraphs = len(node.find_all("p"))
    headings = len(node.find_all("h1", "h2", "h3", "h4", "h5", "h6"))
    links = len(node.find_all("a"))
    inputs = len(node.find_all("input", "button", "select"))

    score: float = words + paragraphs * 20 + headings * 30
    score *= 1 - links / words
    score *= 1 - inputs / words

    if _POSITIVE_CLASS_RE.search(node.class_name):
        score *= 1.5
    if _NEGATIVE_CLASS_RE.search(node.class_name):
        score *= 0.3
    return score


def find_largest_text_block(
    document: Document, config: ExtractionConfig
) -> DomNode | None:
    best: DomNode | None = None
    best_score = 0.0
    for node in document.deep_find_all("div", "section", "td"):
        if is_boilerplate(node):
            continue
        score = content_score(node)
        if score > best_score:
            best, best_score = node, score
    return best if best_score > config.min_score else None


def clean_body(document: Document) -> DomNode:
    return document.body.copy(lambda n: not n.matches(CLEAN_BODY_REMOVE))


def find_main_content(document: Document, config: ExtractionConfig) -> DomNode:
    target = document.deep_find(SEMANTIC_SELECTOR)
    if target is not None and has_substantial_content(target, config):
        return target

    for selector in COMMON_CONTENT_SELECTORS:
        target = document.deep_find(selector)
        if target is not None and has_substantial_content(target, config):
            return target

    return find_largest_text_block(document, config) or clean_body(document)


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


class StructureWriter:
    """Serializes a subtree as markdown-like text."""

    def __init__(self) -> None:
        self.lines: list[str] = []

    def write(self, root: DomNode) -> str:
        self._walk(root, 0)
        text = "\n".join(self.lines)
        text = re.sub(r"\n{3,}", "\n\n", text).strip()
        return re.sub(r"[ \t]+", " ", text)

    def _walk(self, node: DomNode | TextNode, depth: int) -> None:
        if isinstance(node, TextNode):
            text = node.text.strip()
            if text:
                self.lines.append(text)
            return

        if node.tag in STRUCTURE_SKIP_TAGS:
            return
        if node.is_content_hidden() or is_boilerplate(node):
            return

        tag = node.tag
        heading = HEADING_RE.match(tag)
        if heading:
            text = node.text_content().strip()
            if text:
                self.lines.append(f"\n{'#' * int(heading.group(1))} {text}\n")
            return

        if tag == "p":
            self._block(node, "\n{}\n")
            return
        if tag == "li":
            self._block(node, "- {}")
            return
        if tag == "blockquote":
            text = node.text_content().strip()
            if text:
                self.lines.append("\n> " + text.replace("\n", "\n> ") + "\n")
            return
        if tag in ("pre", "code"):
            text = node.text_content().strip()
            if text:
                if tag == "pre" or "\n" in text:
                    self.lines.append(f"\n```\n{text}\n```\n")
                else:
                    self.lines.append(f"`{text}`")
            return
        if tag == "table":
            text = _WS_RUN_RE.sub(" | ", node.text_content().strip())
            if text:
                self.lines.append(f"\n{text}\n")
            return
        if tag == "a" and depth > 0:
            text = node.text_content().strip()
            href = node.get("href")
            if text and href and not href.startswith(("#", "javascript:")):
                self.lines.append(f"[{text}]({href})")
                return
        if tag == "img":
            alt = node.get("alt")
            if alt:
                self.lines.append(f"[Image: {alt}]")
            return

        children = node.shadow_nodes if node.shadow_nodes is not None else node.child_nodes
        for child in children:
            self._walk(child, depth + 1)

    def _block(self, node: DomNode, template: str) -> None:
        text = node.text_content().strip()
        if text:
            self.lines.append(template.format(text))


def extract_text_with_structure(node: DomNode) -> str:
    return StructureWriter().write(node)


def extract_main_content(document: Document, config: ExtractionConfig | None = None) -> str:
    config = config or ExtractionConfig()
    content = extract_text_with_structure(find_main_content(document, config))
    if len(content) > config.max_length:
        return content[: config.max_length] + TRUNCATION_MARKER
    return content


# ---------------------------------------------------------------------------
# Visible text
# ---------------------------------------------------------------------------


def visible_text(node: DomNode) -> str:
    """Visible text lines of *node*, consecutive duplicates collapsed."""
    lines: list[str] = []
    _collect_visible(node, lines)

    deduped: list[str] = []
    for line in lines:
        if not deduped or deduped[-1] != line:
            deduped.append(line)
    return "\n".join(deduped)


def _collect_visible(node: DomNode | TextNode, lines: list[str]) -> None:
    if isinstance(node, TextNode):
        text = node.text.strip()
        if text:
            lines.append(text)
        return

    if (
        node.is_computed_hidden()
        or node.opacity == 0
        or node.get("aria-hidden") == "true"
        or node.tag in VISIBLE_TEXT_SKIP_TAGS
    ):
        return

    if node.tag in ("input", "textarea"):
        value = node.value or node.get("placeholder")
        if value:
            lines.append(value)
        return

    for child in node.child_nodes:
        _collect_visible(child, lines)


def element_text(node: DomNode) -> str:
    """Text for ``extract``: the value of form fields, else visible text."""
    if node.tag in ("input", "textarea"):
        return node.value or ""
    return visible_text(node)


def join_texts(nodes: list[DomNode], separator: str = ", ") -> str:
    texts = [text for text in (element_text(n) for n in nodes) if text]
    return separator.join(texts)
