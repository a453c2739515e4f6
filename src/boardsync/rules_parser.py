"""Parse "Automation Rules" note cards into rule specs.

A note card authors rules as a CommonMark list under an ``Automation Rules``
heading::

    ## Automation Rules

    - `new_issue` openstax myrepo
    - `closed_issue`

Each list item whose paragraph holds an inline code span yields the code span
as the rule name and the text right after it (trimmed) as the rule value.
"""

from __future__ import annotations

from enum import Enum

from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode

from .models import RuleSpec

AUTOMATION_HEADING = "Automation Rules"

_MD = MarkdownIt("commonmark")


class _State(Enum):
    BEFORE_SECTION = "before_section"
    IN_SECTION = "in_section"


def _is_section_heading(node: SyntaxTreeNode) -> bool:
    if node.type != "heading":
        return False
    for inline in node.children:
        for child in inline.children:
            if child.type == "text" and child.content.strip() == AUTOMATION_HEADING:
                return True
    return False


def _is_rule_code_span(node: SyntaxTreeNode) -> bool:
    # code_inline -> inline -> paragraph -> list_item
    if node.type != "code_inline":
        return False
    inline = node.parent
    paragraph = inline.parent if inline is not None else None
    item = paragraph.parent if paragraph is not None else None
    return (
        inline is not None
        and paragraph is not None
        and paragraph.type == "paragraph"
        and item is not None
        and item.type == "list_item"
    )


def _rule_value(node: SyntaxTreeNode) -> str | None:
    sibling = node.next_sibling
    if sibling is None or sibling.type != "text":
        return None
    value = sibling.content.strip()
    return value or None


def parse_rules(text: str | None) -> list[RuleSpec]:
    """Return the rules declared under the ``Automation Rules`` heading, in order.

    Once the heading has been seen every later list item counts, even under a
    different heading. Documents without the heading yield nothing.
    """
    if not text:
        return []
    root = SyntaxTreeNode(_MD.parse(text))
    state = _State.BEFORE_SECTION
    rules: list[RuleSpec] = []
    for node in root.walk():
        if state is _State.BEFORE_SECTION:
            if _is_section_heading(node):
                state = _State.IN_SECTION
            continue
        if _is_rule_code_span(node):
            rules.append(RuleSpec(name=node.content, value=_rule_value(node)))
    return rules


__all__ = ["AUTOMATION_HEADING", "parse_rules"]
