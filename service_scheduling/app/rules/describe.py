"""
Plain-text rendering of a rule's condition tree.

Used for rule inspection and as the reason attached to blocked slots.
"""

from typing import List

from .codec import encode_condition_value
from .models import NodeType, RuleConditionNode, RuleDescriptionResponse
from .tree import RuleTree


def _format_leaf(node: RuleConditionNode) -> str:
    value_ids, value_number, scope = encode_condition_value(node.value)
    if value_number is not None:
        value = f"{value_number:g}"
    elif value_ids:
        value = f"[{', '.join(value_ids)}]"
    else:
        value = "[]"
    parts = [node.condition_type.value, node.operator.value, value]
    if scope:
        parts.append(f"({scope})")
    return " ".join(parts)


def _render(tree: RuleTree, node: RuleConditionNode, depth: int, lines: List[str]) -> None:
    indent = "  " * depth
    if node.node_type == NodeType.CONDITION:
        lines.append(indent + _format_leaf(node))
        return
    lines.append(indent + node.node_type.value)
    for child in tree.children_of(node.id):
        _render(tree, child, depth + 1, lines)


def tree_structure(tree: RuleTree, rule_id: str) -> str:
    """Indented structure of a rule body, one node per line."""
    lines: List[str] = []
    _render(tree, tree.rule_body(rule_id), 0, lines)
    return "\n".join(lines)


def describe_rule(tree: RuleTree, rule_id: str) -> RuleDescriptionResponse:
    root = tree.get_node(rule_id)
    return RuleDescriptionResponse(
        rule_id=rule_id,
        description=f"Rule {rule_id} - {'Enabled' if root.enabled else 'Disabled'}",
        tree_structure=tree_structure(tree, rule_id),
    )
