"""
Write-time validation and flattening of authored condition trees.

A rule is written as one root node plus its flattened subtree. Validation
runs before anything is persisted; it is the only place cycles and runaway
nesting are caught, so it enforces the depth limit.
"""

import uuid
from typing import Callable, List, Optional

from shared.errors import StructuralCorruptionError, ValidationError
from shared.logging import get_logger
from .codec import check_operator, decode_condition_value
from .models import ConditionTreeInput, NodeType, RuleConditionNode

logger = get_logger("scheduling.rules.builder")

DEFAULT_MAX_DEPTH = 20


def validate_condition_tree(node: ConditionTreeInput, depth: int = 0,
                            max_depth: int = DEFAULT_MAX_DEPTH) -> List[str]:
    """Return every structural problem in ``node``; an empty list means valid."""
    if depth > max_depth:
        return [f"Condition tree is too deeply nested (max depth: {max_depth})"]

    errors: List[str] = []

    if node.node_type == NodeType.CONDITION:
        if node.children:
            errors.append("CONDITION node must not have children")
        if node.condition_type is None:
            errors.append("CONDITION node must have a condition_type")
        if node.operator is None:
            errors.append("CONDITION node must have an operator")
        elif node.condition_type is not None:
            try:
                check_operator(node.condition_type, node.operator)
            except StructuralCorruptionError as e:
                errors.append(e.message)
        if node.condition_type is not None:
            try:
                decode_condition_value(
                    node.condition_type,
                    node.value_ids,
                    node.value_number,
                    node.scope.value if node.scope else None,
                )
            except StructuralCorruptionError as e:
                errors.append(e.message)
        return errors

    if node.node_type == NodeType.NOT and len(node.children) != 1:
        errors.append(f"NOT node must have exactly 1 child, has {len(node.children)}")
    if node.node_type == NodeType.AND and not node.children:
        errors.append("AND node must have at least 1 child")

    for index, child in enumerate(node.children):
        child_errors = validate_condition_tree(child, depth + 1, max_depth)
        errors.extend(f"Child {index}: {error}" for error in child_errors)

    return errors


def build_rule_nodes(
    tree: ConditionTreeInput,
    tenant_id: str,
    rule_set_id: str,
    enabled: bool = True,
    child_order: int = 0,
    max_depth: int = DEFAULT_MAX_DEPTH,
    id_factory: Optional[Callable[[], str]] = None,
) -> List[RuleConditionNode]:
    """Validate ``tree`` and flatten it into a root node plus its subtree.

    The root is the first element of the returned list.
    """
    errors = validate_condition_tree(tree, max_depth=max_depth)
    if errors:
        raise ValidationError("Invalid condition tree", {"errors": errors})

    new_id = id_factory or (lambda: str(uuid.uuid4()))
    root = RuleConditionNode(
        id=new_id(),
        tenant_id=tenant_id,
        rule_set_id=rule_set_id,
        node_type=NodeType.AND,
        is_root=True,
        enabled=enabled,
        child_order=child_order,
    )
    nodes = [root]

    def flatten(node: ConditionTreeInput, parent_id: str, order: int) -> None:
        node_id = new_id()
        value = None
        if node.node_type == NodeType.CONDITION:
            value = decode_condition_value(
                node.condition_type,
                node.value_ids,
                node.value_number,
                node.scope.value if node.scope else None,
            )
        nodes.append(RuleConditionNode(
            id=node_id,
            tenant_id=tenant_id,
            rule_set_id=rule_set_id,
            node_type=node.node_type,
            parent_id=parent_id,
            child_order=order,
            condition_type=node.condition_type,
            operator=node.operator,
            value=value,
        ))
        for index, child in enumerate(node.children):
            flatten(child, node_id, index)

    flatten(tree, root.id, 0)

    logger.debug("Rule tree flattened", rule_id=root.id, node_count=len(nodes))
    return nodes
