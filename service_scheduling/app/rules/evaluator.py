"""
Rule evaluation engine for the Scheduling Service.
"""

import time
from typing import Any, Dict, Iterable, List, Optional

from shared.errors import StructuralCorruptionError
from shared.logging import get_logger
from ..preload.day_data import PreloadedDayData
from .conditions import evaluate_condition
from .models import AppointmentContext, NodeType, RuleCheckResult
from .tree import RuleTree


def evaluate_tree(tree: RuleTree, node_id: str, context: AppointmentContext,
                  preloaded: PreloadedDayData) -> bool:
    """Evaluate the subtree rooted at ``node_id``.

    AND short-circuits on the first false child. NOT negates its only
    child. There is no OR; disjunction is authored as NOT(AND(NOT a, NOT b)).
    """
    node = tree.get_node(node_id)
    if node.node_type == NodeType.CONDITION:
        return evaluate_condition(node, context, preloaded)

    children = tree.children_of(node_id)
    if not children:
        raise StructuralCorruptionError(
            f"{node.node_type.value} node has no children",
            {"node_id": node_id}
        )

    if node.node_type == NodeType.AND:
        for child in children:
            if not evaluate_tree(tree, child.id, context, preloaded):
                return False
        return True

    if node.node_type == NodeType.NOT:
        if len(children) != 1:
            raise StructuralCorruptionError(
                f"NOT node must have exactly 1 child, has {len(children)}",
                {"node_id": node_id, "child_count": len(children)}
            )
        return not evaluate_tree(tree, children[0].id, context, preloaded)

    raise StructuralCorruptionError(f"Unknown node type: {node.node_type!r}", {"node_id": node_id})


class RuleEngine:
    """Evaluates the rules of one loaded rule set."""

    def __init__(self, tree: RuleTree):
        self.logger = get_logger("scheduling.rule_engine")
        self.tree = tree

    def evaluate_tree(self, node_id: str, context: AppointmentContext,
                      preloaded: PreloadedDayData) -> bool:
        return evaluate_tree(self.tree, node_id, context, preloaded)

    def evaluate_rule(self, rule_id: str, context: AppointmentContext,
                      preloaded: PreloadedDayData) -> bool:
        """True when the rule blocks the context. Disabled rules never block."""
        root = self.tree.get_node(rule_id)
        if not root.enabled:
            return False
        body = self.tree.rule_body(rule_id)
        return self.evaluate_tree(body.id, context, preloaded)

    def rule_ids(self) -> List[str]:
        """Enabled rule ids in stored order."""
        return [root.id for root in self.tree.rules()]

    def check(self, context: AppointmentContext, preloaded: PreloadedDayData) -> RuleCheckResult:
        """Evaluate every enabled rule and report all that match."""
        start_time = time.time()

        blocked_by = [
            rule_id for rule_id in self.rule_ids()
            if self.evaluate_rule(rule_id, context, preloaded)
        ]

        result = RuleCheckResult(
            is_blocked=bool(blocked_by),
            blocked_by_rule_ids=blocked_by,
            evaluation_time_ms=(time.time() - start_time) * 1000
        )

        self.logger.debug(
            "Rule check result",
            is_blocked=result.is_blocked,
            blocked_by_rule_ids=blocked_by,
            evaluation_time_ms=result.evaluation_time_ms
        )

        return result

    def first_blocking_rule(self, rule_ids: Iterable[str], context: AppointmentContext,
                            preloaded: PreloadedDayData) -> Optional[str]:
        """Id of the first rule in ``rule_ids`` that blocks, stopping there."""
        for rule_id in rule_ids:
            if self.evaluate_rule(rule_id, context, preloaded):
                return rule_id
        return None

    def get_engine_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            "total_nodes": len(self.tree),
            "total_rules": len(self.tree.rules(enabled_only=False)),
            "enabled_rules": len(self.tree.rules()),
        }
