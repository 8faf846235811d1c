"""
Arena storage for condition trees.

Nodes are kept in a flat id -> node map with a parent -> ordered children
index. The structure is built once per query from the rule-tree read and is
never mutated afterwards.
"""

from types import MappingProxyType
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Tuple

from shared.errors import StructuralCorruptionError
from .models import RuleConditionNode


class RuleTree:
    """Read-only index over the nodes of one rule set."""

    def __init__(self, nodes: Iterable[RuleConditionNode]):
        by_id: Dict[str, RuleConditionNode] = {}
        children: Dict[str, List[RuleConditionNode]] = {}
        roots: List[RuleConditionNode] = []

        for node in nodes:
            if node.id in by_id:
                raise StructuralCorruptionError("Duplicate condition node", {"node_id": node.id})
            by_id[node.id] = node
            if node.is_root:
                roots.append(node)
            elif node.parent_id is None:
                raise StructuralCorruptionError("Non-root node has no parent", {"node_id": node.id})
            else:
                children.setdefault(node.parent_id, []).append(node)

        for parent_id, siblings in children.items():
            if parent_id not in by_id:
                raise StructuralCorruptionError(
                    "Condition node references a missing parent",
                    {"parent_id": parent_id, "node_ids": [n.id for n in siblings]}
                )
            # stable: equal child_order keeps load order
            siblings.sort(key=lambda n: n.child_order)

        self._nodes: Mapping[str, RuleConditionNode] = MappingProxyType(by_id)
        self._children: Mapping[str, Tuple[RuleConditionNode, ...]] = MappingProxyType(
            {parent_id: tuple(siblings) for parent_id, siblings in children.items()}
        )
        self._roots: Tuple[RuleConditionNode, ...] = tuple(roots)

    def __len__(self) -> int:
        return len(self._nodes)

    def get_node(self, node_id: str) -> RuleConditionNode:
        """Look up a node; a missing node is corruption."""
        node = self._nodes.get(node_id)
        if node is None:
            raise StructuralCorruptionError("Condition node not found", {"node_id": node_id})
        return node

    def find_node(self, node_id: str) -> Optional[RuleConditionNode]:
        return self._nodes.get(node_id)

    def children_of(self, node_id: str) -> Tuple[RuleConditionNode, ...]:
        """Children of a node in sibling order."""
        return self._children.get(node_id, ())

    def rules(self, enabled_only: bool = True) -> Tuple[RuleConditionNode, ...]:
        """Root nodes in stored order."""
        if not enabled_only:
            return self._roots
        return tuple(root for root in self._roots if root.enabled)

    def rule_body(self, rule_id: str) -> RuleConditionNode:
        """The single top node of a rule's condition tree."""
        root = self.get_node(rule_id)
        if not root.is_root:
            raise StructuralCorruptionError("Node is not a rule root", {"node_id": rule_id})
        children = self.children_of(rule_id)
        if len(children) != 1:
            raise StructuralCorruptionError(
                f"Rule root must have exactly 1 child, has {len(children)}",
                {"rule_id": rule_id, "child_count": len(children)}
            )
        return children[0]

    def leaves(self, node_id: str) -> Iterator[RuleConditionNode]:
        """Every CONDITION node in the subtree of ``node_id``, left to right."""
        node = self.get_node(node_id)
        if node.is_leaf:
            yield node
            return
        for child in self.children_of(node_id):
            yield from self.leaves(child.id)

    def rule_leaves(self, rule_id: str) -> Iterator[RuleConditionNode]:
        return self.leaves(self.rule_body(rule_id).id)
