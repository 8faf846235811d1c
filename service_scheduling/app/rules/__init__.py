"""
Rules engine package.

Rules are condition trees authored as AND / NOT compositions over a closed
set of leaf predicates. A rule that evaluates true blocks the booking.

Modules of interest:
- models: Node, payload and context types plus API models.
- codec: Stored field bag <-> typed leaf payloads.
- tree: Arena index over a rule set's nodes.
- conditions: Leaf evaluation.
- evaluator: AND / NOT composition and whole-rule-set checks.
- classifier: Day-invariant vs time-variant split and pre-evaluation.
- builder: Write-time validation and flattening.
- describe: Text rendering of a rule body.
"""
