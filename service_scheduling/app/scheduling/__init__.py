"""
Slot scheduling package.

Turns base schedules into a day's candidate slots, applies manual blocks
and runs the rule engine over the remainder. ``service`` wires the data
source reads in front of the purely in-memory ``scheduler``.
"""
