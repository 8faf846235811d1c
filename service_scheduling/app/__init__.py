"""
Scheduling Service package for the clinic booking rule engine.

This package decides whether a candidate appointment is permitted under a
practice's configured rules and builds a day's grid of bookable slots
annotated with that decision. It provides:

- app.main: API surface for rule checks, day slots and health.
- app.rules: Condition tree model, evaluator, classifier and write-time builder.
- app.preload: Immutable per-day snapshot of existing bookings.
- app.scheduling: Slot generation and per-day orchestration.
- app.persistence: PostgreSQL storage for rules, schedules and appointments.

Guidelines:
- Load everything a day-query needs before evaluating anything.
- Keep rule evaluation pure and deterministic; it must be safe to re-run.
- A malformed rule is an error, never a silent "does not block".
"""
