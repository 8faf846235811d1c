"""
Day data preloading.

Builds the immutable per-day snapshot (appointments by exact start instant,
per-key daily counts, practitioner lookup) that rule evaluation reads from.
"""
