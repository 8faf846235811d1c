"""
Persistence package.

PostgreSQL-backed reads for rule trees, practitioners, locations, base
schedules, manual blocks and appointments, plus the transactional rule write.
"""
