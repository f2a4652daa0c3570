"""
Service layer: routing, backend adapters and task orchestration.
"""
