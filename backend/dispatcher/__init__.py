"""
AI dispatcher: routes prompts to a fast completion backend or an agentic
task backend, with background task execution and a credits fallback.
"""
__version__ = "1.0.0"
