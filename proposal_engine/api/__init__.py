"""
API routers package.

WHY: One router per resource keeps handlers thin; business rules live in
the services and the workflow engine.
"""
