"""
Audit app.

Records who did what to pipelines and deployments. Recording is fire-and-forget:
a failing sink is logged and never breaks the caller's operation.
"""
