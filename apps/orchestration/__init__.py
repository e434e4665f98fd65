"""
Pipeline Orchestration app.

Turns a project profile into a versioned pipeline configuration and runs it:

- Stage templates per language and target platform (catalog, generator)
- Sequential stage execution with retries and timeouts (orchestrator, executors)
- Webhook routing to pipelines and test runs (webhooks, tasks)
- Lifecycle events at every stage boundary (events)
"""

default_app_config = "apps.orchestration.apps.OrchestrationConfig"
