"""
Projects app.

Read-only project metadata (language profile, target platforms, pipeline
settings) consumed by the pipeline configuration generator.
"""
