"""
Test runs app.

Automated test trigger: decides which suites a commit, pull request or manual
request runs, executes them (in parallel up to a limit, or sequentially), and
tracks pass/fail and merge readiness.
"""
