"""
Serverless entry point for the Helpdesk Triage API
"""
import os

# Serverless defaults: no background scheduler, runs finish within the request
os.environ.setdefault("ENVIRONMENT", "production")
os.environ.setdefault("TRIAGE_RULES_PATH", "/tmp/triage_rules.yaml")
os.environ.setdefault("WORKFLOW_BACKGROUND", "false")

from mangum import Mangum  # noqa: E402
from helpdesk.main import app  # noqa: E402

# Lambda handler for the ASGI app; lifespan runs once per cold start, which
# also finishes runs a timed-out invocation left journaled as running
handler = Mangum(app, lifespan="auto")
