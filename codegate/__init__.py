"""CodeGate: authenticated, rate limited gateway to a code-assistant CLI."""
