"""
relay-orchestrator: integration test package

Purpose
- End-to-end workflow scenarios driven through the engine with scripted workers.
"""
