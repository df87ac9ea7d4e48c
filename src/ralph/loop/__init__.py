"""The adaptive control loop.

This subpackage holds the loop's components, leaves first:
- analyzer.py: Trace Analyzer
- memory.py: Session Memory Store
- strategy.py: Strategy Engine
- context.py: Context Builder
- orchestrator.py: Loop Orchestrator
- hooks.py: Claude Agent SDK hook adapters around the orchestrator
"""
