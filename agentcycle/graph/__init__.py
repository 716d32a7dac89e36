"""Orchestration graph: state, node ids, routing and the state machine.

Import from the submodules directly, e.g. `agentcycle.graph.builder`.
"""
