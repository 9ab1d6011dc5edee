from flowpatch.planner.llm_planner import LLMPlanner, UpdateWorkflowTool
from flowpatch.planner.matcher import find_node_by_reference
from flowpatch.planner.normalize import NormalizationResult, normalize_ops
from flowpatch.planner.planner import PlanResult, WorkflowPlanner
from flowpatch.planner.rules import RuleBasedPlanner

__all__ = [
    "LLMPlanner",
    "NormalizationResult",
    "PlanResult",
    "RuleBasedPlanner",
    "UpdateWorkflowTool",
    "WorkflowPlanner",
    "find_node_by_reference",
    "normalize_ops",
]
