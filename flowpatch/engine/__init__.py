from flowpatch.engine.context import ExecutionContext, NodeOutcome
from flowpatch.engine.credentials import (
    CredentialProvider,
    CredentialStatus,
    CredentialStore,
    MissingCredentialsError,
    check_node_credentials,
)
from flowpatch.engine.executor import (
    NodeExecutionResult,
    WorkflowExecutionError,
    WorkflowExecutionResult,
    WorkflowExecutor,
)
from flowpatch.engine.expressions import ExpressionError, evaluate_expression
from flowpatch.engine.handlers import BuiltinHandlers, HandlerRegistry, NodeConfigError
from flowpatch.engine.hooks import ExecutionHooks, HookInvocation
from flowpatch.engine.integrations import (
    HttpIntegration,
    IntegrationAdapter,
    IntegrationError,
    SimulatedIntegrations,
)
from flowpatch.engine.templates import resolve_path, resolve_template, resolve_value

__all__ = [
    "BuiltinHandlers",
    "CredentialProvider",
    "CredentialStatus",
    "CredentialStore",
    "ExecutionContext",
    "ExecutionHooks",
    "ExpressionError",
    "HandlerRegistry",
    "HookInvocation",
    "HttpIntegration",
    "IntegrationAdapter",
    "IntegrationError",
    "MissingCredentialsError",
    "NodeConfigError",
    "NodeExecutionResult",
    "NodeOutcome",
    "SimulatedIntegrations",
    "WorkflowExecutionError",
    "WorkflowExecutionResult",
    "WorkflowExecutor",
    "check_node_credentials",
    "evaluate_expression",
    "resolve_path",
    "resolve_template",
    "resolve_value",
]
