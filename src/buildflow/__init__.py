from .dsl import BuildDefinition, TargetBuilder, definition, sh
from .runner import Executor, RunConfig, TargetContext, run_targets, load_definition
from .model import Target, Step, TargetState, TargetResult, ExecutionReport
from .params import Parameter, ParameterResolver, Secret
from .errors import ArtifactContractViolation, BuildError, ConfigurationError, DependencyCycleError, ExecutionFailure

__all__ = [
    "BuildDefinition", "TargetBuilder", "definition", "sh",
    "Executor", "RunConfig", "TargetContext", "run_targets", "load_definition",
    "Target", "Step", "TargetState", "TargetResult", "ExecutionReport",
    "Parameter", "ParameterResolver", "Secret",
    "ArtifactContractViolation", "BuildError", "ConfigurationError", "DependencyCycleError", "ExecutionFailure",
]
