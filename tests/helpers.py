from buildflow.dag import build_graph
from buildflow.dsl import TargetBuilder


def recorder(calls, name, value=None):
    def action(ctx):
        calls.append(name)
        return value

    return action


def failing(calls, name, message="boom"):
    def action(ctx):
        calls.append(name)
        raise RuntimeError(message)

    return action


def graph_of(*builders: TargetBuilder):
    return build_graph(b.build() for b in builders)


def target(name, calls=None, *deps):
    builder = TargetBuilder(name).depends_on(*deps)
    if calls is not None:
        builder.executes(recorder(calls, name))
    return builder
