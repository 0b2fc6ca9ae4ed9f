import logging
from typing import Any

from stackrecon.engine.entities import Stack
from stackrecon.engine.errors import StackError
from stackrecon.engine.intrinsics import IntrinsicResolver

LOG = logging.getLogger(__name__)


def resolve_outputs(stack: Stack, resolver: IntrinsicResolver) -> tuple[dict[str, Any], dict[str, Any]]:
    """
    Evaluate the outputs of a converged stack against the final resource attributes.

    :returns: the flat ``{output name: value}`` mapping and the ``{export name: value}`` mapping
    """
    outputs = {}
    exports = {}
    for name, output in stack.outputs.items():
        try:
            value = resolver.resolve(output.value, name)
            outputs[name] = value
            if output.export_name is not None:
                exports[str(resolver.resolve(output.export_name, name))] = value
        except StackError as e:
            e.operation = "resolve_outputs"
            raise
    LOG.debug("Resolved outputs of stack %s: %s", stack.stack_name, outputs)
    return outputs, exports

