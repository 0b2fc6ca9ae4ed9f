import json
import logging
import os
import traceback
from typing import Any, Optional

import click

from stackrecon import config
from stackrecon.cli.exceptions import CLIError, StackFailedError
from stackrecon.constants import VERSION
from stackrecon.engine.entities import StackEvent
from stackrecon.utils.json import CustomEncoder

from .console import console

STATUS_STYLES = {
    "IN_PROGRESS": "yellow",
    "DELETE_IN_PROGRESS": "yellow",
    "ROLLBACK_IN_PROGRESS": "yellow",
    "COMPLETE": "green",
    "DELETE_COMPLETE": "green",
    "FAILED": "red",
    "DELETE_FAILED": "red",
    "ROLLED_BACK": "red",
    "SKIPPED": "dim",
}


class StackreconCliGroup(click.Group):
    """
    The top-level ``stackrecon`` command group. It implements global exception handling by:

    - Ignoring click exceptions (already handled)
    - Wrapping all unexpected exceptions in a ``CLIError`` (for a unified error message)
    """

    def invoke(self, ctx: click.Context):
        try:
            return super(StackreconCliGroup, self).invoke(ctx)
        except click.exceptions.Exit:
            # raise Exit exceptions unmodified (e.g., raised on --help)
            raise
        except click.ClickException:
            if ctx and ctx.params.get("debug"):
                click.echo(traceback.format_exc())
            raise
        except Exception as e:
            if ctx and ctx.params.get("debug"):
                click.echo(traceback.format_exc())
            raise CLIError(str(e)) from e


def _setup_cli_debug() -> None:
    from stackrecon.logging.setup import setup_logging_for_cli

    config.DEBUG = True
    os.environ["DEBUG"] = "1"

    setup_logging_for_cli(logging.DEBUG)


def _parse_parameters(ctx, param, values: tuple[str, ...]) -> dict[str, str]:
    parameters = {}
    for value in values:
        key, separator, parameter_value = value.partition("=")
        if not separator or not key.strip():
            raise click.BadParameter(f"expected KEY=VALUE, got {value!r}", ctx=ctx, param=param)
        parameters[key.strip()] = parameter_value
    return parameters


def _read_template(path: str) -> str:
    with open(path, "r") as template_file:
        return template_file.read()


def _store():
    from stackrecon.stores import StackStore

    return StackStore(config.STATE_DIR)


_click_format_option = click.option(
    "-f",
    "--format",
    "format_",
    type=click.Choice(["table", "json"]),
    default="table",
    help="The formatting style for the command output.",
)

_click_parameter_option = click.option(
    "-P",
    "--parameter",
    "parameters",
    multiple=True,
    callback=_parse_parameters,
    metavar="KEY=VALUE",
    help="Override a template parameter, can be given multiple times.",
)

_click_stack_name_option = click.option(
    "-s", "--stack-name", required=True, help="Name of the stack."
)


@click.group(
    name="stackrecon",
    help="Reconcile CloudFormation-style templates against the resources they declare",
    cls=StackreconCliGroup,
    context_settings={
        "help_option_names": ["-h", "--help"],
        "show_default": True,
    },
)
@click.version_option(
    VERSION,
    "--version",
    "-v",
    message="%(version)s",
    help="Show the version of stackrecon and exit",
)
@click.option("-d", "--debug", is_flag=True, help="Enable CLI debugging mode")
@click.option("-p", "--profile", type=str, help="Set the configuration profile")
@click.option(
    "--state-dir",
    type=click.Path(file_okay=False),
    help="Folder holding the persisted stacks (defaults to SR_STATE_DIR)",
)
def stackrecon(debug: bool, profile: Optional[str], state_dir: Optional[str]) -> None:
    # --profile is read manually in stackrecon.cli.main, it needs to be read before stackrecon.config

    if debug:
        _setup_cli_debug()
    elif config.SR_LOG:
        from stackrecon.logging.setup import setup_logging_from_config

        setup_logging_from_config()
    else:
        from stackrecon.logging.setup import setup_logging_for_cli

        setup_logging_for_cli(logging.WARNING)

    if state_dir:
        config.STATE_DIR = os.path.abspath(state_dir)


@stackrecon.command(name="deploy", short_help="Create or update a stack")
@click.argument("template", type=click.Path(exists=True, dir_okay=False, readable=True))
@_click_stack_name_option
@_click_parameter_option
@click.option("--region", help="Region of the stack (defaults to SR_DEFAULT_REGION)")
@click.option(
    "--disable-rollback",
    is_flag=True,
    help="Leave a failed stack as it is instead of rolling back the changes (defaults to SR_DISABLE_ROLLBACK).",
)
@click.option(
    "--refresh",
    is_flag=True,
    help="Re-create resources of the stack that were deleted out of band.",
)
def cmd_deploy(
    template: str,
    stack_name: str,
    parameters: dict[str, str],
    region: Optional[str],
    disable_rollback: bool,
    refresh: bool,
) -> None:
    """
    Deploy TEMPLATE as the given stack.

    Resources are created, updated, replaced and removed until the stack matches the template. The
    events of the deployment are printed as they happen, the outputs once the stack is complete.
    Pressing Ctrl+C cancels the deployment and rolls back the changes applied so far.
    """
    from stackrecon import api

    stream = api.stream_deploy(
        _read_template(template),
        stack_name,
        parameters,
        store=_store(),
        region=region,
        disable_rollback=disable_rollback or None,
        refresh=refresh,
    )
    try:
        for event in stream:
            _print_event(event)
    except KeyboardInterrupt:
        console.print("[yellow]Cancelling deployment, rolling back[/yellow]")
        stream.cancel()
        for event in stream:
            _print_event(event)

    result = stream.result
    if result.outputs:
        _print_outputs_table(result.outputs, api.load_template(_read_template(template)))
    if result.status.is_failure:
        raise StackFailedError(stack_name, result.status, result.error)
    console.print(f"[green]:heavy_check_mark:[/green] stack {stack_name} is {result.status.value}")


@stackrecon.command(name="plan", short_help="Show the changes a deployment would apply")
@click.argument("template", type=click.Path(exists=True, dir_okay=False, readable=True))
@_click_stack_name_option
@_click_parameter_option
@click.option("--region", help="Region of the stack (defaults to SR_DEFAULT_REGION)")
@click.option("--refresh", is_flag=True, help="Detect resources that were deleted out of band.")
@_click_format_option
def cmd_plan(
    template: str,
    stack_name: str,
    parameters: dict[str, str],
    region: Optional[str],
    refresh: bool,
    format_: str,
) -> None:
    """
    Compute the change set of deploying TEMPLATE as the given stack, without changing anything.
    """
    from stackrecon import api

    change_set = api.plan_stack(
        _read_template(template),
        stack_name,
        parameters,
        store=_store(),
        region=region,
        refresh=refresh,
    )
    if format_ == "json":
        console.print_json(json.dumps(change_set.serialize(), cls=CustomEncoder))
        return

    from rich.table import Table

    table = Table(title=f"Change set of stack {stack_name}")
    table.add_column("Action")
    table.add_column("Logical ID")
    table.add_column("Type")
    table.add_column("Replacement")
    table.add_column("Changed properties")
    for change in change_set.serialize():
        table.add_row(
            change["Action"] + (" (dynamic)" if change["Evaluation"] == "Dynamic" else ""),
            change["LogicalResourceId"],
            change["ResourceType"],
            change["ReplacementStrategy"] or ("True" if change["Replacement"] else ""),
            ", ".join(change["ChangedProperties"]),
        )
    console.print(table)
    if not change_set.has_changes:
        console.print("No changes")


@stackrecon.command(name="delete", short_help="Delete a stack and all of its resources")
@click.argument("stack_name")
def cmd_delete(stack_name: str) -> None:
    """
    Delete STACK_NAME. Resources are deleted before the resources they depend on.
    """
    from stackrecon import api

    result = api.delete_stack(stack_name, store=_store(), on_event=_print_event)
    if result.status.is_failure:
        raise StackFailedError(stack_name, result.status, result.error)
    console.print(f"[green]:heavy_check_mark:[/green] stack {stack_name} deleted")


@stackrecon.command(name="outputs", short_help="Show the outputs of a stack")
@click.argument("stack_name")
@_click_format_option
def cmd_outputs(stack_name: str, format_: str) -> None:
    """
    Print the outputs of the last successful deployment of STACK_NAME.
    """
    from stackrecon import api

    store = _store()
    outputs = api.get_outputs(stack_name, store=store)
    if format_ == "json":
        console.print_json(json.dumps(outputs, cls=CustomEncoder))
        return
    _print_outputs_table(outputs, store.get(stack_name).template or {})


@stackrecon.command(name="validate", short_help="Validate a template")
@click.argument("template", type=click.Path(exists=True, dir_okay=False, readable=True))
@_click_parameter_option
@click.option("--region", help="Region used to resolve the template")
def cmd_validate(template: str, parameters: dict[str, str], region: Optional[str]) -> None:
    """
    Run the pre-flight checks of TEMPLATE: parameters, conditions, mappings, supported resource types
    and the dependency graph. Nothing is deployed.

    \b
    It will show an error and return a non-zero exit code if:
    - The template is syntactically incorrect or uses unsupported resource types or functions.
    - The parameters are invalid for the template.
    - The resources reference each other in a cycle.
    """
    from stackrecon import api

    stack = api.validate_template(_read_template(template), parameters, region=region)
    console.print(
        f"[green]:heavy_check_mark:[/green] template valid "
        f"({len(stack.resources)} resources, {len(stack.outputs)} outputs)"
    )
    if stack.excluded_resources:
        console.print(f"excluded by conditions: {', '.join(sorted(stack.excluded_resources))}")


@stackrecon.command(name="drift", short_help="Detect drift of a stack")
@click.argument("stack_name")
@_click_format_option
def cmd_drift(stack_name: str, format_: str) -> None:
    """
    Compare the resources of STACK_NAME with their actual state.
    """
    from stackrecon import api

    drifts = api.detect_drift(stack_name, store=_store())
    if format_ == "json":
        console.print_json(json.dumps([drift.__dict__ for drift in drifts], cls=CustomEncoder))
        return

    from rich.table import Table

    styles = {"IN_SYNC": "green", "MODIFIED": "yellow", "DELETED": "red"}
    table = Table(title=f"Drift of stack {stack_name}")
    table.add_column("Logical ID")
    table.add_column("Type")
    table.add_column("Physical ID")
    table.add_column("Status")
    table.add_column("Differences")
    for drift in drifts:
        style = styles[drift.status.value]
        table.add_row(
            drift.logical_resource_id,
            drift.resource_type,
            drift.physical_resource_id or "",
            f"[{style}]{drift.status.value}[/{style}]",
            ", ".join(drift.differences),
        )
    console.print(table)


def _print_event(event: StackEvent) -> None:
    status = getattr(event.status, "value", event.status)
    style = STATUS_STYLES.get(status, "white")
    line = (
        f"[dim]{event.timestamp.strftime('%H:%M:%S')}[/dim] "
        f"{event.logical_resource_id} [dim]{event.resource_type}[/dim] "
        f"[{style}]{status}[/{style}]"
    )
    if event.reason:
        line += f" {event.reason}"
    console.print(line, highlight=False)


def _print_outputs_table(outputs: dict[str, Any], template: dict) -> None:
    from rich.table import Table

    definitions = template.get("Outputs") or {}
    table = Table(title="Outputs")
    table.add_column("Key")
    table.add_column("Value")
    table.add_column("Description")
    for key, value in outputs.items():
        description = (definitions.get(key) or {}).get("Description") or ""
        table.add_row(key, str(value), str(description))
    console.print(table)
