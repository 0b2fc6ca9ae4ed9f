import typing as t

import click

from stackrecon.engine.entities import StackStatus
from stackrecon.engine.errors import StackError


class CLIError(click.ClickException):
    """A ClickException printed as a red error line on stderr"""

    def format_message(self) -> str:
        return click.style(f"❌ Error: {self.message}", fg="red")

    def show(self, file: t.Optional[t.IO[t.Any]] = None) -> None:
        click.echo(self.format_message(), file=file, err=file is None)


class StackFailedError(CLIError):
    """Raised when a deploy or delete command leaves the stack in a failure status"""

    def __init__(self, stack_name: str, status: StackStatus, error: t.Optional[StackError] = None):
        message = f"stack {stack_name} ended in status {status.value}"
        if error:
            message += f": {error}"
        super().__init__(message)
        self.stack_name = stack_name
        self.status = status
        self.error = error
