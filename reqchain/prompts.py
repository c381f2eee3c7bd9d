"""reqchain prompts - terminal input for $prompt and {{:name}} values."""

import click

from reqchain.errors import VariableError
from reqchain.userinput import InputField


def prompt_handler(name: str, description: str, is_password: bool) -> str:
    """Ask for a single ``{{$prompt name}}`` value.

    An aborted prompt (Ctrl-C / EOF) leaves the placeholder unresolved.
    """
    label = description or name
    try:
        return click.prompt(label, default="", show_default=False, hide_input=is_password, err=True)
    except click.Abort as e:
        raise VariableError(name, "prompt cancelled") from e


def input_form(fields: list[InputField]) -> dict[str, str]:
    """Ask for every ``{{:name}}`` field, offering stored values as defaults.

    Secret fields are read without echo and their stored value is never shown.
    """
    values = {}
    for f in fields:
        values[f.name] = click.prompt(
            f.name,
            default=f.default,
            show_default=bool(f.default) and not f.is_secret,
            hide_input=f.is_secret,
            err=True,
        )
    return values
