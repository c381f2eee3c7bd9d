"""reqchain CLI - run requests from .http files with variables and chaining."""

import sys
from pathlib import Path

import click
import yaml

TOOL_HELP = """\
reqchain: run requests from .http / .rest files.

Resolves {{...}} placeholders, prompts for user input and chains
values from earlier responses into later requests.

\b
USAGE
─────
  reqchain api.http                 Run the first request in the file
  reqchain api.http -n login        Run the request named "login"
  reqchain api.http -i 3            Run the third request
  reqchain api.http --all           Run every request, in order
  reqchain api.http --list          List the requests in the file

\b
REQUEST FILES
─────────────
  \b
  @baseUrl = https://api.example.com

  # @name login
  POST {{baseUrl}}/login
  Content-Type: application/json

  {"user": "{{:user}}", "password": "{{:password!secret}}"}

  ###

  GET {{baseUrl}}/me
  Authorization: Bearer {{login.response.body.$.token}}

\b
PLACEHOLDERS
────────────
  \b
  {{name}}                          File variable, then environment
  {{%name}}                         Same, percent-encoded
  {{:name}}                         Asked for once, remembered per endpoint
  {{:name!secret}}                  Same, typed without echo
  {{req.response.body.$.a.b[0]}}    JSON value from the response of "req"
  {{req.response.body.*}}           Whole response body of "req"
  {{req.response.headers.Name}}     Response header of "req"
  \b
  {{$guid}}                         Random UUID v4 ({{$uuid}} too)
  {{$timestamp [offset unit]}}      Unix seconds, e.g. {{$timestamp -1 d}}
  {{$datetime fmt [offset unit]}}   UTC time: iso8601, rfc1123 or 'YYYY-MM-DD'
  {{$localDatetime fmt [...]}}      Local time, same formats
  {{$randomInt min max}}            Integer in [min, max)
  {{$processEnv [%]NAME}}           Process environment variable
  {{$dotenv [%]NAME}}               Value from .env next to the request file
  {{$prompt name [description]}}    Ask at run time

  Offset units: y M w d h m s ms.

\b
ENVIRONMENTS (.reqchain.yaml)
─────────────────────────────
  Config resolution order:
    1. -c/--config flag (explicit path)
    2. .reqchain.yaml / .reqchain.yml / reqchain.yaml / reqchain.yml in CWD
    3. ~/.reqchain/config.yaml (global)

  \b
  defaults:
    environment: dev                # used when -e is not given
    timeout: 30                     # seconds
    env_file: .env                  # merged into $processEnv lookups
    follow_redirects: true
    headers:
      Accept: application/json
  environments:
    $shared:                        # fallback for every environment
      apiVersion: v1
    dev:
      baseUrl: http://localhost:3000
    prod:
      baseUrl: https://api.example.com

\b
SESSIONS
────────
  {{:name}} answers and --set variables are stored per directory of the
  request file under ~/.reqchain/session/, or under a named session with
  --session NAME. --no-session keeps nothing.

\b
OUTPUT FORMAT
─────────────
    STATUS: 200
    TIME: 45ms
    BODY:
    {"id": 1, "name": "test"}

  --verbose adds response headers, --headers prints only status and headers,
  --raw prints only the body.
"""


@click.command(
    cls=click.Command,
    help=TOOL_HELP,
    context_settings={"max_content_width": 88},
)
@click.argument("http_file", required=False)
@click.option("-n", "--name", "request_name", default=None, help="Run the request with this @name.")
@click.option(
    "-i",
    "--index",
    "request_index",
    type=int,
    default=None,
    help="Run the request at this position (1-based).",
)
@click.option("--all", "run_all", is_flag=True, default=False, help="Run every request in order.")
@click.option("-e", "--env", "env_name", default=None, help="Environment from the config file.")
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Config file path. Default: .reqchain.yaml in CWD, then ~/.reqchain/config.yaml.",
)
@click.option("--session", "session_name", default=None, help="Use a named session.")
@click.option("--no-session", is_flag=True, default=False, help="Do not load or save session data.")
@click.option(
    "--force-prompt",
    is_flag=True,
    default=False,
    help="Ask for {{:name}} values even when the session has them.",
)
@click.option("--dry-run", is_flag=True, default=False, help="Print resolved requests without sending.")
@click.option("--skip-validate", is_flag=True, default=False, help="Send requests without validating them.")
@click.option("--strict", is_flag=True, default=False, help="Treat duplicate request names as an error.")
@click.option("--verbose", is_flag=True, default=False, help="Include response headers in output.")
@click.option("--headers", "headers_only", is_flag=True, default=False, help="Output status and headers only.")
@click.option("--raw", is_flag=True, default=False, help="Output the response body only.")
@click.option(
    "--timeout",
    type=int,
    default=None,
    help="Request timeout in seconds. Default: 30.",
)
@click.option(
    "--set",
    "set_vars",
    multiple=True,
    metavar="NAME=VALUE",
    help="Store a session variable. Values are typed as YAML scalars. Repeatable.",
)
@click.option("--list", "show_list", is_flag=True, default=False, help="List the requests in the file.")
@click.option(
    "--list-envs",
    "show_list_envs",
    is_flag=True,
    default=False,
    help="List environments from the config file.",
)
@click.option("--debug", is_flag=True, default=False, help="Log variable resolution to stderr.")
def main(
    http_file,
    request_name,
    request_index,
    run_all,
    env_name,
    config_file,
    session_name,
    no_session,
    force_prompt,
    dry_run,
    skip_validate,
    strict,
    verbose,
    headers_only,
    raw,
    timeout,
    set_vars,
    show_list,
    show_list_envs,
    debug,
):
    """Run requests from an .http file."""
    from reqchain.core import (
        DEFAULT_TIMEOUT,
        GLOBAL_DIR,
        build_processor,
        list_environments,
        load_config,
        load_env,
        resolve_config_path,
        select_environment,
    )
    from reqchain.errors import ValidationError
    from reqchain.executor import execute_request
    from reqchain.logging import configure_logging
    from reqchain.output import format_output, format_request, format_request_list, validate_request
    from reqchain.parser import find_duplicate_names, parse_content
    from reqchain.prompts import input_form, prompt_handler
    from reqchain.session import SessionManager
    from reqchain.userinput import Prompter

    if debug:
        configure_logging("DEBUG")

    # --- Load config ---
    config_path = resolve_config_path(config_file)
    config = load_config(config_path)
    defaults = config.get("defaults", {})

    if show_list_envs:
        _cmd_list_envs(config, list_environments)
        return

    if not http_file:
        ctx = click.get_current_context()
        click.echo(ctx.get_help())
        ctx.exit(1)

    path = Path(http_file)
    if not path.is_file():
        click.echo(f"ERROR: request file not found: {http_file}", err=True)
        sys.exit(1)

    # --- Parse ---
    parsed = parse_content(path.read_text(encoding="utf-8"))
    for w in parsed.warnings:
        click.echo(f"WARNING: {w.message}", err=True)
    for d in parsed.duplicate_variables:
        click.echo(
            f"WARNING: file variable '{d.name}' redefined ('{d.old_value}' -> '{d.new_value}')",
            err=True,
        )
    if strict and find_duplicate_names(parsed.requests):
        click.echo("ERROR: duplicate request names (--strict).", err=True)
        sys.exit(1)

    if show_list:
        _cmd_list(path, parsed.requests, format_request_list)
        return

    if not parsed.requests:
        click.echo(f"ERROR: no requests found in {http_file}", err=True)
        sys.exit(1)

    try:
        selected = _select_requests(parsed.requests, request_name, request_index, run_all)
        environment = select_environment(config, env_name)
    except (LookupError, ValueError) as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)

    # --- Session ---
    session = None
    if not no_session:
        session = SessionManager(GLOBAL_DIR, str(path), session_name)
        session.load()
    if set_vars:
        if session is None:
            click.echo("ERROR: --set cannot be combined with --no-session.", err=True)
            sys.exit(1)
        for name, value in _parse_set_vars(set_vars).items():
            session.set_variable(name, value)

    # --- Resolver ---
    file_variables = {}
    if session is not None:
        file_variables = {k: session.get_variable_as_string(k) for k in session.variables}
    file_variables.update(parsed.file_variables)

    env = load_env(defaults.get("env_file"), config.get("_config_dir") or ".")
    processor = build_processor(
        config,
        environment,
        file_variables,
        path,
        env,
        prompt_handler=prompt_handler,
    )
    prompter = Prompter(session=session, form=input_form, force_prompt=force_prompt)
    default_headers = {str(k): str(v) for k, v in (defaults.get("headers") or {}).items()}
    request_timeout = _resolve_timeout(timeout, defaults.get("timeout"), default=DEFAULT_TIMEOUT)
    follow_redirects = defaults.get("follow_redirects", True) is not False
    prompted: set[str] = set()

    # --- Run ---
    for position, req in selected:
        resolved = _prepare_request(req, processor, prompter, default_headers, prompted)

        if len(selected) > 1:
            click.echo(f"### [{position}] {req.name or f'{req.method} {req.url}'}")

        if not skip_validate:
            try:
                validate_request(resolved)
            except ValidationError as e:
                _save_session(session)
                click.echo(f"ERROR: invalid request [{position}]:", err=True)
                for problem in e.problems:
                    click.echo(f"  - {problem}", err=True)
                sys.exit(1)

        if dry_run:
            click.echo(format_request(resolved))
            continue

        result = execute_request(
            method=resolved.method,
            url=resolved.url,
            headers=resolved.headers,
            body=resolved.body or None,
            timeout=request_timeout,
            follow_redirects=follow_redirects and not req.metadata.no_redirect,
        )
        if result.error:
            _save_session(session)
            click.echo(f"ERROR: {result.error}", err=True)
            sys.exit(1)

        if req.name:
            processor.set_request_result(req.name, result.snapshot())

        click.echo(format_output(result, verbose=verbose, raw=raw, headers_only=headers_only))

    _save_session(session)


# ── Subcommand implementations ──────────────────────────────────────────


def _cmd_list(path, requests, format_request_list):
    if not requests:
        click.echo(f"No requests found in: {path}")
        return
    click.echo(f"Requests in {path}:")
    click.echo(format_request_list(requests))


def _cmd_list_envs(config, list_environments):
    names = list_environments(config)
    if not names:
        click.echo("No environments configured.")
        return
    current = config.get("defaults", {}).get("environment")
    for name in names:
        marker = "*" if name == current else " "
        click.echo(f"{marker} {name}")


# ── Helpers ──────────────────────────────────────────────────────────────


def _select_requests(requests, request_name, request_index, run_all):
    """Return [(1-based position, request)] to run.

    Raises LookupError when the name or index matches nothing.
    """
    numbered = list(enumerate(requests, start=1))
    if run_all:
        return numbered
    if request_name:
        for position, req in numbered:
            if req.name == request_name:
                return [(position, req)]
        raise LookupError(f"no request named '{request_name}'. Use --list to see requests.")
    if request_index is not None:
        if request_index < 1 or request_index > len(requests):
            raise LookupError(
                f"invalid index {request_index} (file has {len(requests)} requests)",
            )
        return [numbered[request_index - 1]]
    return numbered[:1]


def _prepare_request(req, processor, prompter, default_headers, prompted):
    """Resolve every placeholder in a parsed request.

    Order: {{:name}} user input, @prompt metadata, then {{...}} variables.
    """
    from reqchain.errors import VariableError
    from reqchain.headers import get_header
    from reqchain.parser import HttpRequest
    from reqchain.userinput import generate_key, replace, replace_raw

    headers = dict(req.headers)
    for k, v in default_headers.items():
        if get_header(headers, k) is None:
            headers[k] = v

    collected = prompter.process_content(
        "\n".join([req.url, *headers.values(), req.body]),
        generate_key(req.url),
    )
    url = replace(req.url, collected.values)
    headers = {k: replace_raw(v, collected.values) for k, v in headers.items()}
    body = replace_raw(req.body, collected.values)

    for p in req.metadata.prompts:
        if p.name in prompted:
            continue
        try:
            value = processor.prompt_handler(p.name, p.description, p.is_password)
        except VariableError:
            continue
        processor.set_file_variables({p.name: value})
        prompted.add(p.name)

    return HttpRequest(
        method=req.method,
        url=processor.process(url),
        headers={k: processor.process(v) for k, v in headers.items()},
        body=processor.process(body),
        metadata=req.metadata,
        warnings=req.warnings,
    )


def _parse_set_vars(set_vars):
    """Parse --set NAME=VALUE pairs, typing each value as a YAML scalar."""
    values = {}
    for item in set_vars:
        if "=" not in item:
            continue
        k, raw_value = item.split("=", 1)
        try:
            value = yaml.safe_load(raw_value) if raw_value.strip() else ""
        except yaml.YAMLError:
            value = raw_value
        if isinstance(value, dict | list) or not isinstance(value, str | int | float | bool | type(None)):
            value = raw_value
        values[k.strip()] = value
    return values


def _resolve_timeout(*sources, default=30):
    """Return the first truthy timeout from sources, or default."""
    for t in sources:
        if t:
            return t
    return default


def _save_session(session):
    if session is not None:
        session.save()
