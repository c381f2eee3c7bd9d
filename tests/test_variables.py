"""Tests for {{...}} placeholder resolution and request chaining."""

import pytest

from reqchain import sysfuncs
from reqchain.errors import VariableError
from reqchain.variables import (
    MAX_DEPTH,
    RecursionLimitError,
    RequestSnapshot,
    VariableProcessor,
    VariableType,
    find_unresolved,
)

ENVIRONMENTS = {
    "$shared": {"A": "1", "host": "shared.test", "only_shared": "s"},
    "dev": {"A": "2", "host": "dev.test"},
}


def _processor(**kwargs):
    kwargs.setdefault("environ", {})
    return VariableProcessor(**kwargs)


# ── Basics ──────────────────────────────────────────────────────────────


class TestProcess:
    @pytest.mark.parametrize("text", ["", "plain text", "{ single }", "{{", "}} {{ unterminated"])
    def test_text_without_placeholders_unchanged(self, text):
        assert _processor().process(text) == text

    def test_partial_resolution(self):
        p = _processor(file_variables={"known": "value"})
        assert p.process("{{known}}-{{unknown}}") == "value-{{unknown}}"

    def test_whitespace_inside_braces_trimmed(self):
        p = _processor(file_variables={"name": "v"})
        assert p.process("{{ name }}") == "v"

    def test_multiple_placeholders(self):
        p = _processor(file_variables={"a": "1", "b": "2"})
        assert p.process("{{a}}+{{b}}={{a}}{{b}}") == "1+2=12"


# ── Environments ────────────────────────────────────────────────────────


class TestEnvironments:
    def test_current_environment_wins_over_shared(self):
        p = _processor(environment="dev", environments=ENVIRONMENTS)
        assert p.process("{{A}}") == "2"

    def test_shared_used_without_environment(self):
        p = _processor(environment="", environments=ENVIRONMENTS)
        assert p.process("{{A}}") == "1"

    def test_shared_fallback(self):
        p = _processor(environment="dev", environments=ENVIRONMENTS)
        assert p.process("{{only_shared}}") == "s"

    def test_unknown_environment_falls_back_to_shared(self):
        p = _processor(environment="staging", environments=ENVIRONMENTS)
        assert p.process("{{host}}") == "shared.test"

    def test_environment_values_are_expanded(self):
        envs = {"dev": {"base": "https://{{host}}/v1", "host": "dev.test"}}
        p = _processor(environment="dev", environments=envs)
        assert p.process("{{base}}/users") == "https://dev.test/v1/users"

    def test_set_environment(self):
        p = _processor(environments=ENVIRONMENTS)
        p.set_environment("dev")
        assert p.process("{{host}}") == "dev.test"

    def test_set_environment_variables_replaces_table(self):
        p = _processor(environment="dev", environments=ENVIRONMENTS)
        p.set_environment_variables({"dev": {"host": "new.test"}})
        assert p.process("{{host}} {{only_shared}}") == "new.test {{only_shared}}"


# ── File variables ──────────────────────────────────────────────────────


class TestFileVariables:
    def test_file_variable_wins_over_environment(self):
        p = _processor(environment="dev", environments=ENVIRONMENTS, file_variables={"A": "file"})
        assert p.process("{{A}}") == "file"

    def test_nested_references(self):
        p = _processor(
            environment="dev",
            environments=ENVIRONMENTS,
            file_variables={"baseUrl": "https://{{host}}", "users": "{{baseUrl}}/users"},
        )
        assert p.process("{{users}}") == "https://dev.test/users"

    def test_set_file_variables_merges(self):
        p = _processor(file_variables={"a": "1"})
        p.set_file_variables({"b": "2"})
        assert p.process("{{a}}{{b}}") == "12"

    def test_self_reference_left_unresolved(self):
        p = _processor(file_variables={"loop": "x{{loop}}"})
        assert p.process("{{loop}}") == "{{loop}}"

    def test_mutual_reference_left_unresolved(self):
        p = _processor(file_variables={"a": "{{b}}", "b": "{{a}}", "ok": "fine"})
        assert p.process("{{a}} {{ok}}") == "{{a}} fine"

    def test_deep_but_finite_chain_resolves(self):
        chain = {f"v{i}": f"{{{{v{i + 1}}}}}" for i in range(MAX_DEPTH - 1)}
        chain[f"v{MAX_DEPTH - 1}"] = "end"
        p = _processor(file_variables=chain)
        assert p.process("{{v0}}") == "end"

    def test_partly_unresolved_value_left_verbatim(self):
        p = _processor(file_variables={"auth": "Bearer {{missing}}"})
        assert p.process("{{auth}}") == "{{auth}}"

    def test_partly_unresolved_environment_value_left_verbatim(self):
        envs = {"dev": {"base": "https://{{host}}/v1"}}
        p = _processor(environment="dev", environments=envs)
        assert p.process("{{base}}") == "{{base}}"

    def test_value_resolves_once_chained_request_is_sent(self):
        p = _processor(file_variables={"token": "{{login.response.body.$.token}}"})
        assert p.process("Bearer {{token}}") == "Bearer {{token}}"
        p.set_request_result("login", RequestSnapshot(200, {}, '{"token":"abc"}'))
        assert p.process("Bearer {{token}}") == "Bearer abc"

    def test_unterminated_braces_in_value_are_literal(self):
        p = _processor(file_variables={"tpl": "{{ not a placeholder"})
        assert p.process("{{tpl}}") == "{{ not a placeholder"

    def test_process_nested_guard(self):
        p = _processor()
        p._depth = MAX_DEPTH
        with pytest.raises(RecursionLimitError):
            p.process_nested("x")


# ── Encoding and caching ────────────────────────────────────────────────


class TestEncodingAndCache:
    def test_percent_encoding(self):
        p = _processor(file_variables={"q": "hello world"})
        assert p.process("{{%q}}") == "hello%20world"
        assert p.process("{{q}}") == "hello world"

    def test_percent_encoding_of_system_value(self):
        p = _processor(environ={"Q": "a&b"})
        assert p.process("{{%$processEnv Q}}") == "a%26b"

    def test_percent_without_name(self):
        assert _processor().process("{{%}}") == "{{%}}"

    def test_guid_cached_per_expression(self):
        p = _processor()
        first = p.process("{{$guid}}")
        assert p.process("{{$guid}}") == first
        assert p.process("{{ $guid }}") == first

    def test_random_int_cached(self):
        p = _processor()
        first = p.process("{{$randomInt 0 1000000}}")
        assert all(p.process("{{$randomInt 0 1000000}}") == first for _ in range(5))

    def test_cache_is_per_instance(self, monkeypatch):
        values = iter(["one", "two"])
        monkeypatch.setattr(sysfuncs, "guid", lambda: next(values))
        assert _processor().process("{{$guid}}") == "one"
        assert _processor().process("{{$guid}}") == "two"


# ── System namespace ────────────────────────────────────────────────────


class TestSystemNamespace:
    def test_unknown_function_left_unresolved(self):
        assert _processor().process("{{$nope}}") == "{{$nope}}"

    def test_contract_violation_left_unresolved(self):
        assert _processor().process("{{$randomInt 5 1}}") == "{{$randomInt 5 1}}"

    def test_uuid_alias(self):
        assert len(_processor().process("{{$uuid}}")) == 36

    def test_process_env_with_indirection(self):
        envs = {"dev": {"keyVar": "DEV_KEY"}}
        p = _processor(environment="dev", environments=envs, environ={"DEV_KEY": "k"})
        assert p.process("{{$processEnv %keyVar}}") == "k"

    def test_process_env_missing_is_empty(self):
        assert _processor().process("[{{$processEnv NOPE}}]") == "[]"

    def test_process_env_warning(self):
        variable = _processor().lookup("$processEnv NOPE")
        assert variable.value == ""
        assert variable.warning

    def test_dotenv_uses_current_dir(self, tmp_path):
        (tmp_path / ".env").write_text("TOKEN=abc\n")
        p = _processor(current_dir=str(tmp_path))
        assert p.process("{{$dotenv TOKEN}}") == "abc"
        assert p.process("{{$dotenv MISSING}}") == "{{$dotenv MISSING}}"

    def test_prompt(self):
        calls = []

        def handler(name, description, is_password):
            calls.append((name, description, is_password))
            return "42"

        p = _processor(prompt_handler=handler)
        assert p.process('{{$prompt otp "One time code"}}') == "42"
        assert calls == [("otp", "One time code", False)]
        assert p.lookup("$prompt otp").type is VariableType.PROMPT

    def test_prompt_without_handler(self):
        assert _processor().process("{{$prompt otp}}") == "{{$prompt otp}}"

    def test_set_prompt_handler_and_current_dir(self, tmp_path):
        (tmp_path / ".env").write_text("TOKEN=late\n")
        p = _processor()
        p.set_prompt_handler(lambda n, d, pw: "answer")
        p.set_current_dir(str(tmp_path))
        assert p.process("{{$prompt q}} {{$dotenv TOKEN}}") == "answer late"

    def test_unbalanced_quote_tokenized_on_whitespace(self):
        p = _processor(prompt_handler=lambda n, d, pw: d)
        assert p.process("{{$prompt otp 'code}}") == "'code"


# ── Request chaining ────────────────────────────────────────────────────


LOGIN = RequestSnapshot(
    status_code=200,
    headers={"Content-Type": ["application/json"], "Set-Cookie": ["a=1", "b=2"]},
    body='{"token":"abc","user":{"id":7,"roles":["admin","dev"]}}',
)


class TestRequestChaining:
    def _chained(self):
        p = _processor()
        p.set_request_result("login", LOGIN)
        return p

    def test_body_path(self):
        p = self._chained()
        assert p.process("Bearer {{login.response.body.$.token}}") == "Bearer abc"
        assert p.process("{{login.response.body.$.user.roles[1]}}") == "dev"

    def test_whole_body(self):
        assert self._chained().process("{{login.response.body.*}}") == LOGIN.body

    def test_header_case_insensitive_first_value(self):
        p = self._chained()
        assert p.process("{{login.response.headers.content-type}}") == "application/json"
        assert p.process("{{login.response.headers.Set-Cookie}}") == "a=1"

    def test_missing_field_left_unresolved(self):
        p = self._chained()
        assert p.process("{{login.response.body.$.missing}}") == "{{login.response.body.$.missing}}"

    def test_missing_header_left_unresolved(self):
        p = self._chained()
        assert p.process("{{login.response.headers.X-Nope}}") == "{{login.response.headers.X-Nope}}"

    def test_request_not_sent_yet(self):
        p = _processor()
        with pytest.raises(VariableError, match="not been sent"):
            p.lookup("login.response.body.$.token")
        assert p.process("{{login.response.body.$.token}}") == "{{login.response.body.$.token}}"

    def test_unsupported_forms(self):
        p = self._chained()
        for expr in (
            "login.response.body",
            "login.response.status.code",
            "login.request.body.*",
            "login.response.body.token",
        ):
            assert p.process("{{" + expr + "}}") == "{{" + expr + "}}"

    def test_last_registration_wins(self):
        p = self._chained()
        p.set_request_result("login", RequestSnapshot(200, {}, '{"token":"new"}'))
        assert p.process("{{login.response.body.$.token}}") == "new"

    def test_chain_takes_precedence_over_file_variable(self):
        p = _processor(file_variables={"login.response.body.*": "file"})
        p.set_request_result("login", LOGIN)
        assert p.process("{{login.response.body.*}}") == LOGIN.body


def test_find_unresolved():
    assert find_unresolved("a {{x}} b {{ y.z }}") == ["x", "y.z"]
    assert find_unresolved("none") == []
